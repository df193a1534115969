"""
Bounding Boxes and Grid Evaluation

Axis-aligned bounds of a point cloud, the center/scale normalization used to
fit a cloud into the unit cube, and sampling of a built field on a regular
lattice (e.g. for isosurface extraction by a downstream consumer).
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple, Union


@dataclass(frozen=True, eq=False)
class BoundingBox:
    """Axis-aligned box [lower, upper] in 3D."""
    lower: np.ndarray   # (3,)
    upper: np.ndarray   # (3,)

    def __post_init__(self):
        lower = np.array(self.lower, dtype=float).reshape(3)
        upper = np.array(self.upper, dtype=float).reshape(3)
        if np.any(upper < lower):
            raise ValueError(f"upper {upper} must be >= lower {lower}")
        object.__setattr__(self, 'lower', lower)
        object.__setattr__(self, 'upper', upper)

    @classmethod
    def from_points(cls, points) -> 'BoundingBox':
        """
        Bounds of the first three columns of points.

        Args:
            points: (N, 3) positions or (N, 6) oriented points
        """
        X = np.asarray(points, dtype=float)
        if X.ndim != 2 or X.shape[0] == 0 or X.shape[1] < 3:
            raise ValueError(f"Need a non-empty (N, 3) or (N, 6) array, got shape {X.shape}")
        X = X[:, :3]
        return cls(X.min(axis=0), X.max(axis=0))

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.lower + self.upper)

    @property
    def extent(self) -> np.ndarray:
        return self.upper - self.lower

    @property
    def max_half_extent(self) -> float:
        return float(0.5 * self.extent.max())

    def padded(self, fraction: float) -> 'BoundingBox':
        """Grow every side by fraction of the largest extent."""
        pad = fraction * float(self.extent.max())
        return BoundingBox(self.lower - pad, self.upper + pad)

    def contains(self, points) -> np.ndarray:
        X = np.asarray(points, dtype=float).reshape(-1, 3)
        return np.all((X >= self.lower) & (X <= self.upper), axis=1)

    def normalization(self) -> Tuple[np.ndarray, float]:
        """
        Center and uniform scale mapping the box into [-1, 1]^3.

        x_normalized = (x - center) * scale, with scale = 1 / max_half_extent.
        A box with zero extent gets scale 1.

        Returns:
            center (3,), scale
        """
        half = self.max_half_extent
        scale = 1.0 / half if half > 0 else 1.0
        return self.center, scale


def _resolution(resolution: Union[int, Tuple[int, int, int]]) -> Tuple[int, int, int]:
    if np.isscalar(resolution):
        res = (int(resolution),) * 3
    else:
        res = tuple(int(r) for r in resolution)
    if len(res) != 3 or min(res) < 2:
        raise ValueError(f"Grid resolution must be >= 2 along each axis, got {resolution}")
    return res


def grid_axes(bbox: BoundingBox, resolution) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Coordinates along x, y, z of a regular lattice spanning bbox."""
    nx, ny, nz = _resolution(resolution)
    return (
        np.linspace(bbox.lower[0], bbox.upper[0], nx),
        np.linspace(bbox.lower[1], bbox.upper[1], ny),
        np.linspace(bbox.lower[2], bbox.upper[2], nz),
    )


def grid_points(bbox: BoundingBox, resolution) -> np.ndarray:
    """
    Regular lattice spanning bbox.

    Args:
        bbox: Bounds of the lattice (corners included)
        resolution: Points per axis (int or (nx, ny, nz))

    Returns:
        (nx, ny, nz, 3) coordinates, 'ij' indexing
    """
    xs, ys, zs = grid_axes(bbox, resolution)
    X, Y, Z = np.meshgrid(xs, ys, zs, indexing='ij')
    return np.stack([X, Y, Z], axis=-1)


def evaluate_grid(
    model,
    bbox: BoundingBox,
    resolution,
    chunk_size: Optional[int] = None,
    verbose: bool = False,
) -> np.ndarray:
    """
    Sample a built model on a regular lattice.

    Args:
        model: Built RBFModel
        bbox: Lattice bounds
        resolution: Points per axis
        chunk_size: Lattice points per evaluate_batch call (default: model.block_size)
        verbose: Print progress

    Returns:
        (nx, ny, nz) field values
    """
    if chunk_size is None:
        chunk_size = model.block_size
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    P = grid_points(bbox, resolution).reshape(-1, 3)
    nx, ny, nz = _resolution(resolution)
    if verbose:
        print(f"Evaluating field on {nx}x{ny}x{nz} grid")

    values = np.empty(P.shape[0])
    for start in range(0, P.shape[0], chunk_size):
        stop = min(start + chunk_size, P.shape[0])
        values[start:stop] = model.evaluate_batch(P[start:stop])
    return values.reshape(nx, ny, nz)
