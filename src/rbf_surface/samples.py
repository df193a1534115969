"""
Sample Generation for Implicit Surface Fitting

Turns oriented points (x, y, z, nx, ny, nz) into the supervised training set
for RBF interpolation: one on-surface sample with value 0 per point, plus
two off-surface samples placed along the unit normal at +offset / -offset
with values +value / -value.
"""

import numpy as np
from dataclasses import dataclass
from scipy.spatial import cKDTree
from typing import Iterator, Optional, Sequence, Tuple

# Samples with |value| below this are on-surface (and become RBF centers)
CENTER_TOL = 1e-9


@dataclass(frozen=True)
class Sample:
    """A single training sample: field value at a 3D position."""
    position: Tuple[float, float, float]
    value: float


@dataclass(frozen=True, eq=False)
class SampleSet:
    """
    Ordered collection of samples stored as arrays.

    positions: (N, 3) sample coordinates
    values:    (N,)   target field values
    """
    positions: np.ndarray
    values: np.ndarray

    def __post_init__(self):
        positions = np.array(self.positions, dtype=float).reshape(-1, 3)
        values = np.array(self.values, dtype=float).reshape(-1)
        if positions.shape[0] != values.shape[0]:
            raise ValueError(
                f"positions ({positions.shape[0]}) and values ({values.shape[0]}) "
                f"must have the same length"
            )
        positions.setflags(write=False)
        values.setflags(write=False)
        object.__setattr__(self, 'positions', positions)
        object.__setattr__(self, 'values', values)

    @classmethod
    def from_samples(cls, samples: Sequence[Sample]) -> 'SampleSet':
        """Pack a sequence of Sample objects into arrays (order preserved)."""
        samples = list(samples)
        if not samples:
            return cls(np.zeros((0, 3)), np.zeros(0))
        positions = np.array([s.position for s in samples], dtype=float)
        values = np.array([s.value for s in samples], dtype=float)
        return cls(positions, values)

    def to_samples(self) -> list:
        return list(self)

    def on_surface_mask(self, tol: float = CENTER_TOL) -> np.ndarray:
        """Boolean mask of samples whose value is within tol of zero."""
        return np.abs(self.values) < tol

    @property
    def N_samples(self) -> int:
        return self.values.shape[0]

    @property
    def N_on_surface(self) -> int:
        return int(self.on_surface_mask().sum())

    def __len__(self) -> int:
        return self.N_samples

    def __getitem__(self, i: int) -> Sample:
        return Sample(tuple(float(c) for c in self.positions[i]), float(self.values[i]))

    def __iter__(self) -> Iterator[Sample]:
        for i in range(self.N_samples):
            yield self[i]


def as_oriented_points(points) -> np.ndarray:
    """
    Validate and convert oriented points to a (N, 6) float array.

    Args:
        points: Array-like of rows (x, y, z, nx, ny, nz)

    Returns:
        (N, 6) array
    """
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 6))
    if arr.ndim != 2 or arr.shape[1] != 6:
        raise ValueError(f"Oriented points must have shape (N, 6), got {arr.shape}")
    return arr


def generate_samples(
    points,
    offset: float = 0.01,
    value: float = 0.01,
    normal_eps: float = 1e-9,
) -> SampleSet:
    """
    Generate on/off-surface samples from oriented points.

    For each point, in input order:
        position            -> 0
        position + offset*n -> +value
        position - offset*n -> -value
    where n is the normalized normal. Points whose normal length is not
    above normal_eps only contribute the on-surface sample.

    Args:
        points: Oriented points (N, 6)
        offset: Distance of off-surface samples from the surface
        value: Field magnitude assigned to off-surface samples
        normal_eps: Normal length below which a normal is degenerate

    Returns:
        SampleSet with between N and 3N samples
    """
    if not offset > 0:
        raise ValueError(f"offset must be positive, got {offset}")
    if abs(value) < CENTER_TOL:
        raise ValueError(f"Off-surface value {value} would be taken for an on-surface sample")

    pts = as_oriented_points(points)
    n = pts.shape[0]
    X = pts[:, :3]
    normals = pts[:, 3:]

    lengths = np.linalg.norm(normals, axis=1)
    valid = lengths > normal_eps
    safe_lengths = np.where(valid, lengths, 1.0)
    unit = normals / safe_lengths[:, np.newaxis]

    # Slot 0: on-surface, slot 1: outside, slot 2: inside
    positions = np.empty((n, 3, 3))
    positions[:, 0] = X
    positions[:, 1] = X + offset * unit
    positions[:, 2] = X - offset * unit

    values = np.empty((n, 3))
    values[:, 0] = 0.0
    values[:, 1] = value
    values[:, 2] = -value

    keep = np.column_stack([np.ones(n, dtype=bool), valid, valid])

    return SampleSet(positions[keep], values[keep])


def estimate_offset(positions: np.ndarray, fraction: float = 0.5) -> float:
    """
    Estimate an off-surface offset from point spacing.

    Uses the average distance to the nearest neighbor as reference.

    Args:
        positions: Surface points (N, 3)
        fraction: Multiple of the average spacing to use

    Returns:
        offset: Recommended off-surface offset
    """
    positions = np.asarray(positions, dtype=float).reshape(-1, 3)
    if positions.shape[0] < 2:
        raise ValueError("Need at least 2 points to estimate spacing")

    tree = cKDTree(positions)
    distances, _ = tree.query(positions, k=2)  # k=2 because first is self
    avg_spacing = distances[:, 1].mean()

    return fraction * avg_spacing


class SampleGenerator:
    """
    Sample generator for implicit surface fitting.

    Usage:
        gen = SampleGenerator(offset=0.01, value=0.01)
        samples = gen.generate(points)
    """

    def __init__(
        self,
        offset: Optional[float] = 0.01,
        value: float = 0.01,
        normal_eps: float = 1e-9,
        auto_offset: bool = False,
        offset_fraction: float = 0.5,
    ):
        """
        Initialize sample generator.

        Args:
            offset: Fixed off-surface offset. Ignored when auto_offset is set.
            value: Field value of off-surface samples (+value outside, -value inside)
            normal_eps: Normal length below which off-surface samples are skipped
            auto_offset: Estimate the offset from nearest-neighbor spacing
            offset_fraction: Multiple of the average spacing used by auto_offset
        """
        if not auto_offset and (offset is None or not offset > 0):
            raise ValueError(f"offset must be positive, got {offset}")
        self.offset = offset
        self.value = value
        self.normal_eps = normal_eps
        self.auto_offset = auto_offset
        self.offset_fraction = offset_fraction

    def resolve_offset(self, points) -> float:
        """Offset that generate() will use for these points."""
        if not self.auto_offset:
            return self.offset
        pts = as_oriented_points(points)
        offset = estimate_offset(pts[:, :3], self.offset_fraction)
        if not offset > 0:
            raise ValueError("Estimated offset is zero: input contains only coincident points")
        return offset

    def generate(self, points, verbose: bool = False, offset: Optional[float] = None) -> SampleSet:
        """
        Generate samples for the given oriented points.

        Args:
            points: Oriented points (N, 6)
            verbose: Print a summary
            offset: Offset already obtained from resolve_offset(points)

        Returns:
            SampleSet
        """
        if offset is None:
            offset = self.resolve_offset(points)
        samples = generate_samples(
            points, offset=offset, value=self.value, normal_eps=self.normal_eps
        )

        if verbose:
            print(f"Generated {len(samples)} samples:")
            print(f"  On-surface: {samples.N_on_surface}")
            print(f"  Off-surface: {len(samples) - samples.N_on_surface}")
            print(f"  Offset: {offset:.6g}, value: {self.value:.6g}")

        return samples

    @classmethod
    def get_default_args(cls):
        return {
            'offset': 0.01,
            'value': 0.01,
            'normal_eps': 1e-9,
            'auto_offset': False,
            'offset_fraction': 0.5,
        }

    @classmethod
    def add_argparse_args(cls, parser):
        parser.add_argument('--offset', type=float, default=0.01,
                            help='Off-surface sample distance along the normal')
        parser.add_argument('--value', type=float, default=0.01,
                            help='Field value of off-surface samples')
        parser.add_argument('--normal-eps', type=float, default=1e-9,
                            help='Normals shorter than this get no off-surface samples')
        parser.add_argument('--auto-offset', action='store_true',
                            help='Estimate offset from nearest-neighbor spacing')
        parser.add_argument('--offset-fraction', type=float, default=0.5,
                            help='Multiple of average spacing used with --auto-offset')
