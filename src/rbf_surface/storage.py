"""
Point Cloud and Model I/O

Point clouds are whitespace-separated text, one oriented point per line:
    x y z nx ny nz
Models are stored as MATLAB .mat files via scipy.io.
"""

import os
import numpy as np
import scipy.io as sio

from .errors import InvalidStateError
from .model import RBFModel


def load_point_cloud(path: str, verbose: bool = False) -> np.ndarray:
    """
    Load an oriented point cloud from a text file.

    Lines starting with "#" and lines with fewer than six tokens are
    skipped; tokens past the sixth are ignored.

    Args:
        path: Text file path
        verbose: Print point count

    Returns:
        points: (N, 6) array of x, y, z, nx, ny, nz
    """
    rows = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            tokens = line.split()
            if len(tokens) < 6 or tokens[0].startswith('#'):
                continue
            try:
                rows.append([float(t) for t in tokens[:6]])
            except ValueError as e:
                raise ValueError(f"{path}:{line_no}: cannot parse oriented point: {e}") from e

    points = np.array(rows, dtype=float).reshape(-1, 6)

    if verbose:
        print(f"Loaded {points.shape[0]} points from {path}")

    return points


def save_point_cloud(path: str, points: np.ndarray):
    """Write oriented points (N, 6) in the format read by load_point_cloud."""
    points = np.asarray(points, dtype=float).reshape(-1, 6)
    np.savetxt(path, points, fmt='%.9g')


def save_model(path: str, model):
    """
    Save a built model's centers, coefficients, kernel name and shape parameter.

    Args:
        path: Output .mat path
        model: Built RBFModel
    """
    if not model.is_built:
        raise InvalidStateError("Cannot save a model that has not been built")

    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)

    sio.savemat(path, {
        'centers': np.asarray(model.centers).reshape(-1, 3),
        'coefficients': np.asarray(model.coefficients).reshape(-1, 1),
        'kernel': model.kernel,
        'eps': float(model.eps),
    })


def load_model(path: str, **kwargs):
    """
    Load a model written by save_model.

    Args:
        path: .mat file path
        **kwargs: Extra RBFModel arguments (e.g. block_size)

    Returns:
        Built RBFModel
    """
    data = sio.loadmat(path)
    centers = np.asarray(data['centers'], dtype=float).reshape(-1, 3)
    coefficients = np.asarray(data['coefficients'], dtype=float).reshape(-1)
    kernel = str(np.asarray(data['kernel']).ravel()[0]).strip()
    if 'eps' in data:
        kwargs.setdefault('eps', float(np.asarray(data['eps']).ravel()[0]))
    return RBFModel.from_coefficients(centers, coefficients, kernel=kernel, **kwargs)


def save_grid(path: str, values: np.ndarray, bbox):
    """Save a sampled field volume and its bounds."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    sio.savemat(path, {
        'values': np.asarray(values, dtype=float),
        'lower': bbox.lower,
        'upper': bbox.upper,
    })
