"""
Least-Squares Solvers for the RBF Design System

All solvers return the minimum-norm least-squares solution of
min ||A x - b||^2, so a rank-deficient or overdetermined design matrix
never causes an outright failure. Singular values below
rcond * max(singular value) are treated as zero.
"""

import numpy as np
import scipy.linalg
from dataclasses import dataclass
from typing import Optional

from .errors import NumericalFailureError


@dataclass
class LstsqResult:
    """Container for a least-squares solve."""
    coefficients: np.ndarray                    # Solution x (n,)
    rank: int                                   # Effective rank of A
    singular_values: Optional[np.ndarray]       # None for non-SVD drivers
    residual_norm: float                        # ||A x - b||


def _residual_norm(A: np.ndarray, b: np.ndarray, x: np.ndarray) -> float:
    return float(np.linalg.norm(A @ x - b))


def solve_lstsq_svd(A: np.ndarray, b: np.ndarray, rcond: Optional[float] = None) -> LstsqResult:
    """
    Solve least squares via SVD (standard np.linalg.lstsq).

    Args:
        A: Design matrix (m, n)
        b: Right-hand side (m,)
        rcond: Cutoff ratio for small singular values (None = machine precision * max(m, n))

    Returns:
        LstsqResult
    """
    x, _, rank, s = np.linalg.lstsq(A, b, rcond=rcond)
    return LstsqResult(x, int(rank), s, _residual_norm(A, b, x))


def solve_lstsq_gelsd(A: np.ndarray, b: np.ndarray, rcond: Optional[float] = None) -> LstsqResult:
    """
    Solve least squares via scipy's divide-and-conquer SVD driver (gelsd).

    Args:
        A: Design matrix (m, n)
        b: Right-hand side (m,)
        rcond: Cutoff ratio for small singular values

    Returns:
        LstsqResult
    """
    x, _, rank, s = scipy.linalg.lstsq(A, b, cond=rcond, lapack_driver='gelsd')
    return LstsqResult(x, int(rank), s, _residual_norm(A, b, x))


def solve_lstsq_gelsy(A: np.ndarray, b: np.ndarray, rcond: Optional[float] = None) -> LstsqResult:
    """
    Solve least squares via complete orthogonal factorization (gelsy).

    Faster than SVD on large systems; still returns the minimum-norm solution.
    Singular values are not computed by this driver.
    """
    x, _, rank, _ = scipy.linalg.lstsq(A, b, cond=rcond, lapack_driver='gelsy')
    return LstsqResult(x, int(rank), None, _residual_norm(A, b, x))


SOLVERS = {
    'svd': solve_lstsq_svd,
    'gelsd': solve_lstsq_gelsd,
    'gelsy': solve_lstsq_gelsy,
}


def get_solver(name: str):
    """Get a least-squares solver by name."""
    if name not in SOLVERS:
        raise ValueError(f"Unknown solver: {name}. Available: {list(SOLVERS.keys())}")
    return SOLVERS[name]


def solve(A: np.ndarray, b: np.ndarray, solver: str = 'svd', rcond: Optional[float] = None) -> LstsqResult:
    """
    Run the named solver and reject non-finite output.

    Raises:
        NumericalFailureError: LAPACK did not converge, or the solution
            contains NaN/Inf
    """
    solve_fn = get_solver(solver)

    if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
        raise NumericalFailureError("Design system contains non-finite entries")

    try:
        with np.errstate(over='ignore', invalid='ignore'):
            result = solve_fn(A, b, rcond)
    except np.linalg.LinAlgError as e:
        raise NumericalFailureError(f"Least-squares solve failed ({solver}): {e}") from e

    if not np.all(np.isfinite(result.coefficients)):
        raise NumericalFailureError(f"Least-squares solve ({solver}) produced non-finite coefficients")

    return result
