"""
RBF Implicit Surface Model

Fits a scalar field f(x) = sum_j lambda_j * phi(||x - c_j||) to a sample set
and evaluates it. Centers c_j are the on-surface samples (value 0); the
coefficients lambda are the minimum-norm least-squares solution of

    A lambda = b,   A[i, j] = phi(||x_i - c_j||),   b[i] = value_i

over all N samples (on- and off-surface), so the system is N x K with
N >= K and usually overdetermined.

Usage:
    model = RBFModel(kernel='cubic', solver='svd')
    result = model.build(samples)
    f = model.evaluate([0.1, 0.2, 0.3])
"""

import time
import warnings
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from scipy.spatial.distance import cdist
from typing import Any, Dict, Optional

from .errors import (
    BuildCancelledError,
    DegenerateInputError,
    InvalidStateError,
)
from .kernels import get_kernel
from .samples import CENTER_TOL, SampleSet
from .solvers import get_solver, solve


@dataclass(frozen=True, eq=False)
class FieldCoefficients:
    """Built state of a model: centers and their coefficients, in lock-step order."""
    centers: np.ndarray         # (K, 3)
    coefficients: np.ndarray    # (K,)

    def __post_init__(self):
        centers = np.array(self.centers, dtype=float).reshape(-1, 3)
        coefficients = np.array(self.coefficients, dtype=float).reshape(-1)
        if centers.shape[0] != coefficients.shape[0]:
            raise ValueError(
                f"centers ({centers.shape[0]}) and coefficients "
                f"({coefficients.shape[0]}) must have the same length"
            )
        centers.setflags(write=False)
        coefficients.setflags(write=False)
        object.__setattr__(self, 'centers', centers)
        object.__setattr__(self, 'coefficients', coefficients)

    @property
    def N_centers(self) -> int:
        return self.coefficients.shape[0]


@dataclass
class BuildResult:
    """Container for build diagnostics."""
    n_samples: int                              # Rows of the design matrix
    n_centers: int                              # Columns of the design matrix
    rank: int                                   # Effective rank found by the solver
    residual_norm: float                        # ||A lambda - b||
    max_abs_residual: float                     # max_i |(A lambda - b)_i|
    build_time: float                           # Assembly + solve time (seconds)
    singular_values: Optional[np.ndarray] = None


def _as_sample_set(samples) -> SampleSet:
    if isinstance(samples, SampleSet):
        return samples
    return SampleSet.from_samples(samples)


def _as_points(points) -> np.ndarray:
    X = np.asarray(points, dtype=float)
    if X.ndim == 1:
        X = X.reshape(1, -1)
    if X.ndim != 2 or X.shape[1] != 3:
        raise ValueError(f"Points must have shape (3,) or (M, 3), got {np.shape(points)}")
    return X


def extract_centers(positions: np.ndarray, values: np.ndarray, tol: float = CENTER_TOL) -> np.ndarray:
    """
    Select RBF centers: positions of samples with |value| < tol, in sample order.

    Args:
        positions: Sample positions (N, 3)
        values: Sample values (N,)
        tol: On-surface tolerance

    Returns:
        centers: (K, 3)
    """
    positions = np.asarray(positions, dtype=float).reshape(-1, 3)
    values = np.asarray(values, dtype=float).reshape(-1)
    return positions[np.abs(values) < tol].copy()


def assemble_design_matrix(
    positions: np.ndarray,
    centers: np.ndarray,
    kernel: str = 'cubic',
    block_size: int = 2048,
    n_workers: int = 1,
    cancel_event=None,
    eps: float = 1.0,
) -> np.ndarray:
    """
    Build the dense design matrix A[i, j] = phi(||positions_i - centers_j||).

    Rows are filled in blocks of block_size. Blocks are independent, so with
    n_workers > 1 they are computed on a thread pool; each block writes a
    disjoint slice of A.

    Args:
        positions: Sample positions (N, 3)
        centers: Center positions (K, 3)
        kernel: Kernel name (see kernels.KERNELS)
        block_size: Rows per block
        n_workers: Threads used for assembly
        cancel_event: Optional threading.Event; checked before every block
        eps: Shape parameter for gaussian/mq/imq

    Returns:
        A: (N, K)
    """
    phi, _ = get_kernel(kernel, eps)
    positions = np.asarray(positions, dtype=float).reshape(-1, 3)
    centers = np.asarray(centers, dtype=float).reshape(-1, 3)
    N, K = positions.shape[0], centers.shape[0]

    A = np.empty((N, K), dtype=float)
    if N == 0 or K == 0:
        return A

    def fill(start):
        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelledError("Build cancelled during matrix assembly")
        stop = min(start + block_size, N)
        A[start:stop] = phi(cdist(positions[start:stop], centers))

    starts = range(0, N, block_size)
    if n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            # list() re-raises the first failure from any block
            list(pool.map(fill, starts))
    else:
        for start in starts:
            fill(start)

    return A


class RBFModel:
    """
    RBF implicit surface model.

    A model is Unbuilt until build() succeeds, then Built for good: the
    centers and coefficients are held together in one immutable
    FieldCoefficients and are never replaced independently. Evaluating an
    Unbuilt model raises InvalidStateError.
    """

    def __init__(
        self,
        kernel: str = 'cubic',
        solver: str = 'svd',
        rcond: Optional[float] = None,
        center_tol: float = CENTER_TOL,
        block_size: int = 2048,
        n_workers: int = 1,
        eps: float = 1.0,
    ):
        """
        Args:
            kernel: Radial kernel name (default 'cubic', phi(r) = r^3)
            solver: Least-squares solver ('svd', 'gelsd', 'gelsy')
            rcond: Singular value cutoff ratio (None = machine precision based)
            center_tol: |value| below which a sample becomes a center
            block_size: Rows per assembly/evaluation block
            n_workers: Threads used for matrix assembly
            eps: Shape parameter for gaussian/mq/imq (ignored by PHS kernels)
        """
        self._phi, self._dphi = get_kernel(kernel, eps)
        get_solver(solver)
        if block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {block_size}")
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")

        self.kernel = kernel
        self.solver = solver
        self.rcond = rcond
        self.center_tol = center_tol
        self.block_size = block_size
        self.n_workers = n_workers
        self.eps = eps

        self._field: Optional[FieldCoefficients] = None

    @property
    def is_built(self) -> bool:
        return self._field is not None

    def _require_built(self) -> FieldCoefficients:
        if self._field is None:
            raise InvalidStateError("Model not built. Call build() first.")
        return self._field

    @property
    def field(self) -> FieldCoefficients:
        return self._require_built()

    @property
    def centers(self) -> np.ndarray:
        return self._require_built().centers

    @property
    def coefficients(self) -> np.ndarray:
        return self._require_built().coefficients

    def reset(self):
        """Return the model to the Unbuilt state."""
        self._field = None

    def build(self, samples, verbose: bool = False, cancel_event=None) -> BuildResult:
        """
        Fit centers and coefficients to a sample set.

        Args:
            samples: SampleSet or sequence of Sample
            verbose: Print progress
            cancel_event: Optional threading.Event to abort the build

        Returns:
            BuildResult with solve diagnostics

        Raises:
            InvalidStateError: Model is already built
            DegenerateInputError: No samples
            NumericalFailureError: Solve failed or returned non-finite values
            BuildCancelledError: cancel_event was set
        """
        if self._field is not None:
            raise InvalidStateError("Model already built. Call reset() or create a new model.")

        samples = _as_sample_set(samples)
        N = len(samples)
        if N == 0:
            raise DegenerateInputError("Cannot build a model from zero samples")

        t_start = time.time()
        centers = extract_centers(samples.positions, samples.values, self.center_tol)
        K = centers.shape[0]
        b = np.array(samples.values)

        if verbose:
            print("Building RBF model:")
            print(f"  Samples: {N}")
            print(f"  Centers: {K}")
            print(f"  Kernel: {self.kernel}, solver: {self.solver}")

        if K == 0:
            field_ = FieldCoefficients(np.zeros((0, 3)), np.zeros(0))
            result = BuildResult(
                n_samples=N,
                n_centers=0,
                rank=0,
                residual_norm=float(np.linalg.norm(b)),
                max_abs_residual=float(np.abs(b).max()),
                build_time=time.time() - t_start,
            )
            self._field = field_
            if verbose:
                print("  No on-surface samples: model is identically zero")
            return result

        A = assemble_design_matrix(
            samples.positions, centers,
            kernel=self.kernel,
            block_size=self.block_size,
            n_workers=self.n_workers,
            cancel_event=cancel_event,
            eps=self.eps,
        )
        if verbose:
            print(f"  Design matrix: {A.shape}")

        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelledError("Build cancelled before solve")

        lstsq = solve(A, b, solver=self.solver, rcond=self.rcond)
        residual = A @ lstsq.coefficients - b

        field_ = FieldCoefficients(centers, lstsq.coefficients)
        result = BuildResult(
            n_samples=N,
            n_centers=K,
            rank=lstsq.rank,
            residual_norm=lstsq.residual_norm,
            max_abs_residual=float(np.abs(residual).max()),
            build_time=time.time() - t_start,
            singular_values=lstsq.singular_values,
        )

        # Warn before committing: an escalated warning must leave the model Unbuilt
        if lstsq.rank < K:
            warnings.warn(
                f"Rank-deficient RBF system (rank {lstsq.rank} < {K} centers): "
                f"returning minimum-norm solution",
                RuntimeWarning,
            )
        self._field = field_

        if verbose:
            print(f"  Rank: {result.rank}")
            print(f"  Residual norm: {result.residual_norm:.6e}")
            print(f"  Max abs residual: {result.max_abs_residual:.6e}")
            print(f"  Build time: {result.build_time:.3f}s")

        return result

    def evaluate(self, point) -> float:
        """
        Evaluate f at a single point.

        Args:
            point: Coordinates (3,)

        Returns:
            f(point)
        """
        field_ = self._require_built()
        x = np.asarray(point, dtype=float)
        if x.shape != (3,):
            raise ValueError(f"Point must have shape (3,), got {x.shape}")
        if field_.N_centers == 0:
            return 0.0
        phi = self._phi(cdist(x[np.newaxis, :], field_.centers))[0]
        return float(phi @ field_.coefficients)

    def evaluate_batch(self, points) -> np.ndarray:
        """
        Evaluate f at many points.

        Args:
            points: Coordinates (M, 3)

        Returns:
            f values (M,)
        """
        field_ = self._require_built()
        X = _as_points(points)
        out = np.zeros(X.shape[0])
        if field_.N_centers == 0:
            return out
        for start in range(0, X.shape[0], self.block_size):
            stop = min(start + self.block_size, X.shape[0])
            out[start:stop] = self._phi(cdist(X[start:stop], field_.centers)) @ field_.coefficients
        return out

    def gradient(self, point) -> np.ndarray:
        """
        Gradient of f at a single point.

        grad f(x) = sum_j lambda_j * phi'(r_j) * (x - c_j) / r_j

        Centers coinciding with x contribute nothing.

        Args:
            point: Coordinates (3,)

        Returns:
            grad f (3,)
        """
        x = np.asarray(point, dtype=float)
        if x.shape != (3,):
            raise ValueError(f"Point must have shape (3,), got {x.shape}")
        return self.gradient_batch(x[np.newaxis, :])[0]

    def gradient_batch(self, points) -> np.ndarray:
        """
        Gradient of f at many points (e.g. per-vertex normals for shading).

        Args:
            points: Coordinates (M, 3)

        Returns:
            gradients (M, 3)
        """
        field_ = self._require_built()
        X = _as_points(points)
        out = np.zeros_like(X)
        if field_.N_centers == 0:
            return out
        for start in range(0, X.shape[0], self.block_size):
            stop = min(start + self.block_size, X.shape[0])
            diff = X[start:stop, np.newaxis, :] - field_.centers[np.newaxis, :, :]
            r = np.linalg.norm(diff, axis=2)
            safe_r = np.where(r > 0, r, 1.0)
            w = np.where(r > 0, self._dphi(r) / safe_r, 0.0) * field_.coefficients
            out[start:stop] = np.einsum('mk,mkd->md', w, diff)
        return out

    def residuals(self, samples) -> np.ndarray:
        """f(x_i) - value_i for every sample."""
        samples = _as_sample_set(samples)
        if len(samples) == 0:
            self._require_built()
            return np.zeros(0)
        return self.evaluate_batch(samples.positions) - samples.values

    @classmethod
    def from_coefficients(cls, centers, coefficients, kernel: str = 'cubic', **kwargs) -> 'RBFModel':
        """Create a Built model from previously computed centers and coefficients."""
        model = cls(kernel=kernel, **kwargs)
        model._field = FieldCoefficients(centers, coefficients)
        return model

    @classmethod
    def get_default_args(cls) -> Dict[str, Any]:
        return {
            'kernel': 'cubic',
            'solver': 'svd',
            'rcond': None,
            'center_tol': CENTER_TOL,
            'block_size': 2048,
            'n_workers': 1,
            'eps': 1.0,
        }

    @classmethod
    def add_argparse_args(cls, parser):
        parser.add_argument('--kernel', type=str, default='cubic',
                            help='Radial kernel (default: cubic, phi(r) = r^3)')
        parser.add_argument('--solver', type=str, default='svd',
                            choices=['svd', 'gelsd', 'gelsy'],
                            help='Least-squares solver')
        parser.add_argument('--rcond', type=float, default=None,
                            help='Singular value cutoff ratio')
        parser.add_argument('--block-size', type=int, default=2048,
                            help='Rows per assembly/evaluation block')
        parser.add_argument('--n-workers', type=int, default=1,
                            help='Threads for design matrix assembly')
        parser.add_argument('--eps', type=float, default=1.0,
                            help='Shape parameter for gaussian, mq and imq kernels')
