"""
Radial Basis Functions for Implicit Surface Fitting

Implements the radial kernels phi(r) and their radial derivatives dphi/dr.
The reconstruction default is the cubic polyharmonic spline phi(r) = r^3.
"""

import numpy as np
from functools import partial


def phs(r: np.ndarray, m: int = 3) -> np.ndarray:
    """
    Polyharmonic Spline (PHS) kernel.

    phi(r) = r^m for odd m
    phi(r) = r^m * log(r) for even m (with 0*log(0) = 0)

    m=1 gives the linear kernel, m=2 the thin-plate spline, m=3 the cubic.

    Args:
        r: Distance array (non-negative)
        m: Order of PHS (positive integer)

    Returns:
        Kernel values phi(r)
    """
    r = np.asarray(r, dtype=float)
    if m % 2 == 1:
        return np.power(r, m)
    with np.errstate(divide='ignore', invalid='ignore'):
        result = np.power(r, m) * np.log(r)
    return np.where(r == 0, 0.0, result)


def phs_derivative(r: np.ndarray, m: int = 3) -> np.ndarray:
    """
    Radial derivative of the PHS kernel.

    d/dr r^m          = m * r^(m-1)
    d/dr r^m * log(r) = r^(m-1) * (m * log(r) + 1)

    Args:
        r: Distance array
        m: Order of PHS

    Returns:
        dphi/dr values
    """
    r = np.asarray(r, dtype=float)
    if m % 2 == 1:
        return m * np.power(r, m - 1)
    with np.errstate(divide='ignore', invalid='ignore'):
        result = np.power(r, m - 1) * (m * np.log(r) + 1)
    return np.where(r == 0, 0.0, result)


def cubic(r: np.ndarray) -> np.ndarray:
    """Cubic kernel phi(r) = r^3."""
    return phs(r, m=3)


def cubic_derivative(r: np.ndarray) -> np.ndarray:
    """dphi/dr = 3 r^2 for the cubic kernel."""
    return phs_derivative(r, m=3)


def gaussian(r: np.ndarray, eps: float = 1.0) -> np.ndarray:
    """
    Gaussian kernel: phi(r) = exp(-eps^2 * r^2)

    Args:
        r: Distance array
        eps: Shape parameter

    Returns:
        Kernel values
    """
    return np.exp(-eps**2 * np.asarray(r, dtype=float)**2)


def gaussian_derivative(r: np.ndarray, eps: float = 1.0) -> np.ndarray:
    """dphi/dr = -2 eps^2 r exp(-eps^2 r^2)"""
    r = np.asarray(r, dtype=float)
    return -2 * eps**2 * r * np.exp(-eps**2 * r**2)


def multiquadric(r: np.ndarray, eps: float = 1.0) -> np.ndarray:
    """
    Multiquadric (MQ) kernel: phi(r) = sqrt(1 + eps^2 * r^2)

    Args:
        r: Distance array
        eps: Shape parameter

    Returns:
        Kernel values
    """
    return np.sqrt(1 + eps**2 * np.asarray(r, dtype=float)**2)


def multiquadric_derivative(r: np.ndarray, eps: float = 1.0) -> np.ndarray:
    """dphi/dr = eps^2 r / sqrt(1 + eps^2 r^2)"""
    r = np.asarray(r, dtype=float)
    return eps**2 * r / np.sqrt(1 + eps**2 * r**2)


def inverse_multiquadric(r: np.ndarray, eps: float = 1.0) -> np.ndarray:
    """
    Inverse Multiquadric (IMQ) kernel: phi(r) = 1/sqrt(1 + eps^2 * r^2)

    Args:
        r: Distance array
        eps: Shape parameter

    Returns:
        Kernel values
    """
    return 1.0 / np.sqrt(1 + eps**2 * np.asarray(r, dtype=float)**2)


def inverse_multiquadric_derivative(r: np.ndarray, eps: float = 1.0) -> np.ndarray:
    """dphi/dr = -eps^2 r / (1 + eps^2 r^2)^(3/2)"""
    r = np.asarray(r, dtype=float)
    return -eps**2 * r / (1 + eps**2 * r**2)**1.5


# Convenience dictionary for kernel selection: name -> (phi, dphi/dr)
KERNELS = {
    'cubic': (cubic, cubic_derivative),
    'linear': (partial(phs, m=1), partial(phs_derivative, m=1)),
    'thin-plate': (partial(phs, m=2), partial(phs_derivative, m=2)),
    'quintic': (partial(phs, m=5), partial(phs_derivative, m=5)),
    'gaussian': (gaussian, gaussian_derivative),
    'mq': (multiquadric, multiquadric_derivative),
    'imq': (inverse_multiquadric, inverse_multiquadric_derivative),
}

# Kernels taking a shape parameter eps
SHAPE_PARAMETER_KERNELS = ('gaussian', 'mq', 'imq')


def get_kernel(name: str, eps: float = 1.0):
    """
    Get kernel function and its radial derivative by name.

    Args:
        name: Kernel name (see KERNELS)
        eps: Shape parameter, bound into gaussian/mq/imq and ignored otherwise

    Returns:
        (phi, dphi/dr)
    """
    if name not in KERNELS:
        raise ValueError(f"Unknown kernel: {name}. Available: {list(KERNELS.keys())}")
    phi, dphi = KERNELS[name]
    if name in SHAPE_PARAMETER_KERNELS:
        if not eps > 0:
            raise ValueError(f"Shape parameter eps must be positive, got {eps}")
        return partial(phi, eps=eps), partial(dphi, eps=eps)
    return phi, dphi
