"""
Exception types raised by the surface reconstruction core.
"""


class RBFSurfaceError(Exception):
    """Base class for all reconstruction errors."""


class InvalidStateError(RBFSurfaceError, RuntimeError):
    """Model used before build() completed, or built twice."""


class DegenerateInputError(RBFSurfaceError, ValueError):
    """Build attempted on an empty sample set."""


class NumericalFailureError(RBFSurfaceError, RuntimeError):
    """Least-squares solve failed or produced non-finite coefficients."""


class BuildCancelledError(RBFSurfaceError, RuntimeError):
    """Build aborted through its cancel event."""
