"""
RBF Implicit Surface Reconstruction

Reconstructs a signed scalar field from an oriented point cloud so that the
field's zero level set approximates the sampled surface:

    points --SampleGenerator--> samples --RBFModel.build--> field --evaluate--> f(x)

Fitting uses the cubic radial basis function phi(r) = r^3 centered on the
on-surface samples, solved in the least-squares sense.
"""

from .errors import (
    RBFSurfaceError,
    InvalidStateError,
    DegenerateInputError,
    NumericalFailureError,
    BuildCancelledError,
)
from .kernels import phs, phs_derivative, cubic, gaussian, multiquadric, get_kernel, KERNELS
from .samples import (
    Sample,
    SampleSet,
    SampleGenerator,
    generate_samples,
    estimate_offset,
    CENTER_TOL,
)
from .solvers import LstsqResult, get_solver, solve, SOLVERS
from .model import (
    RBFModel,
    FieldCoefficients,
    BuildResult,
    extract_centers,
    assemble_design_matrix,
)
from .bounds import BoundingBox, grid_points, evaluate_grid
from .storage import load_point_cloud, save_point_cloud, save_model, load_model, save_grid

__version__ = '0.1.0'

__all__ = [
    'RBFSurfaceError', 'InvalidStateError', 'DegenerateInputError',
    'NumericalFailureError', 'BuildCancelledError',
    'phs', 'phs_derivative', 'cubic', 'gaussian', 'multiquadric',
    'get_kernel', 'KERNELS',
    'Sample', 'SampleSet', 'SampleGenerator',
    'generate_samples', 'estimate_offset', 'CENTER_TOL',
    'LstsqResult', 'get_solver', 'solve', 'SOLVERS',
    'RBFModel', 'FieldCoefficients', 'BuildResult',
    'extract_centers', 'assemble_design_matrix',
    'BoundingBox', 'grid_points', 'evaluate_grid',
    'load_point_cloud', 'save_point_cloud', 'save_model', 'load_model', 'save_grid',
]
