"""marquardt: Levenberg-Marquardt nonlinear least-squares minimizer."""

try:
    from marquardt._version import __version__
except ImportError:
    __version__ = "0.1.0"

from marquardt._core import solve
from marquardt._kernel import Kernel, ResidualKernel, compute_jacobian
from marquardt._linalg import SingularSystemError, full_pivot_solve, scipy_solve
from marquardt._minimizer import Minimizer
from marquardt._types import IterationRecord, MinimizeResult, MinimizerConfig, SolverResult

__all__ = [
    "__version__",
    "solve",
    "Minimizer",
    "MinimizerConfig",
    "MinimizeResult",
    "IterationRecord",
    "SolverResult",
    "Kernel",
    "ResidualKernel",
    "compute_jacobian",
    "SingularSystemError",
    "full_pivot_solve",
    "scipy_solve",
]
