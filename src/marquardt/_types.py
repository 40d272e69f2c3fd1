"""Public type definitions for the marquardt least-squares package.

This module defines the core data structures:
- MinimizerConfig: Hyperparameters of a Minimizer run
- IterationRecord: One committed Levenberg-Marquardt iteration
- MinimizeResult: Outcome of Minimizer.run()
- SolverResult: Immutable result container returned by solve()
"""

from dataclasses import dataclass, field, fields
from typing import Any, Callable, Iterator, List, Optional

import numpy as np
from numpy.typing import NDArray

from marquardt._linalg import LinearSolver, full_pivot_solve

# Termination causes. All three are normal exits.
STATUS_GRADIENT = "gradient"
STATUS_SMALL_STEP = "small_step"
STATUS_MAX_ITERATIONS = "max_iterations"

ProgressCallback = Callable[[Any, float, bool], None]


class _FieldAccess:
    """Dict-style access to dataclass fields: result['x'], 'x' in result."""

    def __getitem__(self, key: str) -> object:
        return getattr(self, key)

    def keys(self) -> List[str]:
        """Return list of field names for dict-like iteration."""
        return [f.name for f in fields(self)]  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __contains__(self, key: str) -> bool:
        return key in self.keys()


@dataclass(frozen=True)
class MinimizerConfig:
    """Configuration of a Minimizer, fixed for the duration of a run.

    Attributes:
        tau: Initial damping is tau * max(diag(JTJ)). Default 1e-3.
        epsilon1: Gradient test threshold on max|JTr|. Default 1e-12.
        epsilon2: Relative step-size threshold. Default 1e-12.
        max_num_iterations: Hard iteration cap. Default 100.
        progress_frequency: Report progress every this many iterations. Default 1.
        progress_callback: Optional callback(kernel, residual2, is_final).
        linear_solver: Callable solver(a, b) -> x for the damped system.
        history: If True, record an IterationRecord per iteration. Default False.
        verbose: Verbosity level (-1=silent, 0=summary, 1=progress, 2=steps).
    """

    tau: float = 1e-3
    epsilon1: float = 1e-12
    epsilon2: float = 1e-12
    max_num_iterations: int = 100
    progress_frequency: int = 1
    progress_callback: Optional[ProgressCallback] = None
    linear_solver: LinearSolver = full_pivot_solve
    history: bool = False
    verbose: int = 0


@dataclass(frozen=True)
class IterationRecord:
    """One iteration that proposed a step (accepted or rejected).

    mu and nu are the damping values after this iteration's update;
    residual2 is the sum of squares at the accepted state afterwards.
    """

    iteration: int
    accepted: bool
    rho: float
    mu: float
    nu: float
    residual2: float
    step_norm: float


@dataclass(frozen=True)
class MinimizeResult(_FieldAccess):
    """Result of Minimizer.run().

    Attributes:
        residual2: Sum of squared residuals at the final state.
        x: Copy of the kernel state at exit.
        status: One of "gradient", "small_step", "max_iterations".
        converged: True unless the iteration cap was exhausted.
        message: Human-readable description of the exit cause.
        iterations: Number of loop passes that proposed a step.
        nfev: Number of full sweeps over the value batches.
        njev: Number of full sweeps over the derivative batches.
        mu: Damping factor at exit.
        nu: Damping growth rate at exit.
        initial_mu: Damping factor before the first iteration.
        gradient_norm: max|JTr| at the final state.
        history: IterationRecords if requested, else None.
    """

    residual2: float
    x: NDArray[np.float64]
    status: str
    converged: bool
    message: str
    iterations: int
    nfev: int
    njev: int
    mu: float
    nu: float
    initial_mu: float
    gradient_norm: float
    history: Optional[List[IterationRecord]] = None


@dataclass(frozen=True)
class SolverResult(_FieldAccess):
    """Result of marquardt.solve() - immutable container with dict-like access.

    Attributes:
        x: Solution vector. Shape (n,) where n is the number of variables.
        success: True if a convergence test stopped the solver.
        message: Human-readable status message describing the outcome.
        nfev: Number of residual function evaluations performed.
        njev: Number of Jacobian evaluations performed.
        fun: Residual vector at the solution. Shape (m,).
        residual_norm: L2 norm of the residual at the solution.
        residual2: Sum of squared residuals at the solution.
        optimality: Infinity norm of J^T f at the solution.
        iterations: Number of Levenberg-Marquardt iterations.
        status: Termination cause, see MinimizeResult.status.
        history: Optional list of solution iterates.
        jac: Optional Jacobian matrix at the solution. Shape (m, n).
    """

    x: NDArray[np.float64]
    success: bool
    message: str
    nfev: int
    njev: int
    fun: NDArray[np.float64]
    residual_norm: float = field(default=0.0)
    residual2: float = field(default=0.0)
    optimality: float = field(default=0.0)
    iterations: int = 0
    status: str = STATUS_MAX_ITERATIONS
    history: Optional[List[NDArray[np.float64]]] = None
    jac: Optional[NDArray[np.float64]] = None
