"""Functional solve() entry point.

solve() wraps a vectorized residual function in a ResidualKernel, runs the
Levenberg-Marquardt Minimizer on it and packages the outcome as a
SolverResult, in the manner of scipy.optimize.least_squares.
"""

from typing import Callable, List, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from marquardt._kernel import ResidualKernel
from marquardt._linalg import LinearSolver, full_pivot_solve
from marquardt._minimizer import Minimizer
from marquardt._types import MinimizerConfig, SolverResult


def solve(
    residual_fn: Callable[[NDArray[np.float64]], NDArray[np.float64]],
    x0: ArrayLike,
    *,
    jacobian_fn: Optional[Callable[[NDArray[np.float64]], NDArray[np.float64]]] = None,
    tau: float = 1e-3,
    tol: float = 1e-12,
    xtol: Optional[float] = None,
    maxiter: int = 100,
    batch_size: Optional[int] = None,
    linear_solver: LinearSolver = full_pivot_solve,
    verbose: int = 0,
    callback: Optional[Callable[[NDArray[np.float64], NDArray[np.float64]], None]] = None,
    history: bool = False,
    return_jacobian: bool = False,
) -> SolverResult:
    """Minimize the sum of squares of a residual function.

    Args:
        residual_fn: Function f(x) -> residuals. Must return array of shape (m,).
        x0: Initial guess. Array-like of shape (n,).
        jacobian_fn: Optional analytical Jacobian function J(x) -> (m, n) matrix.
            If None, uses finite-difference approximation.
        tau: Initial damping relative to max(diag(J^T J)). Default 1e-3.
        tol: Gradient tolerance on max|J^T f|. Default 1e-12.
        xtol: Relative step tolerance. Defaults to tol.
        maxiter: Maximum number of iterations. Default 100.
        batch_size: Residuals evaluated per batch. Must divide m. Default m.
        linear_solver: Solver for the damped normal equations.
        verbose: Verbosity level:
            -1: Silent (no output)
             0: Final summary only (default)
             1: Progress every 10 iterations
             2: One line per accepted or rejected step
        callback: Optional function called with (x, f) after each iteration
            and once at the end.
        history: If True, include list of solution iterates in result. Default False.
        return_jacobian: If True, include final Jacobian in result. Default False.

    Returns:
        SolverResult with fields:
            x: Solution vector
            success: True if a convergence test was satisfied
            message: Status message
            nfev: Total function evaluations
            njev: Total Jacobian evaluations
            fun: Residual vector at solution
            residual_norm: L2 norm of residual
            residual2: Sum of squared residuals
            optimality: Infinity norm of J^T f
            iterations: Levenberg-Marquardt iterations
            status: "gradient", "small_step" or "max_iterations"
            history: List of iterates (if requested)
            jac: Jacobian at solution (if requested)

    Raises:
        ValueError: If x0 is empty or batch_size does not divide m.
        SingularSystemError: If the damped normal equations are singular.

    Example:
        >>> import numpy as np
        >>> from marquardt import solve
        >>> def system(x):
        ...     return x ** 2 - np.array([1.0, 4.0])
        >>> result = solve(system, np.array([0.5, 1.5]), verbose=-1)
        >>> print(result.x)  # [1.0, 2.0]
        >>> print(result.success)  # True
    """
    kernel = ResidualKernel(residual_fn, x0, jacobian_fn=jacobian_fn, batch_size=batch_size)

    history_list: List[NDArray[np.float64]] = []

    def progress(k: ResidualKernel, residual2: float, is_final: bool) -> None:
        if history and not is_final:
            history_list.append(k.get_state())
        if callback is not None:
            callback(k.get_state(), k.residuals().copy())

    track = history or callback is not None
    config = MinimizerConfig(
        tau=tau,
        epsilon1=tol,
        epsilon2=tol if xtol is None else xtol,
        max_num_iterations=maxiter,
        progress_frequency=1,
        progress_callback=progress if track else None,
        linear_solver=linear_solver,
        verbose=verbose,
    )
    outcome = Minimizer(config).run(kernel)

    final_fun = kernel.residuals().copy()
    residual_norm = float(np.linalg.norm(final_fun))

    # Optimality = ||J^T @ f||_inf (gradient of 0.5 * ||f||^2)
    final_jac = kernel.jacobian()
    optimality = float(np.max(np.abs(final_jac.T @ final_fun))) if final_fun.size else 0.0

    return SolverResult(
        x=kernel.get_state(),
        success=outcome.converged,
        message=outcome.message,
        nfev=kernel.nfev,
        njev=kernel.njev,
        fun=final_fun,
        residual_norm=residual_norm,
        residual2=outcome.residual2,
        optimality=optimality,
        iterations=outcome.iterations,
        status=outcome.status,
        history=history_list if history else None,
        jac=final_jac.copy() if return_jacobian else None,
    )
