"""Levenberg-Marquardt minimizer over a batched Kernel.

The Minimizer drives a Kernel (see marquardt._kernel) through damped
Gauss-Newton iterations with Marquardt's adaptive damping update:

1. Assemble the normal equations JTJ, JTr and the residual sum of squares
   at the kernel's state, in extended precision.
2. Solve (JTJ + mu*I) x = JTr. The kernel subtracts x from its state,
   so the step actually taken is -x.
3. Compare the actual reduction of the sum of squares with the reduction
   predicted by the linear model. Accept the step if the sum of squares
   went down and shrink mu; otherwise restore the state and grow mu.

The loop stops when the gradient is small, the step is negligible against
the state, or the iteration cap is reached.
"""

import dataclasses
import math
from typing import List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from marquardt._kernel import Kernel
from marquardt._types import (
    STATUS_GRADIENT,
    STATUS_MAX_ITERATIONS,
    STATUS_SMALL_STEP,
    IterationRecord,
    MinimizeResult,
    MinimizerConfig,
)

# Accumulator dtype for sums over many residuals
_EXTENDED = np.longdouble


class Minimizer:
    """Levenberg-Marquardt least-squares minimizer.

    Args:
        config: Optional MinimizerConfig. Defaults to MinimizerConfig().
        **overrides: Field values replacing those of config.

    Raises:
        ValueError: If the resulting configuration is invalid.

    Example:
        >>> from marquardt import Minimizer, ResidualKernel
        >>> kernel = ResidualKernel(lambda x: x - 5.0, [0.0])
        >>> Minimizer(verbose=-1).minimize(kernel)  # ~0.0
        >>> kernel.state  # ~[5.0]
    """

    def __init__(self, config: Optional[MinimizerConfig] = None, **overrides):
        if config is None:
            config = MinimizerConfig()
        if overrides:
            config = dataclasses.replace(config, **overrides)
        _validate_config(config)
        self.config = config

    def minimize(self, kernel: Kernel) -> float:
        """Minimize the kernel's sum of squares in place.

        Returns:
            The residual sum of squares at the final state. The fitted
            parameters are left in the kernel.
        """
        return self.run(kernel).residual2

    def run(self, kernel: Kernel) -> MinimizeResult:
        """Minimize the kernel's sum of squares and report how the run ended.

        Raises:
            ValueError: If the kernel's dimensions are inconsistent.
            SingularSystemError: If the damped system cannot be solved.
        """
        cfg = self.config
        verbose = cfg.verbose
        callback = cfg.progress_callback
        n, batch_width, num_batches = _kernel_dimensions(kernel)

        # Scratch buffers reused for every batch
        values = np.empty(batch_width, dtype=np.float64)
        derivatives = np.empty((batch_width, n), dtype=np.float64)

        jtj, jtr, residual2 = _assemble(kernel, num_batches, values, derivatives)
        nfev = 1
        njev = 1

        mu = cfg.tau * float(np.max(np.diag(jtj)))
        nu = 2.0
        initial_mu = mu
        identity = np.eye(n)

        found = _gradient_converged(jtr, cfg.epsilon1)
        status = STATUS_GRADIENT if found else STATUS_MAX_ITERATIONS
        history: Optional[List[IterationRecord]] = [] if cfg.history else None
        next_report = cfg.progress_frequency
        iterations = 0

        if verbose >= 1:
            print(
                f"    [LM] Starting Levenberg-Marquardt (n={n}, "
                f"residuals={num_batches * batch_width}, mu={mu:.3e})"
            )
            print(f"    [LM] Initial SSR={float(residual2):.4e}")

        for iteration in range(1, cfg.max_num_iterations + 1):
            if found:
                break

            damped = (jtj + mu * identity).astype(np.float64)
            x = np.asarray(cfg.linear_solver(damped, jtr.astype(np.float64)), dtype=np.float64)
            x = x.reshape(n)

            state = np.array(kernel.get_state(), dtype=np.float64)

            step_norm = math.sqrt(float(_sum_squares(x)))
            state_norm = math.sqrt(float(_sum_squares(state)))
            if step_norm <= cfg.epsilon2 * (state_norm + cfg.epsilon2):
                status = STATUS_SMALL_STEP
                break

            iterations = iteration
            kernel.neg_step(x)
            new_residual2 = _sum_values(kernel, num_batches, values)
            nfev += 1

            xe = x.astype(_EXTENDED)
            denom = np.sum(xe * (mu * xe + jtr))
            rho = np.float64((residual2 - new_residual2) / denom)

            if rho > 0:
                jtj, jtr, _ = _assemble(kernel, num_batches, values, derivatives)
                nfev += 1
                njev += 1
                residual2 = new_residual2
                if _gradient_converged(jtr, cfg.epsilon1):
                    found = True
                    status = STATUS_GRADIENT
                rhof = 2.0 * rho - 1.0
                with np.errstate(over="ignore"):
                    factor = max(float(1.0 - rhof**3), 1.0 / 3.0)
                mu *= factor
                nu = 2.0
                if verbose >= 2:
                    print(
                        f"    [LM] Iteration {iteration:4d}: accepted, rho={rho:.3e}, "
                        f"SSR={float(residual2):.4e}, mu => {mu:.3e}"
                    )
            else:
                kernel.set_state(state)
                mu *= nu
                nu *= 2.0
                if verbose >= 2:
                    print(
                        f"    [LM] Iteration {iteration:4d}: rejected, rho={rho:.3e}, "
                        f"mu => mu*nu = {mu:.3e}, nu => 2*nu = {nu:g}"
                    )

            if history is not None:
                history.append(
                    IterationRecord(
                        iteration=iteration,
                        accepted=bool(rho > 0),
                        rho=float(rho),
                        mu=mu,
                        nu=nu,
                        residual2=float(residual2),
                        step_norm=step_norm,
                    )
                )

            if verbose == 1 and iteration % 10 == 0:
                print(f"    [LM] Iteration {iteration:4d}: SSR={float(residual2):.4e}")

            if callback is not None and iteration == next_report:
                callback(kernel, float(residual2), False)
                next_report += cfg.progress_frequency

        if callback is not None:
            callback(kernel, float(residual2), True)

        gradient_norm = float(np.max(np.abs(jtr)))
        converged = status != STATUS_MAX_ITERATIONS
        if status == STATUS_GRADIENT:
            message = (
                f"Gradient test satisfied: max|JTr| {gradient_norm:.2e} "
                f"<= epsilon1 {cfg.epsilon1:.1e}"
            )
        elif status == STATUS_SMALL_STEP:
            message = f"Step test satisfied: step is negligible (epsilon2 {cfg.epsilon2:.1e})"
        else:
            message = f"Maximum number of iterations ({cfg.max_num_iterations}) reached"

        if verbose >= 0:
            label = "CONVERGED" if converged else "NOT CONVERGED"
            print(
                f"    [LM] {label}: SSR={float(residual2):.4e}, "
                f"iterations={iterations}, nfev={nfev}, njev={njev}"
            )
            print(f"    [LM] {message}")

        return MinimizeResult(
            residual2=float(residual2),
            x=np.array(kernel.get_state(), dtype=np.float64),
            status=status,
            converged=converged,
            message=message,
            iterations=iterations,
            nfev=nfev,
            njev=njev,
            mu=mu,
            nu=nu,
            initial_mu=initial_mu,
            gradient_norm=gradient_norm,
            history=history,
        )


def _validate_config(config: MinimizerConfig) -> None:
    if config.tau < 0:
        raise ValueError(f"tau must be non-negative, got {config.tau}")
    if config.epsilon1 < 0:
        raise ValueError(f"epsilon1 must be non-negative, got {config.epsilon1}")
    if config.epsilon2 < 0:
        raise ValueError(f"epsilon2 must be non-negative, got {config.epsilon2}")
    if config.max_num_iterations < 0:
        raise ValueError(
            f"max_num_iterations must be non-negative, got {config.max_num_iterations}"
        )
    if config.progress_frequency < 1:
        raise ValueError(f"progress_frequency must be >= 1, got {config.progress_frequency}")
    if config.progress_callback is not None and not callable(config.progress_callback):
        raise ValueError("progress_callback must be callable")
    if not callable(config.linear_solver):
        raise ValueError("linear_solver must be callable")


def _kernel_dimensions(kernel: Kernel) -> Tuple[int, int, int]:
    n = int(kernel.num_variables)
    batch_width = int(kernel.num_functions_in_batch)
    num_batches = int(kernel.get_num_batches())

    if n < 1:
        raise ValueError(f"kernel must have at least one variable, got {n}")
    if batch_width < 1:
        raise ValueError(f"kernel batches must hold at least one function, got {batch_width}")
    if num_batches < 0:
        raise ValueError(f"kernel reports a negative number of batches: {num_batches}")

    state_size = np.size(kernel.get_state())
    if state_size != n:
        raise ValueError(f"kernel state has {state_size} entries, expected {n}")

    return n, batch_width, num_batches


def _assemble(
    kernel: Kernel,
    num_batches: int,
    values: NDArray[np.float64],
    derivatives: NDArray[np.float64],
) -> Tuple[NDArray[np.longdouble], NDArray[np.longdouble], np.longdouble]:
    """Accumulate JTJ, JTr and the sum of squares over all batches."""
    n = derivatives.shape[1]
    jtj = np.zeros((n, n), dtype=_EXTENDED)
    jtr = np.zeros(n, dtype=_EXTENDED)
    residual2 = _EXTENDED(0)

    for batch in range(num_batches):
        kernel.calc_value_batch(batch, values)
        kernel.calc_derivative_batch(batch, derivatives)
        d = derivatives.astype(_EXTENDED)
        v = values.astype(_EXTENDED)
        jtj += d.T @ d
        jtr += d.T @ v
        residual2 += v @ v

    return jtj, jtr, residual2


def _sum_values(kernel: Kernel, num_batches: int, values: NDArray[np.float64]) -> np.longdouble:
    """Sum of squared residual values over all batches."""
    residual2 = _EXTENDED(0)
    for batch in range(num_batches):
        kernel.calc_value_batch(batch, values)
        v = values.astype(_EXTENDED)
        residual2 += v @ v
    return residual2


def _sum_squares(v: NDArray[np.float64]) -> np.longdouble:
    ve = v.astype(_EXTENDED)
    return ve @ ve


def _gradient_converged(jtr: NDArray[np.longdouble], epsilon1: float) -> bool:
    return bool(np.all(np.abs(jtr) <= epsilon1))
