"""Kernel contract and a residual-function kernel.

A Kernel is the optimization problem seen by the Minimizer. It owns the
parameter state and evaluates residuals and their derivatives in fixed-size
batches at that state. ResidualKernel adapts a plain vectorized residual
function f(x) -> (m,) (and optionally its Jacobian) to this contract.
"""

from typing import Callable, Optional, Protocol, Tuple, runtime_checkable

import numpy as np
from numpy.typing import ArrayLike, NDArray


@runtime_checkable
class Kernel(Protocol):
    """Problem interface driven by Minimizer.

    The residual set is partitioned into get_num_batches() batches of
    num_functions_in_batch functions each. All evaluations happen at the
    kernel's current state.
    """

    num_variables: int
    num_functions_in_batch: int

    def get_num_batches(self) -> int: ...

    def calc_value_batch(self, batch_index: int, out_values: NDArray[np.float64]) -> None:
        """Fill out_values (shape (num_functions_in_batch,)) with residual values."""
        ...

    def calc_derivative_batch(
        self, batch_index: int, out_derivatives: NDArray[np.float64]
    ) -> None:
        """Fill out_derivatives (shape (num_functions_in_batch, num_variables))."""
        ...

    def get_state(self) -> NDArray[np.float64]: ...

    def neg_step(self, step: NDArray[np.float64]) -> None:
        """Subtract step from the state element-wise."""
        ...

    def set_state(self, state: NDArray[np.float64]) -> None: ...


def compute_jacobian(
    residual_fn: Callable[[NDArray[np.float64]], NDArray[np.float64]],
    x: NDArray[np.float64],
    jacobian_fn: Optional[Callable[[NDArray[np.float64]], NDArray[np.float64]]] = None,
    epsilon: float = 1e-8,
    f0: Optional[NDArray[np.float64]] = None,
) -> Tuple[NDArray[np.float64], int, int]:
    """Compute the Jacobian matrix of a residual function.

    If jacobian_fn is provided, uses the analytical Jacobian. Otherwise,
    computes a forward-difference approximation column by column.

    Args:
        residual_fn: Function f(x) -> residuals of shape (m,).
        x: Point at which to evaluate the Jacobian. Shape (n,).
        jacobian_fn: Optional analytical Jacobian function J(x) -> (m, n) matrix.
        epsilon: Step size for finite-difference approximation.
        f0: Residuals at x, if already known (saves one evaluation).

    Returns:
        Tuple of:
            - J: Jacobian matrix of shape (m, n)
            - nfev: Number of function evaluations used
            - njev: Number of Jacobian evaluations used (1 if analytical, 0 if FD)
    """
    x = np.asarray(x, dtype=np.float64)

    if jacobian_fn is not None:
        J = jacobian_fn(x)
        # Handle sparse matrices (convert to dense)
        if hasattr(J, "toarray"):
            J = J.toarray()
        return np.asarray(J, dtype=np.float64), 0, 1

    nfev = 0
    if f0 is None:
        f0 = np.asarray(residual_fn(x), dtype=np.float64)
        nfev += 1
    m = len(f0)
    n = len(x)
    J = np.zeros((m, n), dtype=np.float64)

    for j in range(n):
        x_plus = x.copy()
        # Scale the step with |x_j| so large parameters still see a change
        h = epsilon * max(abs(x[j]), 1.0)
        x_plus[j] += h
        f_plus = np.asarray(residual_fn(x_plus), dtype=np.float64)
        J[:, j] = (f_plus - f0) / h
        nfev += 1

    return J, nfev, 0


class ResidualKernel:
    """Kernel over a vectorized residual function.

    The residual vector and Jacobian are computed once per state and served
    batch by batch from the cache. Any state change drops the cache.

    Args:
        residual_fn: Function f(x) -> residuals. Must return array of shape (m,).
        x0: Initial state. Array-like of shape (n,). Copied.
        jacobian_fn: Optional analytical Jacobian function J(x) -> (m, n) matrix.
            If None, uses finite differences.
        batch_size: Residuals per batch. Must divide m. Default m (one batch).
        fd_epsilon: Relative step for finite differences.

    Raises:
        ValueError: If x0 is empty, f(x0) is not 1-D, or batch_size does not divide m.
    """

    def __init__(
        self,
        residual_fn: Callable[[NDArray[np.float64]], NDArray[np.float64]],
        x0: ArrayLike,
        jacobian_fn: Optional[Callable[[NDArray[np.float64]], NDArray[np.float64]]] = None,
        batch_size: Optional[int] = None,
        fd_epsilon: float = 1e-8,
    ):
        x0 = np.array(x0, dtype=np.float64).reshape(-1)
        if x0.size == 0:
            raise ValueError("x0 must be non-empty")

        self._residual_fn = residual_fn
        self._jacobian_fn = jacobian_fn
        self._fd_epsilon = fd_epsilon
        self._x = x0
        self._J: Optional[NDArray[np.float64]] = None
        self.nfev = 1
        self.njev = 0

        f0 = np.asarray(residual_fn(x0.copy()), dtype=np.float64)
        if f0.ndim != 1:
            raise ValueError(f"residual_fn must return a 1-D array, got shape {f0.shape}")
        self._f: Optional[NDArray[np.float64]] = f0
        m = f0.shape[0]

        if batch_size is None:
            batch_size = max(m, 1)
        if batch_size < 1 or m % batch_size != 0:
            raise ValueError(f"batch_size={batch_size} must be positive and divide m={m}")

        self.num_variables = x0.size
        self.num_residuals = m
        self.num_functions_in_batch = batch_size

    @property
    def state(self) -> NDArray[np.float64]:
        return self._x

    def residuals(self) -> NDArray[np.float64]:
        """Residual vector at the current state (cached)."""
        if self._f is None:
            f = np.asarray(self._residual_fn(self._x.copy()), dtype=np.float64)
            self.nfev += 1
            if f.shape != (self.num_residuals,):
                raise ValueError(
                    f"residual_fn returned shape {f.shape}, expected ({self.num_residuals},)"
                )
            self._f = f
        return self._f

    def jacobian(self) -> NDArray[np.float64]:
        """Jacobian matrix at the current state (cached). Shape (m, n)."""
        if self._J is None:
            f0 = None if self._jacobian_fn is not None else self.residuals()
            J, nfev, njev = compute_jacobian(
                self._residual_fn,
                self._x.copy(),
                self._jacobian_fn,
                epsilon=self._fd_epsilon,
                f0=f0,
            )
            if J.shape != (self.num_residuals, self.num_variables):
                raise ValueError(
                    f"Jacobian has shape {J.shape}, "
                    f"expected ({self.num_residuals}, {self.num_variables})"
                )
            self.nfev += nfev
            self.njev += njev
            self._J = J
        return self._J

    def get_num_batches(self) -> int:
        return self.num_residuals // self.num_functions_in_batch

    def _batch_slice(self, batch_index: int) -> slice:
        start = batch_index * self.num_functions_in_batch
        return slice(start, start + self.num_functions_in_batch)

    def calc_value_batch(self, batch_index: int, out_values: NDArray[np.float64]) -> None:
        out_values[:] = self.residuals()[self._batch_slice(batch_index)]

    def calc_derivative_batch(
        self, batch_index: int, out_derivatives: NDArray[np.float64]
    ) -> None:
        out_derivatives[:, :] = self.jacobian()[self._batch_slice(batch_index), :]

    def get_state(self) -> NDArray[np.float64]:
        return self._x.copy()

    def neg_step(self, step: NDArray[np.float64]) -> None:
        self._x = self._x - np.asarray(step, dtype=np.float64)
        self._invalidate()

    def set_state(self, state: NDArray[np.float64]) -> None:
        state = np.array(state, dtype=np.float64).reshape(-1)
        if state.shape != self._x.shape:
            raise ValueError(f"state must have shape {self._x.shape}, got {state.shape}")
        self._x = state
        self._invalidate()

    def _invalidate(self) -> None:
        self._f = None
        self._J = None
