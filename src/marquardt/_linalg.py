"""Dense linear solves for the damped normal equations.

The minimizer only needs one linear-algebra operation: solve the square
system (JTJ + mu*I) x = JTr. Any callable with the signature
``solver(a, b) -> x`` can be plugged in through MinimizerConfig.linear_solver.
Two are provided:

- full_pivot_solve: Gaussian elimination with full (complete) pivoting.
- scipy_solve: scipy.linalg.solve for symmetric matrices.

Both raise SingularSystemError when the matrix cannot be solved to working
precision.
"""

import warnings
from typing import Callable

import numpy as np
import scipy.linalg as la
from numpy.typing import ArrayLike, NDArray

LinearSolver = Callable[[NDArray[np.float64], NDArray[np.float64]], NDArray[np.float64]]


class SingularSystemError(ArithmeticError):
    """The damped normal-equations matrix is singular to working precision."""


def full_pivot_solve(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Solve a square linear system by Gaussian elimination with full pivoting.

    At every elimination step the largest-magnitude entry of the remaining
    submatrix is moved to the pivot position by a row and a column swap.
    Column swaps permute the unknowns, which is undone after back-substitution.

    Args:
        a: Square matrix. Shape (n, n). Not modified.
        b: Right-hand side. Shape (n,) or (n, k). Not modified.

    Returns:
        Solution x with the same shape as b.

    Raises:
        ValueError: If a is not square or b does not match it.
        SingularSystemError: If elimination meets a zero or non-finite pivot.
            Small pivots are accepted, so full-rank systems whose entries
            differ widely in magnitude are still solved.
    """
    a = np.array(a, dtype=np.float64)
    b = np.array(b, dtype=np.float64)

    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(f"a must be a square matrix, got shape {a.shape}")
    n = a.shape[0]
    if b.ndim not in (1, 2) or b.shape[0] != n:
        raise ValueError(f"b must have leading dimension {n}, got shape {b.shape}")

    if n == 0:
        return b
    out_shape = b.shape
    rhs = b.reshape(n, -1)

    order = np.arange(n)

    for k in range(n):
        width = n - k
        r, c = divmod(int(np.argmax(np.abs(a[k:, k:]))), width)
        r += k
        c += k
        pivot = a[r, c]
        # The pivot is the largest remaining entry: zero means the rest is zero
        if pivot == 0.0 or not np.isfinite(pivot):
            raise SingularSystemError(
                f"Singular matrix: pivot {pivot:.3e} at elimination step {k}"
            )

        if r != k:
            a[[k, r], :] = a[[r, k], :]
            rhs[[k, r], :] = rhs[[r, k], :]
        if c != k:
            a[:, [k, c]] = a[:, [c, k]]
            order[[k, c]] = order[[c, k]]

        factors = a[k + 1 :, k] / a[k, k]
        a[k + 1 :, k:] -= np.outer(factors, a[k, k:])
        rhs[k + 1 :, :] -= np.outer(factors, rhs[k, :])

    y = np.empty_like(rhs)
    for k in range(n - 1, -1, -1):
        y[k, :] = (rhs[k, :] - a[k, k + 1 :] @ y[k + 1 :, :]) / a[k, k]

    x = np.empty_like(y)
    x[order, :] = y
    return x.reshape(out_shape)


def scipy_solve(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Solve a symmetric linear system with scipy.linalg.solve.

    Ill-conditioning warnings from LAPACK are treated as singularity so that
    both solvers fail in the same situations.

    Raises:
        SingularSystemError: If scipy reports a singular or ill-conditioned matrix.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("error", la.LinAlgWarning)
        try:
            return la.solve(a, b, assume_a="sym")
        except (la.LinAlgError, la.LinAlgWarning) as e:
            raise SingularSystemError(str(e)) from e
