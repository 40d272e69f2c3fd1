"""Pytest fixtures, benchmark functions and test kernels.

This module provides:
- Benchmark residual functions for testing solver convergence
- Expected solutions and starting points for each benchmark
- Small hand-written kernels implementing the Kernel contract directly

The solver minimizes sum of squared residuals, so each benchmark is expressed
in residual form where ||residual(x*)||^2 = 0 at the known minimum.
"""

import numpy as np
from numpy.typing import NDArray


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "robustness: mark test as robustness/edge case test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (run on limited CI matrix)"
    )

# =============================================================================
# Benchmark Residual Functions
# =============================================================================


def rosenbrock_residual(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """2D Rosenbrock in residual form.

    The classic Rosenbrock function f(x,y) = (1-x)^2 + 100(y-x^2)^2
    expressed as residuals [10*(y - x^2), 1 - x] so that
    ||residual||^2 = 100(y-x^2)^2 + (1-x)^2 = f(x,y)

    Minimum at (1, 1) where residual = [0, 0].
    """
    return np.array([10.0 * (x[1] - x[0] ** 2), 1.0 - x[0]])


def rosenbrock_jacobian(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """Analytical Jacobian of rosenbrock_residual."""
    return np.array([[-20.0 * x[0], 10.0], [-1.0, 0.0]])


def powell_residual(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """Powell's function in residual form (4D).

    (x0 + 10*x1)^2 + 5*(x2 - x3)^2 + (x1 - 2*x2)^4 + 10*(x0 - x3)^4

    The Jacobian is singular at the minimum (0, 0, 0, 0), so convergence
    is only linear there.
    """
    return np.array(
        [
            x[0] + 10.0 * x[1],
            np.sqrt(5.0) * (x[2] - x[3]),
            (x[1] - 2.0 * x[2]) ** 2,
            np.sqrt(10.0) * (x[0] - x[3]) ** 2,
        ]
    )


def himmelblau_residual(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """Himmelblau's function in residual form (2D).

    f(x,y) = (x^2 + y - 11)^2 + (x + y^2 - 7)^2

    Has four minima; from (2, 1.5) the solver should reach (3, 2).
    """
    return np.array([x[0] ** 2 + x[1] - 11.0, x[0] + x[1] ** 2 - 7.0])


def booth_residual(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """Booth's function in residual form (2D).

    f(x,y) = (x + 2y - 7)^2 + (2x + y - 5)^2

    Minimum at (1, 3) where residual = [0, 0].
    """
    return np.array([x[0] + 2.0 * x[1] - 7.0, 2.0 * x[0] + x[1] - 5.0])


# =============================================================================
# Expected Solutions
# =============================================================================

ROSENBROCK_SOLUTION = np.array([1.0, 1.0])
POWELL_SOLUTION = np.array([0.0, 0.0, 0.0, 0.0])
HIMMELBLAU_SOLUTION = np.array([3.0, 2.0])
BOOTH_SOLUTION = np.array([1.0, 3.0])


# =============================================================================
# Starting Points
# =============================================================================

ROSENBROCK_X0 = np.array([0.0, 0.0])
POWELL_X0 = np.array([3.0, -1.0, 0.0, 1.0])
HIMMELBLAU_X0 = np.array([2.0, 1.5])
BOOTH_X0 = np.array([0.0, 0.0])


# =============================================================================
# Test Kernels
# =============================================================================


class OffsetKernel:
    """One batch of residuals f_i(x) = x_i - target_i, derivative identity."""

    def __init__(self, targets, x0=None):
        self.targets = np.asarray(targets, dtype=np.float64)
        self.num_variables = self.targets.size
        self.num_functions_in_batch = self.targets.size
        if x0 is None:
            x0 = np.zeros(self.num_variables)
        self.x = np.array(x0, dtype=np.float64)

    def get_num_batches(self):
        return 1

    def calc_value_batch(self, batch_index, out_values):
        out_values[:] = self.x - self.targets

    def calc_derivative_batch(self, batch_index, out_derivatives):
        out_derivatives[:, :] = np.eye(self.num_variables)

    def get_state(self):
        return self.x.copy()

    def neg_step(self, step):
        self.x -= step

    def set_state(self, state):
        self.x = np.array(state, dtype=np.float64)


class ExpKernel:
    """Single residual exp(x) - 1.

    Far left of the root the derivative is tiny, so a Gauss-Newton step
    overshoots into the steep region and has to be rejected.
    """

    num_variables = 1
    num_functions_in_batch = 1

    def __init__(self, x0=-3.0):
        self.x = np.array([x0], dtype=np.float64)

    def get_num_batches(self):
        return 1

    def calc_value_batch(self, batch_index, out_values):
        out_values[0] = np.expm1(self.x[0])

    def calc_derivative_batch(self, batch_index, out_derivatives):
        out_derivatives[0, 0] = np.exp(self.x[0])

    def get_state(self):
        return self.x.copy()

    def neg_step(self, step):
        self.x -= step

    def set_state(self, state):
        self.x = np.array(state, dtype=np.float64)


class FlatKernel:
    """Constant residuals with zero derivatives: a stationary point everywhere."""

    num_variables = 2
    num_functions_in_batch = 3

    def __init__(self, value=3.0, num_batches=2):
        self.value = value
        self.num_batches = num_batches
        self.x = np.array([1.0, -1.0])

    def get_num_batches(self):
        return self.num_batches

    def calc_value_batch(self, batch_index, out_values):
        out_values[:] = self.value

    def calc_derivative_batch(self, batch_index, out_derivatives):
        out_derivatives[:, :] = 0.0

    def get_state(self):
        return self.x.copy()

    def neg_step(self, step):
        self.x -= step

    def set_state(self, state):
        self.x = np.array(state, dtype=np.float64)


class TailKernel:
    """One residual of size head followed by many of size tail.

    Derivatives are zero, so the run ends at the initial gradient test and
    the reported sum of squares is the initial accumulation.
    """

    num_variables = 1
    num_functions_in_batch = 1

    def __init__(self, num_tail, head=1.0, tail=1e-9):
        self.num_tail = num_tail
        self.head = head
        self.tail = tail
        self.x = np.zeros(1)

    def get_num_batches(self):
        return self.num_tail + 1

    def calc_value_batch(self, batch_index, out_values):
        out_values[0] = self.head if batch_index == 0 else self.tail

    def calc_derivative_batch(self, batch_index, out_derivatives):
        out_derivatives[:, :] = 0.0

    def get_state(self):
        return self.x.copy()

    def neg_step(self, step):
        self.x -= step

    def set_state(self, state):
        self.x = np.array(state, dtype=np.float64)


class RecordingKernel:
    """Wraps a kernel and records every call made to it."""

    def __init__(self, inner):
        self.inner = inner
        self.num_variables = inner.num_variables
        self.num_functions_in_batch = inner.num_functions_in_batch
        self.calls = {"value": 0, "derivative": 0, "neg_step": 0, "set_state": 0}
        self.events = []

    def get_num_batches(self):
        return self.inner.get_num_batches()

    def calc_value_batch(self, batch_index, out_values):
        self.calls["value"] += 1
        self.inner.calc_value_batch(batch_index, out_values)

    def calc_derivative_batch(self, batch_index, out_derivatives):
        self.calls["derivative"] += 1
        self.inner.calc_derivative_batch(batch_index, out_derivatives)

    def get_state(self):
        return self.inner.get_state()

    def neg_step(self, step):
        self.calls["neg_step"] += 1
        self.events.append(("neg_step", self.inner.get_state()))
        self.inner.neg_step(step)

    def set_state(self, state):
        self.calls["set_state"] += 1
        self.inner.set_state(state)
        self.events.append(("set_state", self.inner.get_state()))
