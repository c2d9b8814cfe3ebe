"""Variable-step BDF2 integrator for reactor states.

The state layout is fixed: ``[Y_1, ..., Y_K, T]``. The first step of an
integration is backward Euler; later steps use the variable-step BDF2
formula

    y - a1 * y_n + a2 * y_{n-1} = gamma * h * f(y)

with ``w = h / h_prev``, ``a1 = (1 + w)**2 / (1 + 2w)``,
``a2 = w**2 / (1 + 2w)`` and ``gamma = (1 + w) / (1 + 2w)``. Each implicit
stage is solved by a modified Newton iteration on ``I - gamma * h * J``
with a finite-difference Jacobian and a dense LU factorization.

Failures are reported through :class:`IntegrationStatus`, never raised.
"""

from __future__ import annotations

import logging
import time as _time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np
from scipy.linalg import lu_factor, lu_solve

logger = logging.getLogger(__name__)

RHSFunction = Callable[[float, np.ndarray], np.ndarray]

# Local error estimate = coefficient * (corrector - predictor)
_BE_ERROR_COEFFICIENT = 0.5
_BDF2_ERROR_COEFFICIENT = 0.4
_MIN_STEP_FACTOR = 0.2
_FD_EPSILON = np.sqrt(np.finfo(float).eps)


class IntegrationStatus(Enum):
    SUCCESS = "success"
    CONVERGENCE_FAILURE = "convergence_failure"
    TIMEOUT = "timeout"
    MAX_STEPS = "max_steps"
    INVALID_STATE = "invalid_state"


@dataclass(frozen=True)
class IntegratorOptions:
    """Numerical settings of :func:`integrate`.

    Attributes:
        relative_tolerance: Relative local error tolerance.
        absolute_tolerance: Absolute local error tolerance.
        initial_step: First step size (s). Estimated from the RHS when ``None``.
        min_step: Smallest step before giving up (s).
        max_step: Largest step allowed (s).
        max_steps: Budget of accepted steps per call.
        growth_factor: Largest step increase after an accepted step.
        max_retries: Consecutive rejected attempts before a convergence failure.
        safety: Safety factor of the step-size controller.
        newton_max_iterations: Newton iterations per attempt.
        newton_target_iterations: Steps only grow when Newton converged within this count.
        newton_tolerance: Convergence threshold on the weighted RMS Newton correction.
        max_jacobian_age: Accepted steps a Jacobian may be reused for.
        negative_tolerance: Mass fractions below ``-negative_tolerance`` reject a step.
        mass_fraction_tolerance: Clamp corrections above this are logged.
        state_correction_limit: Initial states needing a larger correction are invalid.
        record_trace: Keep every accepted state in the result.
    """

    relative_tolerance: float = 1e-6
    absolute_tolerance: float = 1e-12
    initial_step: float | None = None
    min_step: float = 1e-16
    max_step: float = np.inf
    max_steps: int = 500_000
    growth_factor: float = 2.0
    max_retries: int = 10
    safety: float = 0.9
    newton_max_iterations: int = 8
    newton_target_iterations: int = 3
    newton_tolerance: float = 0.05
    max_jacobian_age: int = 20
    negative_tolerance: float = 1e-8
    mass_fraction_tolerance: float = 1e-6
    state_correction_limit: float = 1e-3
    record_trace: bool = False

    def __post_init__(self) -> None:
        if self.relative_tolerance <= 0.0 or self.absolute_tolerance <= 0.0:
            raise ValueError("Tolerances must be positive")
        if self.growth_factor < 1.0:
            raise ValueError("growth_factor must be at least 1")
        if self.max_retries < 1 or self.newton_max_iterations < 1:
            raise ValueError("max_retries and newton_max_iterations must be positive")


@dataclass
class IntegrationContext:
    """Counters and step data of one :func:`integrate` call."""

    time: float = 0.0
    step_size: float = 0.0
    steps: int = 0
    rejected_steps: int = 0
    consecutive_failures: int = 0
    newton_iterations: int = 0
    newton_failures: int = 0
    jacobian_evaluations: int = 0
    rhs_evaluations: int = 0
    error_norm: float = 0.0
    max_correction: float = 0.0


@dataclass
class IntegrationResult:
    y: np.ndarray
    time: float
    status: IntegrationStatus
    context: IntegrationContext
    times: np.ndarray | None = None
    states: np.ndarray | None = None

    @property
    def converged(self) -> bool:
        return self.status is IntegrationStatus.SUCCESS


def normalize_mass_fractions(mass_fractions: np.ndarray) -> tuple[np.ndarray, float]:
    """Clamp to [0, 1] and renormalize.

    Returns the corrected array and the largest absolute change, which is
    ``inf`` when nothing is left to normalize.
    """
    clamped = np.clip(mass_fractions, 0.0, 1.0)
    total = clamped.sum()
    if not np.isfinite(total) or total <= 0.0:
        return clamped, np.inf
    corrected = clamped / total
    return corrected, float(np.max(np.abs(corrected - mass_fractions)))


def _wrms(vector: np.ndarray, scale: np.ndarray) -> float:
    return float(np.sqrt(np.mean((vector / scale) ** 2)))


def _validate_initial(y: np.ndarray, options: IntegratorOptions) -> tuple[np.ndarray | None, str]:
    if not np.all(np.isfinite(y)):
        return None, "non-finite initial state"
    if y[-1] <= 0.0:
        return None, f"non-positive temperature {y[-1]}"
    mass_fractions, correction = normalize_mass_fractions(y[:-1])
    if correction > options.state_correction_limit:
        return None, f"mass fractions need a correction of {correction:.3g}"
    if correction > options.mass_fraction_tolerance:
        logger.warning("Corrected initial mass fractions by %.3g", correction)
    fixed = y.copy()
    fixed[:-1] = mass_fractions
    return fixed, ""


class _Stepper:
    """Holds the history of a single integration. Never shared."""

    def __init__(self, rhs: RHSFunction, options: IntegratorOptions, context: IntegrationContext):
        self.rhs = rhs
        self.options = options
        self.context = context
        self.jacobian: np.ndarray | None = None
        self.jacobian_age = 0
        self.lu = None
        self.lu_gamma_h = None

    def evaluate(self, t: float, y: np.ndarray) -> np.ndarray:
        self.context.rhs_evaluations += 1
        return np.asarray(self.rhs(t, y), dtype=float)

    def update_jacobian(self, t: float, y: np.ndarray, f: np.ndarray) -> bool:
        n = y.size
        jacobian = np.empty((n, n))
        for i in range(n):
            delta = _FD_EPSILON * max(abs(y[i]), 1e-6)
            perturbed = y.copy()
            perturbed[i] += delta
            jacobian[:, i] = (self.evaluate(t, perturbed) - f) / delta
        self.context.jacobian_evaluations += 1
        if not np.all(np.isfinite(jacobian)):
            self.jacobian = None
            return False
        self.jacobian = jacobian
        self.jacobian_age = 0
        self.lu = None
        return True

    def factorize(self, gamma_h: float) -> bool:
        if self.lu is not None and self.lu_gamma_h == gamma_h:
            return True
        matrix = np.eye(self.jacobian.shape[0]) - gamma_h * self.jacobian
        with np.errstate(all="ignore"):
            lu, piv = lu_factor(matrix, check_finite=False)
        diagonal = np.abs(np.diag(lu))
        if not np.all(np.isfinite(lu)) or diagonal.min() <= 1e-14 * max(diagonal.max(), 1.0):
            self.lu = None
            return False
        self.lu = (lu, piv)
        self.lu_gamma_h = gamma_h
        return True

    def newton(
        self, t_new: float, predictor: np.ndarray, psi: np.ndarray, gamma_h: float, scale: np.ndarray
    ) -> tuple[np.ndarray | None, int]:
        """Solve ``z - psi - gamma_h * f(t_new, z) = 0`` starting from the predictor."""
        options = self.options
        z = predictor.copy()
        previous = None
        for iteration in range(1, options.newton_max_iterations + 1):
            self.context.newton_iterations += 1
            fz = self.evaluate(t_new, z)
            if not np.all(np.isfinite(fz)):
                return None, iteration
            residual = z - psi - gamma_h * fz
            correction = lu_solve(self.lu, -residual, check_finite=False)
            z = z + correction
            norm = _wrms(correction, scale)
            if not np.isfinite(norm):
                return None, iteration
            if norm <= options.newton_tolerance:
                return z, iteration
            if previous is not None and norm > 2.0 * previous:
                return None, iteration
            previous = norm
        return None, options.newton_max_iterations


def _initial_step(f0: np.ndarray, y0: np.ndarray, span: float, options: IntegratorOptions) -> float:
    if options.initial_step is not None:
        step = options.initial_step
    else:
        scale = options.absolute_tolerance + options.relative_tolerance * np.abs(y0)
        d0 = _wrms(y0, scale)
        d1 = _wrms(f0, scale)
        step = 0.01 * d0 / d1 if d0 > 1e-5 and d1 > 1e-5 else 1e-6
    return max(min(step, options.max_step, span), options.min_step)


def integrate(
    rhs: RHSFunction,
    y0: np.ndarray,
    end_time: float,
    options: IntegratorOptions | None = None,
    *,
    start_time: float = 0.0,
    deadline: float | None = None,
) -> IntegrationResult:
    """Integrate ``dy/dt = rhs(t, y)`` from ``start_time`` to ``end_time``.

    Args:
        rhs: Right-hand side over ``[Y..., T]``.
        y0: Initial state. Small mass-fraction errors are corrected, larger
            ones make the result ``INVALID_STATE``.
        end_time: Final time (s).
        options: Numerical settings.
        start_time: Initial time (s).
        deadline: ``time.monotonic()`` value after which integration stops
            with the last accepted state and ``TIMEOUT``.

    Returns:
        The final state, status and diagnostics. The returned state is always
        the last accepted one.
    """
    options = options or IntegratorOptions()
    context = IntegrationContext(time=start_time)
    y_initial = np.array(y0, dtype=float)

    def finish(y, t, status, times=None, states=None):
        context.time = t
        if status is not IntegrationStatus.SUCCESS:
            logger.debug("Integration stopped at t=%.6g: %s", t, status.value)
        if options.record_trace and times is not None:
            return IntegrationResult(y, t, status, context, np.array(times), np.array(states))
        return IntegrationResult(y, t, status, context)

    y, reason = _validate_initial(y_initial, options)
    if y is None:
        logger.debug("Rejected initial state: %s", reason)
        return finish(y_initial, start_time, IntegrationStatus.INVALID_STATE)

    times = [start_time]
    states = [y.copy()]
    t = start_time
    span = end_time - start_time
    if span <= 0.0:
        return finish(y, t, IntegrationStatus.SUCCESS, times, states)

    stepper = _Stepper(rhs, options, context)
    with np.errstate(all="ignore"):
        f_n = stepper.evaluate(t, y)
    if not np.all(np.isfinite(f_n)):
        logger.debug("Right-hand side is not finite at the initial state")
        return finish(y, t, IntegrationStatus.INVALID_STATE, times, states)

    h = _initial_step(f_n, y, span, options)
    y_prev = None
    h_prev = None
    end_tolerance = 1e-12 * max(abs(end_time), span)

    while end_time - t > end_tolerance:
        if deadline is not None and _time.monotonic() >= deadline:
            return finish(y, t, IntegrationStatus.TIMEOUT, times, states)
        if context.steps >= options.max_steps:
            return finish(y, t, IntegrationStatus.MAX_STEPS, times, states)

        step = min(h, end_time - t)
        if end_time - (t + step) < options.min_step:
            step = end_time - t
        last_step = step == end_time - t
        t_new = end_time if last_step else t + step
        context.step_size = step

        with np.errstate(all="ignore"):
            accepted, y_new, error_norm, iterations = _attempt(
                stepper, t, y, f_n, y_prev, h_prev, step, t_new
            )

        if not accepted:
            context.rejected_steps += 1
            context.consecutive_failures += 1
            if error_norm is not None and np.isfinite(error_norm):
                factor = max(_MIN_STEP_FACTOR, options.safety * error_norm ** (-1.0 / 3.0))
                h = step * min(factor, 0.5)
            else:
                h = step * 0.5
            if context.consecutive_failures > options.max_retries or h < options.min_step:
                return finish(y, t, IntegrationStatus.CONVERGENCE_FAILURE, times, states)
            continue

        mass_fractions, correction = normalize_mass_fractions(y_new[:-1])
        context.max_correction = max(context.max_correction, correction)
        if correction > options.mass_fraction_tolerance:
            logger.warning(
                "Mass fractions corrected by %.3g at t=%.6g", correction, t_new
            )
        y_new[:-1] = mass_fractions

        with np.errstate(all="ignore"):
            f_new = stepper.evaluate(t_new, y_new)
        if not np.all(np.isfinite(f_new)):
            context.rejected_steps += 1
            context.consecutive_failures += 1
            h = step * 0.5
            if context.consecutive_failures > options.max_retries or h < options.min_step:
                return finish(y, t, IntegrationStatus.CONVERGENCE_FAILURE, times, states)
            continue

        y_prev, h_prev = y, step
        y, t, f_n = y_new, t_new, f_new
        context.steps += 1
        context.consecutive_failures = 0
        context.error_norm = error_norm
        stepper.jacobian_age += 1
        if options.record_trace:
            times.append(t)
            states.append(y.copy())

        if error_norm > 0.0:
            factor = options.safety * error_norm ** (-1.0 / 3.0)
        else:
            factor = options.growth_factor
        factor = min(max(factor, _MIN_STEP_FACTOR), options.growth_factor)
        if iterations > options.newton_target_iterations:
            factor = min(factor, 1.0)
        if not last_step or factor < 1.0:
            h = step * factor
        h = min(max(h, options.min_step), options.max_step)

    return finish(y, end_time, IntegrationStatus.SUCCESS, times, states)


def _attempt(
    stepper: _Stepper,
    t: float,
    y: np.ndarray,
    f_n: np.ndarray,
    y_prev: np.ndarray | None,
    h_prev: float | None,
    step: float,
    t_new: float,
) -> tuple[bool, np.ndarray | None, float | None, int]:
    """Try one step. Returns ``(accepted, y_new, error_norm, newton_iterations)``."""
    options = stepper.options
    context = stepper.context

    if y_prev is None:
        gamma_h = step
        psi = y
        predictor = y + step * f_n
        error_coefficient = _BE_ERROR_COEFFICIENT
    else:
        ratio = step / h_prev
        denominator = 1.0 + 2.0 * ratio
        a1 = (1.0 + ratio) ** 2 / denominator
        a2 = ratio**2 / denominator
        gamma_h = (1.0 + ratio) / denominator * step
        psi = a1 * y - a2 * y_prev
        # quadratic through y_prev and y with slope f_n at t
        curvature = (y_prev - y + f_n * h_prev) / h_prev**2
        predictor = y + f_n * step + curvature * step**2
        error_coefficient = _BDF2_ERROR_COEFFICIENT

    scale = options.absolute_tolerance + options.relative_tolerance * np.maximum(
        np.abs(y), np.abs(predictor)
    )
    if not np.all(np.isfinite(scale)):
        scale = options.absolute_tolerance + options.relative_tolerance * np.abs(y)

    fresh = False
    if stepper.jacobian is None or stepper.jacobian_age >= options.max_jacobian_age:
        if not stepper.update_jacobian(t, y, f_n):
            return False, None, None, 0
        fresh = True

    while True:
        if not stepper.factorize(gamma_h):
            if fresh:
                return False, None, None, 0
        else:
            y_new, iterations = stepper.newton(t_new, predictor, psi, gamma_h, scale)
            if y_new is not None:
                break
            context.newton_failures += 1
            if fresh:
                return False, None, None, iterations
        # stale Jacobian: refresh once before giving up on this step size
        if not stepper.update_jacobian(t, y, f_n):
            return False, None, None, 0
        fresh = True

    if not np.all(np.isfinite(y_new)) or y_new[-1] <= 0.0:
        return False, None, None, iterations
    if np.any(y_new[:-1] < -options.negative_tolerance):
        return False, None, None, iterations

    error_scale = options.absolute_tolerance + options.relative_tolerance * np.maximum(
        np.abs(y), np.abs(y_new)
    )
    error_norm = _wrms(error_coefficient * (y_new - predictor), error_scale)
    if not np.isfinite(error_norm):
        return False, None, None, iterations
    if error_norm > 1.0:
        return False, None, error_norm, iterations
    return True, y_new, error_norm, iterations
