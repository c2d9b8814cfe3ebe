"""Derived quantities computed from reactor runs.

Ignition delay and extinction residence time are found by post-processing
reactor integrations. The reactors themselves have no notion of ignition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from simpkin.integrator import IntegratorOptions, integrate
from simpkin.kinetics import Kinetics
from simpkin.models import Mechanism
from simpkin.reactors import (
    PSRConfiguration,
    ReactorState,
    ReactorTrace,
    build_constant_pressure_rhs,
    build_psr_rhs,
    build_reactor_rhs,
    simulate,
)

logger = logging.getLogger(__name__)

IGNITION_METHODS = ("temperature_rise", "max_gradient")


@dataclass
class IgnitionResult:
    delay: float | None
    trace: ReactorTrace


@dataclass
class ExtinctionResult:
    """Outcome of :func:`extinction_residence_time`.

    Attributes:
        residence_time: Shortest residence time with a burning solution (s).
        lower_bound: Longest residence time found extinguished (s).
        temperature: Steady temperature at ``residence_time`` (K).
        history: ``(residence_time, temperature, burning)`` of every solve.
    """

    residence_time: float
    lower_bound: float
    temperature: float
    history: list[tuple[float, float, bool]] = field(default_factory=list)


def ignition_delay(
    times: Sequence[float],
    temperatures: Sequence[float],
    *,
    rise: float = 400.0,
    method: str = "temperature_rise",
) -> float | None:
    """Ignition delay from a temperature trace, or ``None`` without ignition.

    ``temperature_rise`` returns the first time the temperature exceeds its
    initial value by ``rise`` (linearly interpolated). ``max_gradient``
    returns the time of the steepest temperature increase, provided the
    temperature rose by ``rise`` overall.
    """
    times = np.asarray(times, dtype=float)
    temperatures = np.asarray(temperatures, dtype=float)
    if times.shape != temperatures.shape or times.size == 0:
        raise ValueError("times and temperatures must be non-empty and of equal length")

    threshold = temperatures[0] + rise
    crossed = np.flatnonzero(temperatures >= threshold)
    if crossed.size == 0:
        return None

    if method == "temperature_rise":
        i = crossed[0]
        if i == 0:
            return float(times[0])
        t0, t1 = times[i - 1], times[i]
        y0, y1 = temperatures[i - 1], temperatures[i]
        return float(t0 + (threshold - y0) * (t1 - t0) / (y1 - y0))
    if method == "max_gradient":
        if times.size < 2:
            return float(times[0])
        gradient = np.gradient(temperatures, times)
        return float(times[np.argmax(gradient)])
    raise ValueError(f"Unknown ignition method: {method}. Expected one of {IGNITION_METHODS}")


def compute_ignition_delay(
    mechanism: Mechanism,
    temperature: float,
    pressure: float,
    mass_fractions: Sequence[float],
    *,
    reactor: str = "constant_volume",
    end_time: float = 0.01,
    rise: float = 400.0,
    method: str = "temperature_rise",
    options: IntegratorOptions | None = None,
) -> IgnitionResult:
    """Integrate a closed reactor and extract its ignition delay."""
    state = ReactorState(temperature, np.asarray(mass_fractions, dtype=float), pressure)
    rhs = build_reactor_rhs(mechanism, reactor, state)
    trace = simulate(rhs, state, end_time, options)
    delay = ignition_delay(trace.time, trace.temperature, rise=rise, method=method)
    if delay is None:
        logger.info("No ignition within %.3g s at T0=%.1f K", end_time, temperature)
    else:
        logger.info("Ignition delay %.4g s at T0=%.1f K, p=%.4g Pa", delay, temperature, pressure)
    return IgnitionResult(delay=delay, trace=trace)


def extinction_residence_time(
    mechanism: Mechanism,
    pressure: float,
    inflow_temperature: float,
    inflow_mass_fractions: Sequence[float],
    *,
    initial_residence_time: float = 1.0,
    reduction_factor: float = 0.5,
    temperature_margin: float = 50.0,
    relative_tolerance: float = 0.05,
    residence_times_per_solve: float = 30.0,
    ignition_temperature: float = 1500.0,
    burn_time: float = 1.0,
    max_reductions: int = 60,
    options: IntegratorOptions | None = None,
) -> ExtinctionResult:
    """Shortest PSR residence time that still sustains combustion.

    The reactor starts from a burnt state and is relaxed to steady state at
    decreasing residence times, each solve starting from the previous
    burning solution. Once it extinguishes, the boundary is bisected
    (geometrically) to ``relative_tolerance``.

    A solution is burning when its temperature exceeds the inflow
    temperature by more than ``temperature_margin``.

    Raises:
        ValueError: If there is no burning solution at the initial residence
            time, or no extinction within ``max_reductions`` reductions.
    """
    if not 0.0 < reduction_factor < 1.0:
        raise ValueError("reduction_factor must be between 0 and 1")
    inflow = np.asarray(inflow_mass_fractions, dtype=float)
    kinetics = Kinetics(mechanism)
    history: list[tuple[float, float, bool]] = []

    # burnt starting point: the inflow mixture ignited in a closed reactor
    burn_rhs = build_constant_pressure_rhs(mechanism, pressure, kinetics=kinetics)
    start = np.append(inflow, max(inflow_temperature, ignition_temperature))
    burnt = integrate(burn_rhs, start, burn_time, options)
    if not burnt.converged:
        raise ValueError(f"Could not burn the inflow mixture: {burnt.status.value}")

    def steady_state(residence_time: float, y_start: np.ndarray) -> tuple[np.ndarray, bool]:
        configuration = PSRConfiguration(pressure, residence_time, inflow_temperature, inflow)
        rhs = build_psr_rhs(mechanism, configuration, kinetics=kinetics)
        result = integrate(rhs, y_start, residence_times_per_solve * residence_time, options)
        temperature = float(result.y[-1])
        burning = result.converged and temperature > inflow_temperature + temperature_margin
        if not result.converged:
            logger.warning(
                "PSR solve at tau=%.4g s stopped: %s", residence_time, result.status.value
            )
        history.append((residence_time, temperature, burning))
        logger.debug("tau=%.4g s: T=%.1f K burning=%s", residence_time, temperature, burning)
        return result.y, burning

    upper = initial_residence_time
    y_upper, burning = steady_state(upper, burnt.y)
    if not burning:
        raise ValueError(
            f"No burning solution at the initial residence time {initial_residence_time} s"
        )

    lower = None
    for _ in range(max_reductions):
        candidate = upper * reduction_factor
        y_candidate, burning = steady_state(candidate, y_upper)
        if not burning:
            lower = candidate
            break
        upper, y_upper = candidate, y_candidate
    if lower is None:
        raise ValueError(f"No extinction above {upper:.4g} s after {max_reductions} reductions")

    while (upper - lower) / upper > relative_tolerance:
        middle = float(np.sqrt(upper * lower))
        y_middle, burning = steady_state(middle, y_upper)
        if burning:
            upper, y_upper = middle, y_middle
        else:
            lower = middle

    logger.info("Extinction residence time %.4g s (T=%.1f K)", upper, y_upper[-1])
    return ExtinctionResult(
        residence_time=upper,
        lower_bound=lower,
        temperature=float(y_upper[-1]),
        history=history,
    )
