"""Zero-dimensional reactor models and solver helpers.

This module provides the right-hand side (RHS) builders for the three
reactor types and a wrapper that integrates them with the stiff BDF
integrator. Every RHS acts on the state vector ``[Y_1, ..., Y_K, T]``.

The reactor models are:
- Constant pressure: adiabatic, isobaric closed reactor.
- Constant volume: adiabatic, isochoric closed reactor.
- Perfectly stirred reactor (PSR): isobaric, continuously fed with a fixed
  inflow stream and a fixed residence time.

Integration always runs from t = 0 to the requested end time; ignition and
extinction are found by post-processing (see :mod:`simpkin.analysis`).
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from simpkin.constants import ONE_ATM
from simpkin.errors import IntegrationError
from simpkin.integrator import (
    IntegrationContext,
    IntegrationStatus,
    IntegratorOptions,
    integrate,
)
from simpkin.kinetics import Kinetics
from simpkin.models import Mechanism

logger = logging.getLogger(__name__)

REACTOR_TYPES = ("constant_pressure", "constant_volume")


@dataclass(frozen=True)
class ReactorState:
    """Thermochemical state of a 0-D reactor.

    Attributes:
        temperature: Temperature (K).
        mass_fractions: Species mass fractions, ordered like the mechanism.
        pressure: Pressure (Pa).
    """

    temperature: float
    mass_fractions: Sequence[float]
    pressure: float = ONE_ATM

    def to_vector(self) -> np.ndarray:
        return np.append(np.asarray(self.mass_fractions, dtype=float), float(self.temperature))


@dataclass(frozen=True)
class PSRConfiguration:
    """Operating conditions of a perfectly stirred reactor.

    Attributes:
        pressure: Reactor pressure (Pa).
        residence_time: Mean residence time tau (s).
        inflow_temperature: Temperature of the feed stream (K).
        inflow_mass_fractions: Feed composition, ordered like the mechanism.
    """

    pressure: float
    residence_time: float
    inflow_temperature: float
    inflow_mass_fractions: Sequence[float]

    def __post_init__(self) -> None:
        if self.residence_time <= 0.0:
            raise ValueError(f"Residence time must be positive, got {self.residence_time}")
        if self.pressure <= 0.0 or self.inflow_temperature <= 0.0:
            raise ValueError("Pressure and inflow temperature must be positive")


@dataclass
class ReactorTrace:
    """Time series produced by :func:`simulate`."""

    time: np.ndarray
    temperature: np.ndarray
    mass_fractions: np.ndarray
    status: IntegrationStatus
    context: IntegrationContext

    @property
    def converged(self) -> bool:
        return self.status is IntegrationStatus.SUCCESS

    @property
    def final_state(self) -> np.ndarray:
        return np.append(self.mass_fractions[-1], self.temperature[-1])


def build_constant_pressure_rhs(
    mechanism: Mechanism,
    pressure: float,
    *,
    kinetics: Kinetics | None = None,
) -> Callable[[float, np.ndarray], np.ndarray]:
    """Build the RHS of an adiabatic constant-pressure reactor.

    Equations:
        dY_k/dt = wdot_k * W_k / rho
        dT/dt = -sum(h_k * wdot_k) / (rho * cp)

    The density is recomputed on every call from ``pressure``, T and Y.
    """
    kinetics = kinetics or Kinetics(mechanism)
    thermo = kinetics.thermo
    molar_masses = thermo.molar_masses

    def rhs(_t: float, state: np.ndarray) -> np.ndarray:
        mass_fractions = state[:-1]
        temperature = state[-1]
        density = thermo.density(temperature, pressure, mass_fractions)
        wdot = kinetics.production_rates(
            temperature, thermo.concentrations(density, mass_fractions)
        )
        dydt = wdot * molar_masses / density
        dtdt = -np.dot(thermo.species_enthalpies(temperature), wdot) / (
            density * thermo.cp_mass(temperature, mass_fractions)
        )
        return np.append(dydt, dtdt)

    return rhs


def build_constant_volume_rhs(
    mechanism: Mechanism,
    density: float,
    *,
    kinetics: Kinetics | None = None,
) -> Callable[[float, np.ndarray], np.ndarray]:
    """Build the RHS of an adiabatic constant-volume reactor.

    Equations:
        dY_k/dt = wdot_k * W_k / rho
        dT/dt = -sum(u_k * wdot_k) / (rho * cv)
    """
    kinetics = kinetics or Kinetics(mechanism)
    thermo = kinetics.thermo
    molar_masses = thermo.molar_masses

    def rhs(_t: float, state: np.ndarray) -> np.ndarray:
        mass_fractions = state[:-1]
        temperature = state[-1]
        wdot = kinetics.production_rates(
            temperature, thermo.concentrations(density, mass_fractions)
        )
        dydt = wdot * molar_masses / density
        dtdt = -np.dot(thermo.species_internal_energies(temperature), wdot) / (
            density * thermo.cv_mass(temperature, mass_fractions)
        )
        return np.append(dydt, dtdt)

    return rhs


def build_psr_rhs(
    mechanism: Mechanism,
    configuration: PSRConfiguration,
    *,
    kinetics: Kinetics | None = None,
) -> Callable[[float, np.ndarray], np.ndarray]:
    """Build the RHS of an adiabatic perfectly stirred reactor.

    Equations:
        dY_k/dt = (Y_in,k - Y_k) / tau + wdot_k * W_k / rho
        cp * dT/dt = sum(Y_in,k * (h_k(T_in) - h_k(T)) / W_k) / tau
                     - sum(h_k * wdot_k) / rho

    Where ``h_k`` are molar enthalpies and ``tau`` the residence time.
    """
    kinetics = kinetics or Kinetics(mechanism)
    thermo = kinetics.thermo
    molar_masses = thermo.molar_masses
    pressure = configuration.pressure
    tau = configuration.residence_time
    inflow = np.asarray(configuration.inflow_mass_fractions, dtype=float)
    if inflow.shape != (mechanism.n_species,):
        raise ValueError(
            f"Inflow composition has shape {inflow.shape}, expected ({mechanism.n_species},)"
        )
    # specific enthalpy of each species in the feed (J/kg)
    inflow_enthalpies = thermo.species_enthalpies(configuration.inflow_temperature) / molar_masses

    def rhs(_t: float, state: np.ndarray) -> np.ndarray:
        mass_fractions = state[:-1]
        temperature = state[-1]
        density = thermo.density(temperature, pressure, mass_fractions)
        wdot = kinetics.production_rates(
            temperature, thermo.concentrations(density, mass_fractions)
        )
        enthalpies = thermo.species_enthalpies(temperature)
        dydt = (inflow - mass_fractions) / tau + wdot * molar_masses / density
        inflow_term = np.dot(inflow, inflow_enthalpies - enthalpies / molar_masses) / tau
        reaction_term = np.dot(enthalpies, wdot) / density
        dtdt = (inflow_term - reaction_term) / thermo.cp_mass(temperature, mass_fractions)
        return np.append(dydt, dtdt)

    return rhs


def build_reactor_rhs(
    mechanism: Mechanism,
    reactor: str,
    state: ReactorState,
    *,
    kinetics: Kinetics | None = None,
) -> Callable[[float, np.ndarray], np.ndarray]:
    """RHS of a closed reactor starting from ``state``.

    ``reactor`` is ``"constant_pressure"`` or ``"constant_volume"``; the
    constant-volume density is taken from the initial state.
    """
    if reactor == "constant_pressure":
        return build_constant_pressure_rhs(mechanism, state.pressure, kinetics=kinetics)
    if reactor == "constant_volume":
        kinetics = kinetics or Kinetics(mechanism)
        density = kinetics.thermo.density(
            state.temperature, state.pressure, np.asarray(state.mass_fractions, dtype=float)
        )
        return build_constant_volume_rhs(mechanism, density, kinetics=kinetics)
    raise ValueError(f"Unknown reactor type: {reactor}. Expected one of {REACTOR_TYPES}")


def simulate(
    rhs: Callable[[float, np.ndarray], np.ndarray],
    initial_state: ReactorState | np.ndarray,
    end_time: float,
    options: IntegratorOptions | None = None,
    *,
    raise_on_failure: bool = False,
) -> ReactorTrace:
    """Integrate a reactor from t = 0 to ``end_time`` and keep every step.

    Args:
        rhs: The right-hand side from one of the ``build_*_rhs`` functions.
        initial_state: Initial state, as a :class:`ReactorState` or a vector
            ``[Y..., T]``.
        end_time: Final time (s).
        options: Integrator settings; the trace is always recorded.
        raise_on_failure: Raise :class:`IntegrationError` instead of returning
            a non-converged trace.

    Returns:
        The recorded trace up to the last accepted step.
    """
    if isinstance(initial_state, ReactorState):
        y0 = initial_state.to_vector()
    else:
        y0 = np.asarray(initial_state, dtype=float)
    options = dataclasses.replace(options or IntegratorOptions(), record_trace=True)

    result = integrate(rhs, y0, end_time, options)
    if result.times is None:
        times = np.array([result.time])
        states = result.y[np.newaxis, :]
    else:
        times, states = result.times, result.states

    if not result.converged:
        message = f"Reactor integration stopped at t={result.time:.6g} s: {result.status.value}"
        if raise_on_failure:
            raise IntegrationError(message, result.status)
        logger.warning(message)

    return ReactorTrace(
        time=times,
        temperature=states[:, -1],
        mass_fractions=states[:, :-1],
        status=result.status,
        context=result.context,
    )
