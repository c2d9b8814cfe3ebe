"""Eddy Dissipation Concept (EDC) turbulence-chemistry closure.

Reaction is confined to fine structures whose size and residence time follow
from the turbulence state of the cell:

    xi*  = C_xi * (nu * eps / k**2) ** xi_exponent
    tau* = C_tau * (nu / eps) ** 0.5

Each fine structure is a constant-pressure reactor advanced over tau* from
the cell composition. The mean species source of the cell is

    R_k = rho * kappa * (Y*_k - Y_k) / tau*,  kappa = min(xi*^2 / (1 - xi*^3), 1)

with kappa = 1 once xi* >= 1, so that infinitely fast mixing recovers the
reaction rate of the cell itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from simpkin.kinetics import Kinetics
from simpkin.models import Mechanism
from simpkin.scheduler import BatchScheduler, CellBatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EDCConstants:
    c_xi: float = 2.1377
    c_tau: float = 0.4083
    xi_exponent: float = 0.5


@dataclass
class EDCResult:
    """Mean reaction rates of a batch of cells.

    Attributes:
        xi: Fine-structure length fraction.
        tau: Fine-structure residence time (s); ``inf`` where there is no mixing.
        kappa: Reacting fraction of the cell.
        species_rates: Mean species sources R_k (kg/m^3/s).
        heat_release_rate: ``-sum(h_k * R_k / W_k)`` (W/m^3).
        fine_temperature: Fine-structure temperature after tau*.
        fine_mass_fractions: Fine-structure composition after tau*.
        converged: Integration flag of each fine structure.
    """

    xi: np.ndarray
    tau: np.ndarray
    kappa: np.ndarray
    species_rates: np.ndarray
    heat_release_rate: np.ndarray
    fine_temperature: np.ndarray
    fine_mass_fractions: np.ndarray
    converged: np.ndarray


def fine_structure(
    turbulent_kinetic_energy,
    dissipation_rate,
    kinematic_viscosity,
    constants: EDCConstants = EDCConstants(),
) -> tuple[np.ndarray, np.ndarray]:
    """Fine-structure fraction xi* and residence time tau*, elementwise.

    Cells without turbulence (``eps <= 0`` or ``k <= 0``) get ``xi* = 0`` and
    ``tau* = inf``.
    """
    k = np.asarray(turbulent_kinetic_energy, dtype=float)
    eps = np.asarray(dissipation_rate, dtype=float)
    nu = np.broadcast_to(np.asarray(kinematic_viscosity, dtype=float), np.broadcast(k, eps).shape)
    k, eps = np.broadcast_arrays(k, eps)

    active = (k > 0.0) & (eps > 0.0) & (nu > 0.0)
    safe_k = np.where(active, k, 1.0)
    safe_eps = np.where(active, eps, 1.0)
    safe_nu = np.where(active, nu, 1.0)
    xi = np.where(
        active,
        constants.c_xi * (safe_nu * safe_eps / safe_k**2) ** constants.xi_exponent,
        0.0,
    )
    tau = np.where(active, constants.c_tau * np.sqrt(safe_nu / safe_eps), np.inf)
    return xi, tau


def reacting_fraction(xi: np.ndarray) -> np.ndarray:
    """``kappa = xi^2 / (1 - xi^3)`` capped at 1."""
    xi = np.asarray(xi, dtype=float)
    below = xi < 1.0
    safe = np.where(below, xi, 0.0)
    kappa = np.where(below, safe**2 / (1.0 - safe**3), 1.0)
    return np.minimum(kappa, 1.0)


class EDCClosure:
    """Mean reaction rates for a flow solver from the EDC model.

    Args:
        mechanism: Shared mechanism.
        scheduler: Scheduler used to advance the fine structures. Must use the
            constant-pressure reactor. A serial one is created when omitted.
        constants: Model constants.
    """

    def __init__(
        self,
        mechanism: Mechanism,
        scheduler: BatchScheduler | None = None,
        constants: EDCConstants = EDCConstants(),
    ):
        if scheduler is None:
            scheduler = BatchScheduler(mechanism, executor="serial")
        if scheduler.reactor != "constant_pressure":
            raise ValueError("EDC fine structures need a constant-pressure scheduler")
        if scheduler.mechanism is not mechanism:
            raise ValueError("Scheduler was built for a different mechanism")
        self.mechanism = mechanism
        self.scheduler = scheduler
        self.constants = constants
        self._kinetics = Kinetics(mechanism)

    def mean_reaction_rates(
        self,
        cells: CellBatch,
        turbulent_kinetic_energy,
        dissipation_rate,
        kinematic_viscosity,
        *,
        timeout: float | None = None,
    ) -> EDCResult:
        """Mean species and energy sources of each cell."""
        xi, tau = fine_structure(
            np.broadcast_to(turbulent_kinetic_energy, (cells.size,)),
            np.broadcast_to(dissipation_rate, (cells.size,)),
            np.broadcast_to(kinematic_viscosity, (cells.size,)),
            self.constants,
        )
        active = np.isfinite(tau)
        # inactive cells are not integrated
        time_steps = np.where(active, tau, 0.0)
        fine = self.scheduler.advance(cells, time_steps, timeout=timeout)

        kappa = np.where(active, reacting_fraction(xi), 0.0)
        safe_tau = np.where(active, tau, 1.0)
        factor = cells.density * kappa / safe_tau
        species_rates = factor[:, np.newaxis] * (fine.mass_fractions - cells.mass_fractions)
        species_rates[~active] = 0.0

        thermo = self._kinetics.thermo
        heat_release = np.empty(cells.size)
        for i in range(cells.size):
            enthalpies = thermo.species_enthalpies(cells.temperature[i]) / thermo.molar_masses
            heat_release[i] = -np.dot(enthalpies, species_rates[i])

        if (~fine.converged).any():
            logger.warning(
                "%d fine structure(s) did not converge", int((~fine.converged).sum())
            )
        return EDCResult(
            xi=xi,
            tau=tau,
            kappa=kappa,
            species_rates=species_rates,
            heat_release_rate=heat_release,
            fine_temperature=fine.temperature,
            fine_mass_fractions=fine.mass_fractions,
            converged=fine.converged,
        )
