"""Ideal gas thermodynamics from NASA 7-coefficient polynomials."""

from __future__ import annotations

import numpy as np

from simpkin.constants import R_GAS
from simpkin.models import Mechanism
from simpkin.thermo.base import ThermoInterface


class IdealGasThermo(ThermoInterface):
    """Ideal gas mixture with two-range NASA-7 species properties.

    Species properties are evaluated for all species at once. Each species
    uses its low range up to and including its mid-point temperature and the
    high range above it. Temperatures outside the fitted bounds are
    extrapolated with the nearest range; the caller is responsible for
    sanity-checking extreme values.
    """

    def __init__(self, mechanism: Mechanism):
        self.mechanism = mechanism
        self.molar_masses = mechanism.molar_masses
        self._t_mid = np.array([s.t_mid for s in mechanism.species])
        self._low = np.array([s.low.coefficients for s in mechanism.species])
        self._high = np.array([s.high.coefficients for s in mechanism.species])
        for array in (self.molar_masses, self._t_mid, self._low, self._high):
            array.flags.writeable = False

    def _coefficients(self, temperature: float) -> np.ndarray:
        use_high = temperature > self._t_mid
        return np.where(use_high[:, None], self._high, self._low)

    # Dimensionless per-species properties

    def species_cp_r(self, temperature: float) -> np.ndarray:
        a = self._coefficients(temperature)
        t = temperature
        return a[:, 0] + t * (a[:, 1] + t * (a[:, 2] + t * (a[:, 3] + t * a[:, 4])))

    def species_h_rt(self, temperature: float) -> np.ndarray:
        a = self._coefficients(temperature)
        t = temperature
        return (
            a[:, 0]
            + t * (a[:, 1] / 2.0 + t * (a[:, 2] / 3.0 + t * (a[:, 3] / 4.0 + t * a[:, 4] / 5.0)))
            + a[:, 5] / t
        )

    def species_s_r(self, temperature: float) -> np.ndarray:
        a = self._coefficients(temperature)
        t = temperature
        return (
            a[:, 0] * np.log(t)
            + t * (a[:, 1] + t * (a[:, 2] / 2.0 + t * (a[:, 3] / 3.0 + t * a[:, 4] / 4.0)))
            + a[:, 6]
        )

    def species_g_rt(self, temperature: float) -> np.ndarray:
        """Standard-state Gibbs energy over RT."""
        return self.species_h_rt(temperature) - self.species_s_r(temperature)

    # Molar per-species properties

    def species_enthalpies(self, temperature: float) -> np.ndarray:
        """Molar enthalpies (J/mol)."""
        return R_GAS * temperature * self.species_h_rt(temperature)

    def species_internal_energies(self, temperature: float) -> np.ndarray:
        """Molar internal energies (J/mol)."""
        return R_GAS * temperature * (self.species_h_rt(temperature) - 1.0)

    def species_cp(self, temperature: float) -> np.ndarray:
        """Molar heat capacities (J/mol/K)."""
        return R_GAS * self.species_cp_r(temperature)

    # Mixture properties

    def mean_molecular_weight(self, mass_fractions: np.ndarray) -> float:
        return 1.0 / np.dot(mass_fractions, 1.0 / self.molar_masses)

    def cp_mass(self, temperature: float, mass_fractions: np.ndarray) -> float:
        """Mixture heat capacity at constant pressure (J/kg/K)."""
        return float(np.dot(mass_fractions, self.species_cp(temperature) / self.molar_masses))

    def cv_mass(self, temperature: float, mass_fractions: np.ndarray) -> float:
        """Mixture heat capacity at constant volume (J/kg/K)."""
        cv = R_GAS * (self.species_cp_r(temperature) - 1.0)
        return float(np.dot(mass_fractions, cv / self.molar_masses))

    def enthalpy_mass(self, temperature: float, mass_fractions: np.ndarray) -> float:
        return float(
            np.dot(mass_fractions, self.species_enthalpies(temperature) / self.molar_masses)
        )

    def internal_energy_mass(self, temperature: float, mass_fractions: np.ndarray) -> float:
        return float(
            np.dot(mass_fractions, self.species_internal_energies(temperature) / self.molar_masses)
        )

    def density(self, temperature: float, pressure: float, mass_fractions: np.ndarray) -> float:
        """Calculate density using the ideal gas law (kg/m^3)."""
        return pressure * self.mean_molecular_weight(mass_fractions) / (R_GAS * temperature)

    def pressure(self, temperature: float, density: float, mass_fractions: np.ndarray) -> float:
        return density * R_GAS * temperature / self.mean_molecular_weight(mass_fractions)

    def concentrations(self, density: float, mass_fractions: np.ndarray) -> np.ndarray:
        """Molar concentrations (mol/m^3)."""
        return density * np.asarray(mass_fractions) / self.molar_masses

    # ThermoInterface

    def heat_capacity(self, temperature: float, mass_fractions: np.ndarray) -> float:
        return self.cp_mass(temperature, mass_fractions)

    def enthalpy(self, temperature: float, mass_fractions: np.ndarray) -> float:
        return self.enthalpy_mass(temperature, mass_fractions)
