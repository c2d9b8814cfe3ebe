"""Base interface for thermodynamic models."""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class ThermoInterface(ABC):
    """Abstract base class for thermodynamic property packages.

    Compositions are mass-fraction arrays ordered like the mechanism species.
    """

    @abstractmethod
    def heat_capacity(self, temperature: float, mass_fractions: np.ndarray) -> float:
        """Mixture specific heat capacity at constant pressure (J/kg/K)."""
        pass

    @abstractmethod
    def enthalpy(self, temperature: float, mass_fractions: np.ndarray) -> float:
        """Mixture specific enthalpy (J/kg)."""
        pass

    @abstractmethod
    def density(self, temperature: float, pressure: float, mass_fractions: np.ndarray) -> float:
        """Mixture density (kg/m^3)."""
        pass
