"""Reaction rate evaluation for a mechanism.

Reactions are grouped by rate-law kind once, when :class:`Kinetics` is
constructed, and evaluated as arrays afterwards. All arrays are read-only so
one instance can be shared between threads.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from simpkin.constants import R_GAS, REFERENCE_PRESSURE
from simpkin.models import ElementaryRate, FalloffRate, Mechanism, ThirdBodyRate
from simpkin.thermo import IdealGasThermo

# Bounds on ln(Kc) keeping exp() finite
_LOG_LIMIT = 700.0
_TINY = 1e-300


@dataclass(frozen=True)
class ProductionRates:
    """Net molar production rates (mol/m^3/s) and heat release rate (W/m^3)."""

    net: np.ndarray
    heat_release_rate: float


def _arrhenius(temperature: float, a: np.ndarray, b: np.ndarray, ea: np.ndarray) -> np.ndarray:
    return a * temperature**b * np.exp(-ea / (R_GAS * temperature))


def _decay(temperature: float, scale: np.ndarray) -> np.ndarray:
    safe = np.where(scale != 0.0, scale, 1.0)
    return np.where(scale != 0.0, np.exp(-temperature / safe), 0.0)


class Kinetics:
    """Forward, reverse and net rates for every reaction of a mechanism."""

    def __init__(self, mechanism: Mechanism, thermo: IdealGasThermo | None = None):
        self.mechanism = mechanism
        self.thermo = thermo if thermo is not None else IdealGasThermo(mechanism)

        n_species = mechanism.n_species
        n_reactions = mechanism.n_reactions
        nu_f = np.zeros((n_reactions, n_species))
        nu_r = np.zeros((n_reactions, n_species))
        a = np.zeros(n_reactions)
        b = np.zeros(n_reactions)
        ea = np.zeros(n_reactions)
        reversible = np.zeros(n_reactions, dtype=bool)
        three_body, falloff = [], []

        for j, reaction in enumerate(mechanism.reactions):
            for index, coeff in reaction.reactants:
                nu_f[j, index] += coeff
            for index, coeff in reaction.products:
                nu_r[j, index] += coeff
            reversible[j] = reaction.reversible
            rate = reaction.rate
            if isinstance(rate, (ElementaryRate, ThirdBodyRate)):
                arrhenius = rate.arrhenius
                if rate.kind == ThirdBodyRate.kind:
                    three_body.append(j)
            elif isinstance(rate, FalloffRate):
                arrhenius = rate.high
                falloff.append(j)
            else:
                raise TypeError(f"Unsupported rate law for '{reaction.equation}': {rate!r}")
            a[j] = arrhenius.pre_exponential
            b[j] = arrhenius.temperature_exponent
            ea[j] = arrhenius.activation_energy

        self._nu_f = nu_f
        self._nu_r = nu_r
        self.net_stoichiometry = nu_r - nu_f
        self._delta_nu = self.net_stoichiometry.sum(axis=1)
        self._a, self._b, self._ea = a, b, ea
        self._reversible = reversible

        self._three_body = np.array(three_body, dtype=int)
        self._three_body_eff = np.array(
            [mechanism.reactions[j].rate.third_body.efficiency_vector(n_species) for j in three_body]
        ).reshape(len(three_body), n_species)

        self._falloff = np.array(falloff, dtype=int)
        falloff_rates = [mechanism.reactions[j].rate for j in falloff]
        self._falloff_eff = np.array(
            [r.third_body.efficiency_vector(n_species) for r in falloff_rates]
        ).reshape(len(falloff), n_species)
        self._low_a = np.array([r.low.pre_exponential for r in falloff_rates])
        self._low_b = np.array([r.low.temperature_exponent for r in falloff_rates])
        self._low_ea = np.array([r.low.activation_energy for r in falloff_rates])
        self._has_troe = np.array([r.troe is not None for r in falloff_rates], dtype=bool)
        self._troe_a = np.array([r.troe.a if r.troe else 0.0 for r in falloff_rates])
        self._troe_t3 = np.array([r.troe.t3 if r.troe else 0.0 for r in falloff_rates])
        self._troe_t1 = np.array([r.troe.t1 if r.troe else 0.0 for r in falloff_rates])
        self._has_t2 = np.array(
            [bool(r.troe and r.troe.t2 is not None) for r in falloff_rates], dtype=bool
        )
        self._troe_t2 = np.array(
            [r.troe.t2 if r.troe and r.troe.t2 is not None else 0.0 for r in falloff_rates]
        )

        for value in vars(self).values():
            if isinstance(value, np.ndarray):
                value.flags.writeable = False

    @property
    def molar_masses(self) -> np.ndarray:
        return self.thermo.molar_masses

    def troe_center(self, temperature: float) -> np.ndarray:
        """F_cent for each falloff reaction (1 where no Troe data is given)."""
        fcent = (1.0 - self._troe_a) * _decay(temperature, self._troe_t3) + self._troe_a * _decay(
            temperature, self._troe_t1
        )
        safe_t2 = np.where(self._has_t2, self._troe_t2, 0.0)
        fcent = fcent + np.where(self._has_t2, np.exp(-safe_t2 / temperature), 0.0)
        return np.where(self._has_troe, fcent, 1.0)

    def forward_rate_constants(self, temperature: float, concentrations: np.ndarray) -> np.ndarray:
        """Forward rate constants, including third-body and falloff factors."""
        concentrations = np.maximum(concentrations, 0.0)
        kf = _arrhenius(temperature, self._a, self._b, self._ea)

        if self._three_body.size:
            kf[self._three_body] *= self._three_body_eff @ concentrations

        if self._falloff.size:
            third_body = self._falloff_eff @ concentrations
            k_inf = kf[self._falloff]
            k_zero = _arrhenius(temperature, self._low_a, self._low_b, self._low_ea)
            reduced = np.maximum(k_zero * third_body / np.maximum(k_inf, _TINY), _TINY)
            blending = np.ones_like(reduced)
            if self._has_troe.any():
                log_fcent = np.log10(np.maximum(self.troe_center(temperature), _TINY))
                c = -0.4 - 0.67 * log_fcent
                n = 0.75 - 1.27 * log_fcent
                shifted = np.log10(reduced) + c
                f1 = shifted / (n - 0.14 * shifted)
                troe = 10.0 ** (log_fcent / (1.0 + f1 * f1))
                blending = np.where(self._has_troe, troe, 1.0)
            kf[self._falloff] = k_inf * reduced / (1.0 + reduced) * blending

        return kf

    def _log_equilibrium_constants(self, temperature: float) -> np.ndarray:
        delta_g_rt = self.net_stoichiometry @ self.thermo.species_g_rt(temperature)
        log_kc = -delta_g_rt + self._delta_nu * np.log(REFERENCE_PRESSURE / (R_GAS * temperature))
        return np.clip(log_kc, -_LOG_LIMIT, _LOG_LIMIT)

    def equilibrium_constants(self, temperature: float) -> np.ndarray:
        """Concentration-based equilibrium constants Kc (SI, mol/m^3 based)."""
        return np.exp(self._log_equilibrium_constants(temperature))

    def reverse_rate_constants(
        self,
        temperature: float,
        concentrations: np.ndarray,
        forward: np.ndarray | None = None,
    ) -> np.ndarray:
        if forward is None:
            forward = self.forward_rate_constants(temperature, concentrations)
        kr = forward * np.exp(-self._log_equilibrium_constants(temperature))
        return np.where(self._reversible, kr, 0.0)

    def rates_of_progress(self, temperature: float, concentrations: np.ndarray) -> np.ndarray:
        """Net rate of progress of every reaction (mol/m^3/s)."""
        concentrations = np.maximum(np.asarray(concentrations, dtype=float), 0.0)
        kf = self.forward_rate_constants(temperature, concentrations)
        kr = self.reverse_rate_constants(temperature, concentrations, forward=kf)
        forward = kf * np.prod(concentrations**self._nu_f, axis=1)
        reverse = kr * np.prod(concentrations**self._nu_r, axis=1)
        return forward - reverse

    def production_rates(self, temperature: float, concentrations: np.ndarray) -> np.ndarray:
        """Net molar production rate of every species (mol/m^3/s)."""
        return self.net_stoichiometry.T @ self.rates_of_progress(temperature, concentrations)

    def evaluate_at_density(
        self, temperature: float, density: float, mass_fractions: np.ndarray
    ) -> ProductionRates:
        concentrations = self.thermo.concentrations(density, mass_fractions)
        net = self.production_rates(temperature, concentrations)
        heat_release = -float(np.dot(net, self.thermo.species_enthalpies(temperature)))
        return ProductionRates(net=net, heat_release_rate=heat_release)

    def evaluate(
        self, temperature: float, pressure: float, mass_fractions: np.ndarray
    ) -> ProductionRates:
        """Production rates at a state given by temperature, pressure and composition."""
        density = self.thermo.density(temperature, pressure, mass_fractions)
        return self.evaluate_at_density(temperature, density, mass_fractions)
