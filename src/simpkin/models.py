"""Data structures for species, reactions and mechanisms.

Everything here is immutable once constructed. A :class:`Mechanism` validates
itself on construction and is then shared read-only by every evaluator,
reactor and batch worker.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import ClassVar, Mapping, Union

import numpy as np

from simpkin.constants import R_GAS
from simpkin.errors import MechanismError

# Allowed jump of cp/R, h/RT and s/R across the mid-point of a NASA fit
THERMO_CONTINUITY_TOLERANCE = 1e-2
ELEMENT_BALANCE_TOLERANCE = 1e-6


@dataclass(frozen=True)
class NasaPolynomial:
    """One temperature range of a NASA 7-coefficient fit."""

    t_min: float
    t_max: float
    coefficients: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "coefficients", tuple(float(c) for c in self.coefficients))
        if len(self.coefficients) != 7:
            raise MechanismError(
                f"NASA polynomial needs 7 coefficients, got {len(self.coefficients)}"
            )
        if self.t_max <= self.t_min:
            raise MechanismError(f"Invalid NASA range [{self.t_min}, {self.t_max}]")

    def cp_r(self, temperature: float) -> float:
        a = self.coefficients
        t = temperature
        return a[0] + t * (a[1] + t * (a[2] + t * (a[3] + t * a[4])))

    def h_rt(self, temperature: float) -> float:
        a = self.coefficients
        t = temperature
        return (
            a[0]
            + t * (a[1] / 2.0 + t * (a[2] / 3.0 + t * (a[3] / 4.0 + t * a[4] / 5.0)))
            + a[5] / t
        )

    def s_r(self, temperature: float) -> float:
        a = self.coefficients
        t = temperature
        return (
            a[0] * math.log(t)
            + t * (a[1] + t * (a[2] / 2.0 + t * (a[3] / 3.0 + t * a[4] / 4.0)))
            + a[6]
        )


@dataclass(frozen=True)
class Species:
    """A gas-phase species with a two-range NASA-7 thermodynamic fit.

    Attributes:
        name: Species name as used in reaction equations.
        composition: Element symbol -> atom count.
        molar_mass: Molar mass (kg/mol).
        low: Polynomial valid below ``t_mid``.
        high: Polynomial valid above ``t_mid``.
    """

    name: str
    composition: Mapping[str, float]
    molar_mass: float
    low: NasaPolynomial
    high: NasaPolynomial

    def __post_init__(self) -> None:
        object.__setattr__(self, "composition", MappingProxyType(dict(self.composition)))

    def __reduce__(self):
        # mappingproxy does not pickle; rebuild through __init__
        return (
            type(self),
            (self.name, dict(self.composition), self.molar_mass, self.low, self.high),
        )

    @property
    def t_mid(self) -> float:
        return self.low.t_max

    def check_continuity(self, tolerance: float = THERMO_CONTINUITY_TOLERANCE) -> None:
        """Raise :class:`MechanismError` if the two ranges disagree at ``t_mid``."""
        if not math.isclose(self.low.t_max, self.high.t_min, rel_tol=1e-9, abs_tol=1e-6):
            raise MechanismError(
                f"Species {self.name}: NASA ranges do not share a boundary "
                f"({self.low.t_max} vs {self.high.t_min})"
            )
        t = self.t_mid
        for label, low_value, high_value in (
            ("cp/R", self.low.cp_r(t), self.high.cp_r(t)),
            ("h/RT", self.low.h_rt(t), self.high.h_rt(t)),
            ("s/R", self.low.s_r(t), self.high.s_r(t)),
        ):
            if abs(low_value - high_value) > tolerance:
                raise MechanismError(
                    f"Species {self.name}: {label} is discontinuous at {t} K "
                    f"({low_value:.6g} vs {high_value:.6g})"
                )


@dataclass(frozen=True)
class ArrheniusRate:
    """Modified Arrhenius expression k = A * T**b * exp(-Ea / RT), SI units."""

    pre_exponential: float
    temperature_exponent: float = 0.0
    activation_energy: float = 0.0  # J/mol

    def rate_constant(self, temperature: float) -> float:
        return (
            self.pre_exponential
            * temperature**self.temperature_exponent
            * np.exp(-self.activation_energy / (R_GAS * temperature))
        )


@dataclass(frozen=True)
class ThirdBody:
    """Collision efficiencies keyed by species index."""

    efficiencies: Mapping[int, float]
    default_efficiency: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "efficiencies",
            MappingProxyType({int(i): float(v) for i, v in self.efficiencies.items()}),
        )

    def __reduce__(self):
        return (type(self), (dict(self.efficiencies), self.default_efficiency))

    def efficiency_vector(self, n_species: int) -> np.ndarray:
        vector = np.full(n_species, self.default_efficiency)
        for index, value in self.efficiencies.items():
            vector[index] = value
        return vector


@dataclass(frozen=True)
class TroeParameters:
    a: float
    t3: float
    t1: float
    t2: float | None = None

    def center(self, temperature: float) -> float:
        """Broadening factor F_cent(T)."""
        fcent = (1.0 - self.a) * _decay(temperature, self.t3) + self.a * _decay(
            temperature, self.t1
        )
        if self.t2 is not None:
            fcent += np.exp(-self.t2 / temperature)
        return fcent


def _decay(temperature: float, scale: float) -> float:
    if scale == 0.0:
        return 0.0
    return np.exp(-temperature / scale)


@dataclass(frozen=True)
class ElementaryRate:
    kind: ClassVar[str] = "elementary"

    arrhenius: ArrheniusRate


@dataclass(frozen=True)
class ThirdBodyRate:
    kind: ClassVar[str] = "three-body"

    arrhenius: ArrheniusRate
    third_body: ThirdBody


@dataclass(frozen=True)
class FalloffRate:
    """Pressure-dependent rate blended between its low and high limits.

    ``troe`` of ``None`` selects the Lindemann form (F = 1).
    """

    kind: ClassVar[str] = "falloff"

    high: ArrheniusRate
    low: ArrheniusRate
    third_body: ThirdBody
    troe: TroeParameters | None = None


RateLaw = Union[ElementaryRate, ThirdBodyRate, FalloffRate]


@dataclass(frozen=True)
class Reaction:
    """A reaction with species referenced by index into the owning mechanism."""

    equation: str
    reactants: tuple[tuple[int, float], ...]
    products: tuple[tuple[int, float], ...]
    rate: RateLaw
    reversible: bool = True
    duplicate: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "reactants", tuple((int(i), float(n)) for i, n in self.reactants))
        object.__setattr__(self, "products", tuple((int(i), float(n)) for i, n in self.products))

    def net_stoichiometry(self, n_species: int) -> np.ndarray:
        net = np.zeros(n_species)
        for index, coeff in self.products:
            net[index] += coeff
        for index, coeff in self.reactants:
            net[index] -= coeff
        return net

    def referenced_species(self) -> set[int]:
        indices = {index for index, _ in self.reactants}
        indices.update(index for index, _ in self.products)
        third_body = getattr(self.rate, "third_body", None)
        if third_body is not None:
            indices.update(third_body.efficiencies)
        return indices


@dataclass(frozen=True)
class Mechanism:
    """Species and reactions of a chemical system.

    Validated once in ``__post_init__``; a malformed mechanism never reaches
    an integration.
    """

    name: str
    species: tuple[Species, ...]
    reactions: tuple[Reaction, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "species", tuple(self.species))
        object.__setattr__(self, "reactions", tuple(self.reactions))
        index = {}
        for position, species in enumerate(self.species):
            if species.name in index:
                raise MechanismError(f"Duplicate species: {species.name}")
            index[species.name] = position
        object.__setattr__(self, "_index", index)
        for species in self.species:
            species.check_continuity()
        for reaction in self.reactions:
            self._check_reaction(reaction)

    def _check_reaction(self, reaction: Reaction) -> None:
        n_species = self.n_species
        for species_index in reaction.referenced_species():
            if not 0 <= species_index < n_species:
                raise MechanismError(
                    f"Reaction '{reaction.equation}' references unknown species index {species_index}"
                )
        for _, coeff in reaction.reactants + reaction.products:
            if coeff < 0.0:
                raise MechanismError(
                    f"Reaction '{reaction.equation}' has a negative stoichiometric coefficient"
                )
        net = reaction.net_stoichiometry(n_species)
        if not np.any(net):
            raise MechanismError(f"Reaction '{reaction.equation}' has no net stoichiometry")
        balance: dict[str, float] = {}
        for species_index, coeff in enumerate(net):
            if coeff == 0.0:
                continue
            for element, count in self.species[species_index].composition.items():
                balance[element] = balance.get(element, 0.0) + coeff * count
        unbalanced = {e: v for e, v in balance.items() if abs(v) > ELEMENT_BALANCE_TOLERANCE}
        if unbalanced:
            raise MechanismError(
                f"Reaction '{reaction.equation}' does not conserve elements: {unbalanced}"
            )

    @property
    def n_species(self) -> int:
        return len(self.species)

    @property
    def n_reactions(self) -> int:
        return len(self.reactions)

    @property
    def species_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.species)

    @property
    def molar_masses(self) -> np.ndarray:
        return np.array([s.molar_mass for s in self.species])

    def species_index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise MechanismError(f"Unknown species: {name}") from None

    def mass_fractions(
        self, composition: Mapping[str, float] | str, basis: str = "mole"
    ) -> np.ndarray:
        """Normalized mass fractions from a mole- or mass-based composition.

        ``composition`` may be a mapping or a string such as ``"H2:2, O2:1"``.
        """
        if isinstance(composition, str):
            composition = parse_composition(composition)
        amounts = np.zeros(self.n_species)
        for name, value in composition.items():
            if value < 0.0:
                raise ValueError(f"Negative amount for {name}: {value}")
            amounts[self.species_index(name)] += value
        if amounts.sum() <= 0.0:
            raise ValueError("Composition is empty")
        if basis == "mole":
            amounts = amounts * self.molar_masses
        elif basis != "mass":
            raise ValueError(f"Unknown composition basis: {basis}")
        return amounts / amounts.sum()

    def mole_fractions(self, mass_fractions: np.ndarray) -> np.ndarray:
        moles = np.asarray(mass_fractions, dtype=float) / self.molar_masses
        return moles / moles.sum()


def parse_composition(text: str) -> dict[str, float]:
    """Parse ``"H2:2, O2:1, N2:3.76"`` into a dictionary."""
    composition: dict[str, float] = {}
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, value = item.rpartition(":")
        if not sep or not name.strip():
            raise ValueError(f"Cannot parse composition entry: '{item}'")
        composition[name.strip()] = composition.get(name.strip(), 0.0) + float(value)
    return composition
