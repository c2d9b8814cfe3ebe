"""A three-species test mechanism with exact, constant-cp thermodynamics.

A and B are isomers of N2 (cp = 3.5 R); B lies 1e5 J/mol below A. N2 is
inert.
"""

from __future__ import annotations

import cantera as ct

from simpkin.constants import R_GAS
from simpkin.loader import mechanism_from_solution

HEAT_OF_REACTION = 1.0e5  # J/mol released by A -> B


def _species(name: str, enthalpy_offset: float) -> str:
    coefficients = [3.5, 0.0, 0.0, 0.0, 0.0, enthalpy_offset / R_GAS, 4.0]
    data = ", ".join(repr(c) for c in coefficients)
    return f"""
- name: {name}
  composition: {{N: 2}}
  thermo:
    model: NASA7
    temperature-ranges: [200.0, 1000.0, 6000.0]
    data:
    - [{data}]
    - [{data}]"""


def toy_yaml(
    reversible: bool = False,
    pre_exponential: float = 5.0e7,
    activation_energy: float = 1.2e5,
    energy_units: str = "J/mol",
    fuel: str = "A",
) -> str:
    arrow = "<=>" if reversible else "=>"
    return f"""
units: {{length: cm, quantity: mol, activation-energy: {energy_units}}}

phases:
- name: toy
  thermo: ideal-gas
  elements: [N]
  species: [{fuel}, B, N2]
  kinetics: gas
  state: {{T: 300.0, P: 1 atm}}

species:{_species(fuel, 0.0)}{_species("B", -HEAT_OF_REACTION)}{_species("N2", 0.0)}

reactions:
- equation: {fuel} {arrow} B
  rate-constant: {{A: {pre_exponential!r}, b: 0.0, Ea: {activation_energy!r}}}
"""


def toy_mechanism(reversible: bool = False, pre_exponential: float = 5.0e7):
    gas = ct.Solution(yaml=toy_yaml(reversible, pre_exponential))
    return mechanism_from_solution(gas, "toy")


MOLAR_MASS = float(toy_mechanism().molar_masses[0])
