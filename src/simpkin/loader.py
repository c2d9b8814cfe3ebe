"""Build a :class:`~simpkin.models.Mechanism` from a Cantera mechanism file.

Cantera reads the YAML file and resolves equations and input units. This
module maps its species and reactions onto SimpKin's types and converts rate
parameters from Cantera's kmol-based units to SI per mole (m, mol, J).
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path

import cantera as ct
import numpy as np

from simpkin.errors import MechanismError
from simpkin.models import (
    ArrheniusRate,
    ElementaryRate,
    FalloffRate,
    Mechanism,
    NasaPolynomial,
    Reaction,
    Species,
    ThirdBody,
    ThirdBodyRate,
    TroeParameters,
)

logger = logging.getLogger(__name__)

MOL_PER_KMOL = 1e3


def _nasa7_from_species(sp: ct.Species) -> tuple[NasaPolynomial, NasaPolynomial]:
    thermo = sp.thermo
    if not isinstance(thermo, ct.NasaPoly2):
        raise MechanismError(
            f"Species {sp.name}: only two-range NASA-7 thermo is supported, "
            f"got {type(thermo).__name__}"
        )
    # NasaPoly2 coeff ordering: [Tmid, 7 high-T, 7 low-T]
    coeffs = np.array(thermo.coeffs, dtype=float)
    t_mid = float(coeffs[0])
    low = NasaPolynomial(float(thermo.min_temp), t_mid, tuple(coeffs[8:15]))
    high = NasaPolynomial(t_mid, float(thermo.max_temp), tuple(coeffs[1:8]))
    return low, high


def _arrhenius(rate: ct.ArrheniusRate, order: float) -> ArrheniusRate:
    """Convert one Cantera Arrhenius expression of the given concentration order."""
    return ArrheniusRate(
        pre_exponential=rate.pre_exponential_factor / MOL_PER_KMOL ** (order - 1.0),
        temperature_exponent=rate.temperature_exponent,
        activation_energy=rate.activation_energy / MOL_PER_KMOL,
    )


def _third_body(third_body, index: dict[str, int]) -> ThirdBody:
    if third_body.name != "M":
        # explicit collider such as (+AR): only that species counts
        return ThirdBody({index[third_body.name]: 1.0}, default_efficiency=0.0)
    return ThirdBody(
        {index[name]: value for name, value in third_body.efficiencies.items()},
        third_body.default_efficiency,
    )


def _troe(rate: ct.TroeRate) -> TroeParameters:
    # Cantera drops T2 when it is zero
    coeffs = [float(c) for c in rate.falloff_coeffs]
    t2 = coeffs[3] if len(coeffs) > 3 and coeffs[3] != 0.0 else None
    return TroeParameters(a=coeffs[0], t3=coeffs[1], t1=coeffs[2], t2=t2)


def _reaction(rxn: ct.Reaction, index: dict[str, int]) -> Reaction:
    equation = rxn.equation
    if rxn.orders:
        raise MechanismError(f"Reaction '{equation}' has non-mass-action orders")
    reactants = {name: float(coeff) for name, coeff in rxn.reactants.items()}
    products = {name: float(coeff) for name, coeff in rxn.products.items()}
    order = sum(reactants.values())
    rate = rxn.rate
    third_body = getattr(rxn, "third_body", None)

    if isinstance(rate, (ct.TroeRate, ct.LindemannRate)):
        if rate.chemically_activated:
            raise MechanismError(f"Chemically activated reaction '{equation}' is not supported")
        law = FalloffRate(
            high=_arrhenius(rate.high_rate, order),
            low=_arrhenius(rate.low_rate, order + 1.0),
            third_body=_third_body(third_body, index),
            troe=_troe(rate) if isinstance(rate, ct.TroeRate) else None,
        )
    elif isinstance(rate, ct.ArrheniusRate):
        if third_body is None:
            law = ElementaryRate(_arrhenius(rate, order))
        else:
            law = ThirdBodyRate(_arrhenius(rate, order + 1.0), _third_body(third_body, index))
    else:
        raise MechanismError(
            f"Reaction '{equation}' uses unsupported rate type {type(rate).__name__}"
        )

    return Reaction(
        equation=equation,
        reactants=tuple((index[name], coeff) for name, coeff in reactants.items()),
        products=tuple((index[name], coeff) for name, coeff in products.items()),
        rate=law,
        reversible=bool(rxn.reversible),
        duplicate=bool(rxn.duplicate),
    )


def mechanism_from_solution(gas: ct.Solution, name: str | None = None) -> Mechanism:
    """Build and validate a mechanism from a loaded Cantera ``Solution``."""
    names = list(gas.species_names)
    index = {species_name: k for k, species_name in enumerate(names)}
    molar_masses = np.array(gas.molecular_weights, dtype=float) / MOL_PER_KMOL

    species = []
    for k, sp in enumerate(gas.species()):
        low, high = _nasa7_from_species(sp)
        species.append(
            Species(
                name=sp.name,
                composition={element: float(n) for element, n in sp.composition.items()},
                molar_mass=float(molar_masses[k]),
                low=low,
                high=high,
            )
        )
    reactions = tuple(_reaction(rxn, index) for rxn in gas.reactions())

    mechanism = Mechanism(name=name or gas.name, species=tuple(species), reactions=reactions)
    logger.debug(
        "Loaded mechanism %s: %d species, %d reactions",
        mechanism.name,
        mechanism.n_species,
        mechanism.n_reactions,
    )
    return mechanism


def _solution(source: str) -> ct.Solution:
    try:
        return ct.Solution(source)
    except ct.CanteraError as exc:
        raise MechanismError(f"Cannot load mechanism '{source}': {exc}") from exc


def load_bundled(name: str = "h2o2") -> Mechanism:
    """Load one of the mechanisms shipped in ``simpkin/data``."""
    resource = resources.files("simpkin") / "data" / f"{name}.yaml"
    if not resource.is_file():
        raise MechanismError(f"No bundled mechanism named '{name}'")
    with resources.as_file(resource) as path:
        return mechanism_from_solution(_solution(str(path)), name)


def load_mechanism(source: str | Path) -> Mechanism:
    """Load a mechanism by path, by bundled name, or from Cantera's data directory.

    ``"h2o2"`` selects the bundled hydrogen mechanism; a name such as
    ``"gri30.yaml"`` that is neither a file nor bundled is looked up by
    Cantera itself.
    """
    path = Path(source)
    if path.is_file():
        return mechanism_from_solution(_solution(str(path)), path.stem)
    if (resources.files("simpkin") / "data" / f"{source}.yaml").is_file():
        return load_bundled(str(source))
    return mechanism_from_solution(_solution(str(source)), path.stem)
