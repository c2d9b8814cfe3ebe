"""SimpKin core package."""

from simpkin.analysis import compute_ignition_delay, extinction_residence_time, ignition_delay
from simpkin.edc import EDCClosure, EDCConstants, fine_structure
from simpkin.errors import IntegrationError, MechanismError
from simpkin.integrator import IntegrationStatus, IntegratorOptions, integrate
from simpkin.kinetics import Kinetics, ProductionRates
from simpkin.loader import load_bundled, load_mechanism, mechanism_from_solution
from simpkin.models import Mechanism, Reaction, Species
from simpkin.reactors import (
    PSRConfiguration,
    ReactorState,
    build_constant_pressure_rhs,
    build_constant_volume_rhs,
    build_psr_rhs,
    simulate,
)
from simpkin.scheduler import BatchScheduler, CellBatch
from simpkin.thermo import IdealGasThermo

__all__ = [
    "compute_ignition_delay",
    "extinction_residence_time",
    "ignition_delay",
    "EDCClosure",
    "EDCConstants",
    "fine_structure",
    "IntegrationError",
    "MechanismError",
    "IntegrationStatus",
    "IntegratorOptions",
    "integrate",
    "Kinetics",
    "ProductionRates",
    "load_bundled",
    "load_mechanism",
    "mechanism_from_solution",
    "Mechanism",
    "Reaction",
    "Species",
    "PSRConfiguration",
    "ReactorState",
    "build_constant_pressure_rhs",
    "build_constant_volume_rhs",
    "build_psr_rhs",
    "simulate",
    "BatchScheduler",
    "CellBatch",
    "IdealGasThermo",
]
