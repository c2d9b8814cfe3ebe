from .base import ThermoInterface
from .ideal import IdealGasThermo

__all__ = ["ThermoInterface", "IdealGasThermo"]
