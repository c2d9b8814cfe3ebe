"""Exception types raised by SimpKin."""

from __future__ import annotations

from enum import Enum


class MechanismError(ValueError):
    """Malformed mechanism: bad species references, thermo data or equations."""


class IntegrationError(RuntimeError):
    """Raised on request when a reactor integration does not reach its end time."""

    def __init__(self, message: str, status: Enum) -> None:
        super().__init__(message)
        self.status = status
