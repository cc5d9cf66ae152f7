"""Differential systems consumed by the integrators."""

from .base import _DynamicalSystem, _DynamicalSystemProtocol
from .rhs import RHSSystem, create_rhs_system
from .variational import _VariationalSystem, create_variational_system

__all__ = [
    "_DynamicalSystem",
    "_DynamicalSystemProtocol",
    "RHSSystem",
    "create_rhs_system",
    "_VariationalSystem",
    "create_variational_system",
]
