""" Public API for the :mod:`~odekit.algorithms` package.
"""

from .dynamics.rhs import create_rhs_system
from .dynamics.variational import \
    _VariationalSystem as VariationalSystem
from .dynamics.variational import create_variational_system
from .integrators.configs import _AdaptiveStepConfig as AdaptiveStepConfig
from .integrators.configs import _EventConfig as EventConfig
from .integrators.events import (EventAction, EventHandler,
                                 FunctionEventHandler)
from .integrators.rk import AdaptiveRK, RungeKutta
from .integrators.sampling import StepHandler, StepNormalizer
from .integrators.sampling import _ContinuousOutput as ContinuousOutput
from .integrators.types import _Solution as Solution

__all__ = [
    "create_rhs_system",
    "create_variational_system",
    "VariationalSystem",
    "AdaptiveRK",
    "RungeKutta",
    "AdaptiveStepConfig",
    "EventConfig",
    "EventAction",
    "EventHandler",
    "FunctionEventHandler",
    "StepHandler",
    "StepNormalizer",
    "ContinuousOutput",
    "Solution",
]
