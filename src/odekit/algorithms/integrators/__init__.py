"""Provide the step-based ODE integrators.

The :mod:`~odekit.algorithms.integrators` package implements explicit
Runge-Kutta methods, fixed-step (Euler, midpoint, classical, Gill, Luther)
and adaptive (Dormand-Prince 5(4), Higham-Hall 5(4) and Dormand-Prince
8(5,3)), with dense output, event detection and step handlers.

Examples
--------
>>> import numpy as np
>>> from odekit.algorithms.dynamics import create_rhs_system
>>> from odekit.algorithms.integrators import AdaptiveRK
>>> system = create_rhs_system(lambda t, y: -y, dim=1)
>>> integrator = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12)
>>> y = np.empty(1)
>>> integrator.integrate(system, 0.0, np.array([1.0]), 1.0, y_out=y)
1.0
"""

from .base import _Integrator
from .configs import _AdaptiveStepConfig, _EventConfig
from .events import EventAction, EventHandler, FunctionEventHandler
from .rk import AdaptiveRK, RungeKutta, _AdaptiveStepRK, _FixedStepRK
from .sampling import StepHandler, StepNormalizer, _ContinuousOutput
from .tableau import (CLASSICAL_RK4, DORMAND_PRINCE_54, DORMAND_PRINCE_853,
                      EULER, GILL, HIGHAM_HALL_54, LUTHER, MIDPOINT,
                      _ButcherTableau)
from .types import _Solution

__all__ = [
    "AdaptiveRK",
    "RungeKutta",
    "_Integrator",
    "_AdaptiveStepRK",
    "_FixedStepRK",

    "_AdaptiveStepConfig",
    "_EventConfig",

    "EventAction",
    "EventHandler",
    "FunctionEventHandler",

    "StepHandler",
    "StepNormalizer",
    "_ContinuousOutput",

    "_ButcherTableau",
    "DORMAND_PRINCE_54",
    "DORMAND_PRINCE_853",
    "CLASSICAL_RK4",
    "HIGHAM_HALL_54",
    "GILL",
    "LUTHER",
    "MIDPOINT",
    "EULER",

    "_Solution",
]
