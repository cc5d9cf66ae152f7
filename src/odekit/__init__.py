"""odekit: adaptive Runge-Kutta integration of ordinary differential
equations with dense output and event detection.
"""

from .algorithms import (AdaptiveRK, AdaptiveStepConfig, ContinuousOutput,
                         EventAction, EventConfig, EventHandler,
                         FunctionEventHandler, RungeKutta, Solution,
                         StepHandler, StepNormalizer, VariationalSystem,
                         create_rhs_system, create_variational_system)
from .algorithms.utils.exceptions import (ConvergenceError,
                                          DerivativeEvaluationError,
                                          EvaluationBudgetExceededError,
                                          IntegratorConfigError,
                                          NumericalFailureError, OdekitError,
                                          StepSizeUnderflowError)

__version__ = "0.1.0"

__all__ = [
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
    "VariationalSystem",
    "create_rhs_system",
    "create_variational_system",
    "OdekitError",
    "IntegratorConfigError",
    "NumericalFailureError",
    "ConvergenceError",
    "StepSizeUnderflowError",
    "DerivativeEvaluationError",
    "EvaluationBudgetExceededError",
]
