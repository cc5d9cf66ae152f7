"""
Custom exceptions for the algorithms package.

The hierarchy separates three families of failures so that callers can
tell an imprecise answer from an absent one:

- configuration errors (:class:`IntegratorConfigError`), raised eagerly;
- numerical failures (:class:`NumericalFailureError` and subclasses),
  fatal to the current run;
- resource exhaustion (:class:`EvaluationBudgetExceededError`), raised
  when a policy limit is hit.
"""


class OdekitError(Exception):
    """Base exception for odekit errors.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class IntegratorConfigError(OdekitError, ValueError):
    """Raised when an integrator, an event or a system is configured
    inconsistently (invalid tolerances, mismatched dimensions, ...).

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class NumericalFailureError(OdekitError):
    """Base class of the failures intrinsic to the integrated problem.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class ConvergenceError(NumericalFailureError):
    """Raised when an algorithm fails to converge.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class StepSizeUnderflowError(NumericalFailureError):
    """Raised when the step size needed to meet the tolerances falls below
    the configured floor.

    Parameters
    ----------
    message : str
        The error message.
    step : float
        The step size that was requested.
    """

    def __init__(self, message: str, step: float = float("nan")):
        super().__init__(message)
        self.step = step


class DerivativeEvaluationError(NumericalFailureError):
    """Raised when the right-hand side returns non-finite values or an
    array of the wrong shape.

    Parameters
    ----------
    message : str
        The error message.
    t : float
        Time at which the evaluation failed.
    """

    def __init__(self, message: str, t: float = float("nan")):
        super().__init__(message)
        self.t = t


class EvaluationBudgetExceededError(OdekitError):
    """Raised when the number of right-hand side evaluations exceeds the
    configured budget.

    Parameters
    ----------
    message : str
        The error message.
    max_evaluations : int
        The budget that was exceeded.
    """

    def __init__(self, message: str, max_evaluations: int = -1):
        super().__init__(message)
        self.max_evaluations = max_evaluations
