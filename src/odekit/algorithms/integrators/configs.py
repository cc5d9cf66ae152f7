from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from odekit.algorithms.utils.config import (EVENT_MAX_CHECK, EVENT_MAX_ITER,
                                            EVENT_TOL, EXTRAPOLATION_TOL, TOL)
from odekit.algorithms.utils.exceptions import IntegratorConfigError


@dataclass(frozen=True)
class _AdaptiveStepConfig:
    """Configuration of the adaptive step-size control.

    Parameters
    ----------
    rtol, atol : float or array_like, default :data:`~odekit.algorithms.utils.config.TOL`
        Relative and absolute tolerances, scalar or one per state component.
    min_step : float, default 0.0
        Smallest step magnitude allowed. A step that would need to be
        smaller fails with
        :class:`~odekit.algorithms.utils.exceptions.StepSizeUnderflowError`.
    max_step : float, default inf
        Largest step magnitude allowed.
    safety : float, default 0.9
        Safety factor applied to the optimal step estimate.
    min_reduction : float, default 0.2
        Smallest factor applied to the step between two attempts.
    max_growth : float, default 10.0
        Largest factor applied to the step between two attempts.
    initial_step : float, optional
        Magnitude of the first step. Ignored when outside of
        ``[min_step, max_step]``; a heuristic estimate is used instead.
    max_evaluations : int, optional
        Budget of right-hand side evaluations per integration, unlimited
        when None.
    extrapolation_tol : float, default :data:`~odekit.algorithms.utils.config.EXTRAPOLATION_TOL`
        Relative distance outside of a step at which dense output may still
        be queried.
    """

    rtol: Union[float, np.ndarray] = TOL
    atol: Union[float, np.ndarray] = TOL
    min_step: float = 0.0
    max_step: float = np.inf
    safety: float = 0.9
    min_reduction: float = 0.2
    max_growth: float = 10.0
    initial_step: Optional[float] = None
    max_evaluations: Optional[int] = None
    extrapolation_tol: float = EXTRAPOLATION_TOL

    def __post_init__(self):
        for label in ("rtol", "atol"):
            tol = np.asarray(getattr(self, label), dtype=np.float64)
            if tol.ndim > 1 or tol.size == 0:
                raise IntegratorConfigError(f"{label} must be a scalar or a 1-D array")
            if np.any(~np.isfinite(tol)) or np.any(tol < 0.0):
                raise IntegratorConfigError(f"{label} must be finite and non-negative")
        if np.all(np.asarray(self.rtol) == 0.0) and np.all(np.asarray(self.atol) == 0.0):
            raise IntegratorConfigError("rtol and atol cannot both be zero")
        if self.min_step < 0.0:
            raise IntegratorConfigError("min_step must be non-negative")
        if not self.max_step > 0.0:
            raise IntegratorConfigError("max_step must be positive")
        if self.min_step > self.max_step:
            raise IntegratorConfigError(
                f"min_step ({self.min_step}) is larger than max_step ({self.max_step})"
            )
        if not 0.0 < self.safety <= 1.0:
            raise IntegratorConfigError("safety must lie in (0, 1]")
        if not 0.0 < self.min_reduction < 1.0:
            raise IntegratorConfigError("min_reduction must lie in (0, 1)")
        if not self.max_growth > 1.0:
            raise IntegratorConfigError("max_growth must be larger than 1")
        if self.initial_step is not None and not np.isfinite(self.initial_step):
            raise IntegratorConfigError("initial_step must be finite")
        if self.max_evaluations is not None and self.max_evaluations <= 0:
            raise IntegratorConfigError("max_evaluations must be positive")
        if self.extrapolation_tol < 0.0:
            raise IntegratorConfigError("extrapolation_tol must be non-negative")


@dataclass(frozen=True)
class _EventConfig:
    """Configuration for a scalar event function g(t, y).

    Parameters
    ----------
    direction : int, default 0
        Crossing direction to detect:
        - 0: any sign change
        - +1: only increasing crossings (g goes from negative to positive)
        - -1: only decreasing crossings (g goes from positive to negative)
    terminal : bool, default True
        When True, integration stops at the first event. Only used by
        event functions wrapped in a
        :class:`~odekit.algorithms.integrators.events.FunctionEventHandler`.
    tol : float, default :data:`~odekit.algorithms.utils.config.EVENT_TOL`
        Convergence threshold on the event time. Also the separation under
        which two roots are considered the same event.
    max_iter : int, default :data:`~odekit.algorithms.utils.config.EVENT_MAX_ITER`
        Maximum iterations of the root solver.
    max_check_interval : float, default inf
        Largest time interval between two evaluations of g inside a step.
        Sign changes that appear and vanish within this interval can be
        missed.
    """

    direction: int = 0
    terminal: bool = True
    tol: float = EVENT_TOL
    max_iter: int = EVENT_MAX_ITER
    max_check_interval: float = EVENT_MAX_CHECK

    def __post_init__(self):
        if self.direction not in (-1, 0, 1):
            raise IntegratorConfigError(f"direction must be -1, 0 or +1, got {self.direction}")
        if not self.tol > 0.0:
            raise IntegratorConfigError("Event convergence threshold must be positive")
        if int(self.max_iter) < 1:
            raise IntegratorConfigError("max_iter must be at least 1")
        if not self.max_check_interval > 0.0:
            raise IntegratorConfigError("max_check_interval must be positive")
