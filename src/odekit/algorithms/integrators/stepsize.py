"""Step-size control of the embedded Runge-Kutta integrators.

The controller turns the scaled local error of a step into the size of the
next attempt, keeps step sizes within the configured bounds and provides
the starting step of an integration.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I", Section II.4.

Shampine, L. F.; Gordon, M. K. (1975). "Computer Solution of Ordinary
Differential Equations".
"""

from typing import Callable

import numpy as np

from odekit.algorithms.integrators.configs import _AdaptiveStepConfig
from odekit.algorithms.utils.exceptions import (IntegratorConfigError,
                                                StepSizeUnderflowError)
from odekit.utils.log_config import logger

_EPS = np.finfo(float).eps


class _StepSizeController:
    """Adaptive step-size policy for a method of a given order.

    Parameters
    ----------
    config : :class:`~odekit.algorithms.integrators.configs._AdaptiveStepConfig`
        Tolerances, bounds and controller constants.
    order : int
        Order used in the error exponent ``-1 / order``.
    dim : int
        Dimension of the integrated state; vector tolerances must match it.

    Raises
    ------
    :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
        If vector tolerances do not have *dim* components.
    """

    def __init__(self, config: _AdaptiveStepConfig, order: int, dim: int):
        self._config = config
        self._order = order
        self._exponent = -1.0 / order
        self._rtol = self._expand(config.rtol, dim, "rtol")
        self._atol = self._expand(config.atol, dim, "atol")

    @staticmethod
    def _expand(tol, dim: int, label: str) -> np.ndarray:
        arr = np.asarray(tol, dtype=np.float64)
        if arr.ndim == 0:
            return np.full(dim, float(arr))
        if arr.size != dim:
            raise IntegratorConfigError(
                f"{label} has {arr.size} components but the state has {dim}"
            )
        return arr.copy()

    @property
    def min_step(self) -> float:
        return self._config.min_step

    @property
    def max_step(self) -> float:
        return self._config.max_step

    def scale(self, y0: np.ndarray, y1: np.ndarray = None) -> np.ndarray:
        """Return the per-component tolerance ``atol + rtol * max(|y0|, |y1|)``."""
        if y1 is None:
            return self._atol + self._rtol * np.abs(y0)
        return self._atol + self._rtol * np.maximum(np.abs(y0), np.abs(y1))

    def factor(self, error: float) -> float:
        """Return the factor to apply to the step size after a step whose
        scaled error is *error*."""
        cfg = self._config
        if error == 0.0:
            return cfg.max_growth
        return min(cfg.max_growth, max(cfg.min_reduction, cfg.safety * error ** self._exponent))

    @staticmethod
    def accept(error: float) -> bool:
        return error <= 1.0

    def filter_step(self, h: float, forward: bool, accept_small: bool, t: float = 0.0) -> float:
        """Clamp a step size to the configured bounds.

        Parameters
        ----------
        h : float
            Proposed signed step size.
        forward : bool
            Integration direction.
        accept_small : bool
            When True, a step smaller than ``min_step`` is replaced by
            ``min_step`` instead of failing. Used for the last step of an
            integration.
        t : float, default 0.0
            Time at which the step starts.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.StepSizeUnderflowError`
            If the step is smaller than ``min_step`` (and *accept_small* is
            False) or too small to change *t* in floating point.
        """
        cfg = self._config
        filtered = h
        if abs(h) < cfg.min_step:
            if accept_small:
                filtered = cfg.min_step if forward else -cfg.min_step
            else:
                raise StepSizeUnderflowError(
                    f"Step size {abs(h):.3e} fell below the minimal step {cfg.min_step:.3e} at t={t}",
                    step=abs(h),
                )
        if filtered > cfg.max_step:
            filtered = cfg.max_step
        elif filtered < -cfg.max_step:
            filtered = -cfg.max_step
        if not accept_small and abs(filtered) <= 4.0 * _EPS * abs(t):
            raise StepSizeUnderflowError(
                f"Step size {abs(filtered):.3e} is too small for t={t}", step=abs(filtered)
            )
        return filtered

    def initialize_step(
        self,
        f: Callable[[float, np.ndarray], np.ndarray],
        forward: bool,
        t0: float,
        y0: np.ndarray,
        y_dot0: np.ndarray,
        t_end: float,
    ) -> float:
        """Return the signed size of the first step.

        A user-supplied ``initial_step`` within ``[min_step, max_step]`` is
        used as is. Otherwise the step is estimated so that
        ``h^order * max(||y'||, ||y''||) = 0.01`` in the scaled norm, which
        costs one derivative evaluation (an explicit Euler look-ahead).
        """
        cfg = self._config
        span = abs(t_end - t0)
        sign = 1.0 if forward else -1.0

        if cfg.initial_step is not None and cfg.min_step <= abs(cfg.initial_step) <= cfg.max_step:
            return sign * min(abs(cfg.initial_step), span)

        scale = self.scale(y0)
        y_on_scale2 = float(np.sum((y0 / scale) ** 2))
        y_dot_on_scale2 = float(np.sum((y_dot0 / scale) ** 2))
        if y_on_scale2 < 1.0e-10 or y_dot_on_scale2 < 1.0e-10:
            h = 1.0e-6
        else:
            h = 0.01 * np.sqrt(y_on_scale2 / y_dot_on_scale2)
        h = min(h, span)

        y1 = y0 + sign * h * y_dot0
        y_dot1 = f(t0 + sign * h, y1)
        y_ddot_on_scale = float(np.sqrt(np.sum(((y_dot1 - y_dot0) / scale) ** 2))) / h

        max_inv2 = max(np.sqrt(y_dot_on_scale2), y_ddot_on_scale)
        if max_inv2 < 1.0e-15:
            h1 = max(1.0e-6, 0.001 * h)
        else:
            h1 = (0.01 / max_inv2) ** (1.0 / self._order)
        h = min(100.0 * h, h1)
        h = max(h, 1.0e-12 * abs(t0))
        h = min(max(h, cfg.min_step), cfg.max_step)
        h = min(h, span)
        logger.debug("Initial step estimate %.6e at t0=%s", h, t0)
        return sign * h
