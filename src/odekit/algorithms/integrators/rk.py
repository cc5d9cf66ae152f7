"""Provide explicit Runge-Kutta integrators.

Both fixed and adaptive step-size variants are provided together with small
convenience factories that select an appropriate implementation given the
desired formal order of accuracy.

A single driver per stepping policy is parameterized by a
:class:`~odekit.algorithms.integrators.tableau._ButcherTableau` (the step
formula) and a
:class:`~odekit.algorithms.integrators.interpolators._StepInterpolator`
subclass (its dense output); the methods themselves are just pairs of those.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I".

Dormand, J. R.; Prince, P. J. (1980). "A family of embedded Runge-Kutta
formulae".
"""

from typing import Optional, Type

import numpy as np

from odekit.algorithms.dynamics.base import _DynamicalSystemProtocol
from odekit.algorithms.integrators.base import _Integrator
from odekit.algorithms.integrators.configs import _AdaptiveStepConfig
from odekit.algorithms.integrators.interpolators import (
    _ClassicalRK4Interpolator, _DormandPrince54Interpolator,
    _DormandPrince853Interpolator, _EulerInterpolator, _GillInterpolator,
    _HighamHall54Interpolator, _LutherInterpolator, _MidpointInterpolator,
    _StepInterpolator)
from odekit.algorithms.integrators.stepsize import _StepSizeController
from odekit.algorithms.integrators.tableau import (CLASSICAL_RK4,
                                                   DORMAND_PRINCE_54,
                                                   DORMAND_PRINCE_853, EULER,
                                                   GILL, HIGHAM_HALL_54,
                                                   LUTHER, MIDPOINT,
                                                   _ButcherTableau)
from odekit.algorithms.utils.config import EXTRAPOLATION_TOL
from odekit.algorithms.utils.exceptions import IntegratorConfigError
from odekit.utils.log_config import logger


class _RungeKuttaBase(_Integrator):
    """Provide shared functionality of explicit Runge-Kutta schemes.

    Parameters
    ----------
    name : str
        Identifier of the scheme.
    tableau : :class:`~odekit.algorithms.integrators.tableau._ButcherTableau`
        Step formula.
    interpolator_cls : type
        Dense output matching *tableau*.
    extrapolation_tol : float
        Forwarded to the interpolators.
    **options
        Additional keyword options forwarded to :class:`~odekit.algorithms.integrators.base._Integrator`.

    Notes
    -----
    The class is **not** intended to be used directly.
    """

    def __init__(
        self,
        name: str,
        tableau: _ButcherTableau,
        interpolator_cls: Type[_StepInterpolator],
        extrapolation_tol: float = EXTRAPOLATION_TOL,
        **options,
    ):
        super().__init__(name, **options)
        self._tableau = tableau
        self._interpolator_cls = interpolator_cls
        self._extrapolation_tol = extrapolation_tol

    @property
    def order(self) -> int:
        """Return the formal order of accuracy of the method."""
        return self._tableau.order

    @property
    def tableau(self) -> _ButcherTableau:
        return self._tableau

    def _new_interpolator(self) -> _StepInterpolator:
        return self._interpolator_cls(extrapolation_tol=self._extrapolation_tol)

    def _start(self, system, t0, y0, t_end, y_out):
        """Common preamble of the drivers: validation, run reset and the
        zero-span short-circuit.

        Returns
        -------
        tuple
            ``(f, y, done)`` where *done* is True when there is nothing to
            integrate.
        """
        y0 = np.asarray(y0, dtype=np.float64)
        self.validate_inputs(system, t0, y0, t_end, y_out)
        y = y0.copy()
        f = self._build_rhs_wrapper(system)
        self._init_run(t0, y, t_end)
        if y_out is not None:
            y_out[:] = y
        return f, y, t0 == t_end

    @staticmethod
    def _passes(t: float, t_end: float, forward: bool) -> bool:
        return t >= t_end if forward else t <= t_end


class _FixedStepRK(_RungeKuttaBase):
    """Implement an explicit fixed-step Runge-Kutta scheme.

    Parameters
    ----------
    name : str
        Human readable identifier of the scheme (e.g. ``"RK4"``).
    tableau : :class:`~odekit.algorithms.integrators.tableau._ButcherTableau`
        Step formula; error weights are ignored.
    interpolator_cls : type
        Dense output matching *tableau*.
    step : float
        Step magnitude. The last step is shortened to land on the target
        time.
    **options
        Additional keyword options forwarded to :class:`~odekit.algorithms.integrators.base._Integrator`.
    """

    def __init__(
        self,
        name: str,
        tableau: _ButcherTableau,
        interpolator_cls: Type[_StepInterpolator],
        step: float,
        **options,
    ):
        if not (np.isfinite(step) and step > 0.0):
            raise IntegratorConfigError(f"Step must be finite and positive, got {step}")
        super().__init__(name, tableau, interpolator_cls, **options)
        self._step = float(step)

    @property
    def step(self) -> float:
        return self._step

    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        t0: float,
        y0: np.ndarray,
        t_end: float,
        y_out: Optional[np.ndarray] = None,
    ) -> float:
        """Integrate a dynamical system using a fixed-step Runge-Kutta method."""
        f, y, done = self._start(system, t0, y0, t_end, y_out)
        if done:
            return t0

        tableau = self._tableau
        forward = t_end > t0
        h_nominal = self._step if forward else -self._step
        interpolator = self._new_interpolator()
        k = tableau.new_stage_array(y.size)
        first_ready = False

        t = t0
        is_last = False
        n_steps = 0
        n_grid = 1
        while not is_last:
            next_t = t0 + n_grid * h_nominal
            # absorb the rounding of the grid into the last step
            if abs(t_end - t) <= self._step * (1.0 + 1.0e-12) or self._passes(next_t, t_end, forward):
                next_t = t_end
            h = next_t - t

            tableau.compute_stages(f, t, y, h, k, first_ready)
            y_new = tableau.advance(y, h, k)
            interpolator.store_step(t, y, next_t, y_new, k, f)
            t, y, is_last, reset = self._accept_step(interpolator, t_end)
            n_steps += 1
            if t == next_t:
                n_grid += 1
            if y_out is not None:
                y_out[:] = y

            if reset:
                k[0] = f(t, y)
                first_ready = True
            elif tableau.fsal:
                k[0] = k[-1]
                first_ready = True
            else:
                first_ready = False

        logger.info("%s: reached t=%.16g in %d steps, %d evaluations", self.name, t, n_steps, self._evaluations)
        return t


class _AdaptiveStepRK(_RungeKuttaBase):
    """Implement an embedded adaptive Runge-Kutta integrator.

    Parameters
    ----------
    name : str
        Identifier passed to the :class:`~odekit.algorithms.integrators.base._Integrator` base class.
    tableau : :class:`~odekit.algorithms.integrators.tableau._ButcherTableau`
        Step formula with error weights.
    interpolator_cls : type
        Dense output matching *tableau*.
    config : :class:`~odekit.algorithms.integrators.configs._AdaptiveStepConfig`, optional
        Step-size control settings. When omitted, one is built from
        *config_kwargs* (``rtol``, ``atol``, ``max_step``, ``min_step``, ...).
    **config_kwargs
        Fields of :class:`~odekit.algorithms.integrators.configs._AdaptiveStepConfig`.

    Raises
    ------
    :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
        If *tableau* has no embedded formula or the settings are invalid.
    """

    def __init__(
        self,
        name: str,
        tableau: _ButcherTableau,
        interpolator_cls: Type[_StepInterpolator],
        config: Optional[_AdaptiveStepConfig] = None,
        **config_kwargs,
    ):
        if not tableau.has_error_estimate:
            raise IntegratorConfigError(f"Tableau '{tableau.name}' has no embedded error estimate")
        if config is None:
            config = _AdaptiveStepConfig(**config_kwargs)
        elif config_kwargs:
            raise IntegratorConfigError("Pass either a config object or keyword settings, not both")
        super().__init__(
            name,
            tableau,
            interpolator_cls,
            extrapolation_tol=config.extrapolation_tol,
            max_evaluations=config.max_evaluations,
        )
        self._config = config

    @property
    def config(self) -> _AdaptiveStepConfig:
        return self._config

    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        t0: float,
        y0: np.ndarray,
        t_end: float,
        y_out: Optional[np.ndarray] = None,
    ) -> float:
        """Integrate with adaptive step-size control and dense output.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.StepSizeUnderflowError`
            If the tolerances cannot be met with a step larger than the
            minimal one.
        :class:`~odekit.algorithms.utils.exceptions.DerivativeEvaluationError`
            If the right-hand side returns non-finite values or a wrong shape.
        :class:`~odekit.algorithms.utils.exceptions.EvaluationBudgetExceededError`
            If more than ``max_evaluations`` evaluations are needed.
        :class:`~odekit.algorithms.utils.exceptions.ConvergenceError`
            If an event cannot be located.
        """
        f, y, done = self._start(system, t0, y0, t_end, y_out)
        if done:
            return t0

        tableau = self._tableau
        forward = t_end > t0
        controller = _StepSizeController(self._config, tableau.order, y.size)
        interpolator = self._new_interpolator()
        k = tableau.new_stage_array(y.size)
        k[0] = f(t0, y)
        first_ready = True

        t = t0
        h = controller.initialize_step(f, forward, t, y, k[0], t_end)
        is_last = False
        n_accepted = 0
        n_rejected = 0

        while not is_last:
            while True:
                next_t = t + h
                if self._passes(next_t, t_end, forward):
                    next_t = t_end
                    h = t_end - t

                tableau.compute_stages(f, t, y, h, k, first_ready)
                first_ready = True
                y_new = tableau.advance(y, h, k)
                error = tableau.error_norm(h, k, controller.scale(y, y_new))
                if controller.accept(error):
                    break

                n_rejected += 1
                h_retry = controller.filter_step(h * controller.factor(error), forward, False, t)
                logger.debug("Rejected step h=%.6e at t=%.16g (error %.3e), retrying with %.6e", h, t, error, h_retry)
                h = h_retry

            n_accepted += 1
            interpolator.store_step(t, y, next_t, y_new, k, f)
            t, y, is_last, reset = self._accept_step(interpolator, t_end)
            if y_out is not None:
                y_out[:] = y

            if reset:
                k[0] = f(t, y)
            elif tableau.fsal:
                k[0] = k[-1]
            else:
                first_ready = False

            if not is_last:
                scaled_h = h * controller.factor(error)
                h_next = controller.filter_step(
                    scaled_h, forward, self._passes(t + scaled_h, t_end, forward), t
                )
                if self._passes(t + h_next, t_end, forward):
                    h_next = t_end - t
                h = h_next

        logger.info(
            "%s: reached t=%.16g with %d accepted and %d rejected steps, %d evaluations",
            self.name, t, n_accepted, n_rejected, self._evaluations,
        )
        return t


class _RK4(_FixedStepRK):
    """Implement the classical 4th-order Runge-Kutta method.

    This is the standard 4th-order explicit Runge-Kutta method, also known
    as RK4 or the "classical" Runge-Kutta method. It uses 4 function
    evaluations per step and has order 4.
    """
    def __init__(self, step: float, **opts):
        super().__init__("RK4", CLASSICAL_RK4, _ClassicalRK4Interpolator, step, **opts)


class _Gill(_FixedStepRK):
    """Implement Gill's 4th-order Runge-Kutta method.

    Same order and cost as :class:`_RK4`, with coefficients chosen to limit
    the accumulation of round-off errors.
    """
    def __init__(self, step: float, **opts):
        super().__init__("Gill", GILL, _GillInterpolator, step, **opts)


class _Luther(_FixedStepRK):
    """Implement Luther's 6th-order Runge-Kutta method (7 evaluations per
    step) with a 5th-order dense output."""
    def __init__(self, step: float, **opts):
        super().__init__("Luther", LUTHER, _LutherInterpolator, step, **opts)


class _Midpoint(_FixedStepRK):
    """Implement the explicit midpoint method, order 2."""
    def __init__(self, step: float, **opts):
        super().__init__("Midpoint", MIDPOINT, _MidpointInterpolator, step, **opts)


class _Euler(_FixedStepRK):
    """Implement the explicit Euler method, order 1."""
    def __init__(self, step: float, **opts):
        super().__init__("Euler", EULER, _EulerInterpolator, step, **opts)


class _RK45(_AdaptiveStepRK):
    """Implement the Dormand-Prince 5(4) adaptive Runge-Kutta method.

    This is the Dormand-Prince 5th-order adaptive Runge-Kutta method with
    4th-order error estimation and Shampine's 4th-order dense output. It
    provides a good balance between accuracy and computational efficiency
    for most applications.
    """
    def __init__(self, config: Optional[_AdaptiveStepConfig] = None, **opts):
        super().__init__("RK45", DORMAND_PRINCE_54, _DormandPrince54Interpolator, config, **opts)


class _HighamHall54(_AdaptiveStepRK):
    """Implement the Higham-Hall 5(4) adaptive Runge-Kutta method.

    A 5th-order method with an embedded 4th-order error estimate and a
    4th-order dense output. It is an alternative to :class:`_RK45`.
    """
    def __init__(self, config: Optional[_AdaptiveStepConfig] = None, **opts):
        super().__init__("HighamHall54", HIGHAM_HALL_54, _HighamHall54Interpolator, config, **opts)


class _DOP853(_AdaptiveStepRK):
    """Implement the Dormand-Prince 8(5,3) adaptive Runge-Kutta method.

    This is the Dormand-Prince 8th-order adaptive Runge-Kutta method with
    5th and 3rd-order error estimation and a 7th-order dense output. It
    provides very high accuracy for applications requiring precise
    numerical integration.
    """
    def __init__(self, config: Optional[_AdaptiveStepConfig] = None, **opts):
        super().__init__("DOP853", DORMAND_PRINCE_853, _DormandPrince853Interpolator, config, **opts)


class RungeKutta:
    """Implement a factory class for creating fixed-step Runge-Kutta integrators.

    The method is selected by its order (1 Euler, 2 midpoint, 4 classical,
    6 Luther) or by name through *method*, which also gives access to
    Gill's variant of the 4th-order method.

    Examples
    --------
    >>> rk4 = RungeKutta(order=4, step=0.01)
    >>> gill = RungeKutta(step=0.01, method="gill")
    """
    _map = {1: _Euler, 2: _Midpoint, 4: _RK4, 6: _Luther}
    _methods = {"euler": _Euler, "midpoint": _Midpoint, "rk4": _RK4, "gill": _Gill, "luther": _Luther}
    def __new__(cls, order=4, step=None, method=None, **opts):
        """Create a fixed-step Runge-Kutta integrator.

        Parameters
        ----------
        order : int, default 4
            Order of the Runge-Kutta method: 1, 2, 4 or 6.
        step : float
            Step magnitude.
        method : str, optional
            Name of the method, one of ``"euler"``, ``"midpoint"``,
            ``"rk4"``, ``"gill"`` and ``"luther"``. Takes precedence over
            *order*.
        **opts
            Additional options passed to the integrator constructor.

        Returns
        -------
        :class:`~odekit.algorithms.integrators.rk._FixedStepRK`
            A fixed-step Runge-Kutta integrator instance.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If the method or order is not supported or *step* is missing.
        """
        if method is not None:
            if method not in cls._methods:
                raise IntegratorConfigError(
                    f"Unknown fixed-step RK method '{method}', expected one of {sorted(cls._methods)}"
                )
            integrator_cls = cls._methods[method]
        elif order in cls._map:
            integrator_cls = cls._map[order]
        else:
            raise IntegratorConfigError("Fixed-step RK order must be 1, 2, 4 or 6")
        if step is None:
            raise IntegratorConfigError("A fixed-step integrator needs a step")
        return integrator_cls(step, **opts)


class AdaptiveRK:
    """Implement a factory class for creating adaptive step-size Runge-Kutta integrators.

    This factory provides convenient access to adaptive step-size Runge-Kutta
    methods. The available orders are 5 (Dormand-Prince 5(4)) and 8
    (Dormand-Prince 8(5,3)); Higham-Hall 5(4) is selected by name.

    Examples
    --------
    >>> rk45 = AdaptiveRK(order=5)
    >>> dop853 = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12)
    >>> hh54 = AdaptiveRK(method="higham_hall54")
    """
    _map = {5: _RK45, 8: _DOP853}
    _methods = {"dormand_prince54": _RK45, "higham_hall54": _HighamHall54, "dop853": _DOP853}
    def __new__(cls, order=5, method=None, **opts):
        """Create an adaptive step-size Runge-Kutta integrator.

        Parameters
        ----------
        order : int, default 5
            Order of the Runge-Kutta method. Must be 5 or 8.
        method : str, optional
            Name of the method, one of ``"dormand_prince54"``,
            ``"higham_hall54"`` and ``"dop853"``. Takes precedence over
            *order*.
        **opts
            A ``config`` object or the fields of
            :class:`~odekit.algorithms.integrators.configs._AdaptiveStepConfig`.

        Returns
        -------
        :class:`~odekit.algorithms.integrators.rk._AdaptiveStepRK`
            An adaptive step-size Runge-Kutta integrator instance.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If the method or order is not supported.
        """
        if method is not None:
            if method not in cls._methods:
                raise IntegratorConfigError(
                    f"Unknown adaptive RK method '{method}', expected one of {sorted(cls._methods)}"
                )
            return cls._methods[method](**opts)
        if order not in cls._map:
            raise IntegratorConfigError("Adaptive RK order must be 5 or 8")
        return cls._map[order](**opts)
