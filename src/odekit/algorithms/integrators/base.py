"""Provide abstract interfaces for numerical time integration.

:class:`_Integrator` owns everything that is common to the step-based
integrators of :mod:`~odekit.algorithms.integrators.rk`: the registered
event and step handlers, the right-hand side evaluation counter and the
event-aware acceptance of a step.

References
----------
Hairer, E., Norsett, S. P., & Wanner, G. (1993). "Solving Ordinary
Differential Equations I: Non-stiff Problems".
"""

import inspect
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from odekit.algorithms.dynamics.base import _DynamicalSystemProtocol
from odekit.algorithms.integrators.configs import _EventConfig
from odekit.algorithms.integrators.events import (EventHandler,
                                                  FunctionEventHandler,
                                                  _EventState, _EventStatus)
from odekit.algorithms.integrators.interpolators import _StepInterpolator
from odekit.algorithms.integrators.sampling import StepHandler, _ContinuousOutput
from odekit.algorithms.integrators.types import _Solution
from odekit.algorithms.utils.exceptions import (DerivativeEvaluationError,
                                                EvaluationBudgetExceededError,
                                                IntegratorConfigError)


class _Integrator(ABC):
    """Define the interface and the shared machinery of every integrator.

    Parameters
    ----------
    name : str
        Human-readable identifier of the method.
    max_evaluations : int, optional
        Budget of right-hand side evaluations per call to :meth:`integrate`.
        Unlimited when None.
    **options
        Extra keyword arguments left untouched and stored in
        :attr:`~odekit.algorithms.integrators.base._Integrator.options` for later use by subclasses.

    Notes
    -----
    Subclasses *must* implement the abstract members :func:`~odekit.algorithms.integrators.base._Integrator.order` and
    :func:`~odekit.algorithms.integrators.base._Integrator.integrate`. They
    hand every accepted step to :meth:`_accept_step`, which runs event
    detection and feeds the step handlers.
    """

    def __init__(self, name: str, max_evaluations: Optional[int] = None, **options):
        if max_evaluations is not None and max_evaluations <= 0:
            raise IntegratorConfigError("max_evaluations must be positive")
        self.name = name
        self.options = options
        self._max_evaluations = max_evaluations
        self._evaluations = 0
        self._event_states: List[_EventState] = []
        self._step_handlers: List[StepHandler] = []
        self._states_initialized = False
        self._states_reset = False

    @property
    @abstractmethod
    def order(self) -> Optional[int]:
        """Order of accuracy of the integrator.

        Returns
        -------
        int or None
            Order of the method, or None if not applicable
        """
        pass

    @abstractmethod
    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        t0: float,
        y0: np.ndarray,
        t_end: float,
        y_out: Optional[np.ndarray] = None,
    ) -> float:
        """Integrate the dynamical system from *t0* to *t_end*.

        Parameters
        ----------
        system : _DynamicalSystemProtocol
            The dynamical system to integrate
        t0 : float
            Initial time.
        y0 : numpy.ndarray
            Initial state vector, shape (system.dim,). Not modified.
        t_end : float
            Target time, may be smaller than *t0*.
        y_out : numpy.ndarray, optional
            Receives the state at the returned time. On failure it holds
            the state of the last accepted step.

        Returns
        -------
        float
            Time at which the integration stopped: *t_end*, or the time of
            an event that stopped it.
        """
        pass

    @property
    def evaluations(self) -> int:
        """Number of right-hand side evaluations of the last integration."""
        return self._evaluations

    @property
    def max_evaluations(self) -> Optional[int]:
        return self._max_evaluations

    def add_event_handler(
        self,
        handler: Union[EventHandler, Callable[[float, np.ndarray], float]],
        config: Optional[_EventConfig] = None,
    ) -> EventHandler:
        """Register an event handler.

        Parameters
        ----------
        handler : :class:`~odekit.algorithms.integrators.events.EventHandler` or callable
            The handler, or a plain function ``g(t, y)`` which is wrapped in
            a :class:`~odekit.algorithms.integrators.events.FunctionEventHandler`
            honouring ``config.terminal``.
        config : :class:`~odekit.algorithms.integrators.configs._EventConfig`, optional
            Detection settings, defaults to ``_EventConfig()``.

        Returns
        -------
        :class:`~odekit.algorithms.integrators.events.EventHandler`
            The registered handler.
        """
        cfg = config if config is not None else _EventConfig()
        if not isinstance(cfg, _EventConfig):
            raise IntegratorConfigError(f"Expected an _EventConfig, got {type(cfg).__name__}")
        if not isinstance(handler, EventHandler):
            if not callable(handler):
                raise IntegratorConfigError("Event handler must be an EventHandler or a callable g(t, y)")
            handler = FunctionEventHandler(handler, terminal=cfg.terminal)
        self._event_states.append(_EventState(handler, cfg))
        return handler

    def get_event_handlers(self) -> List[EventHandler]:
        return [state.handler for state in self._event_states]

    def remove_event_handler(self, handler: EventHandler) -> None:
        self._event_states = [s for s in self._event_states if s.handler is not handler]

    def clear_event_handlers(self) -> None:
        self._event_states = []

    def add_step_handler(self, handler: StepHandler) -> StepHandler:
        if not isinstance(handler, StepHandler):
            raise IntegratorConfigError(f"Expected a StepHandler, got {type(handler).__name__}")
        self._step_handlers.append(handler)
        return handler

    def get_step_handlers(self) -> List[StepHandler]:
        return list(self._step_handlers)

    def remove_step_handler(self, handler: StepHandler) -> None:
        self._step_handlers = [h for h in self._step_handlers if h is not handler]

    def clear_step_handlers(self) -> None:
        self._step_handlers = []

    def validate_system(self, system: _DynamicalSystemProtocol) -> None:
        """Check that *system* complies with :class:`~odekit.algorithms.dynamics.base._DynamicalSystemProtocol`.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If the required attribute ``rhs`` is absent.
        """
        if not hasattr(system, 'rhs'):
            raise IntegratorConfigError(f"System must implement 'rhs' method for {self.name}")

    def validate_inputs(
        self,
        system: _DynamicalSystemProtocol,
        t0: float,
        y0: np.ndarray,
        t_end: float,
        y_out: Optional[np.ndarray] = None,
    ) -> None:
        """Validate that the input arguments form a consistent integration task.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If any of the following conditions holds:
            - ``len(y0)`` differs from ``system.dim``.
            - *t0* or *t_end* is not finite, or *y0* has non-finite entries.
            - *y_out* is given with a shape other than ``(system.dim,)``.
        """
        self.validate_system(system)

        if len(y0) != system.dim:
            raise IntegratorConfigError(
                f"Initial state dimension {len(y0)} != system dimension {system.dim}"
            )
        if not (np.isfinite(t0) and np.isfinite(t_end)):
            raise IntegratorConfigError(f"Integration bounds must be finite, got [{t0}, {t_end}]")
        if not np.all(np.isfinite(y0)):
            raise IntegratorConfigError("Initial state contains non-finite values")
        if y_out is not None and np.shape(y_out) != (system.dim,):
            raise IntegratorConfigError(
                f"y_out must have shape ({system.dim},), got {np.shape(y_out)}"
            )

    def _build_rhs_wrapper(self, system: _DynamicalSystemProtocol) -> Callable[[float, np.ndarray], np.ndarray]:
        """Return the ``(t, y)`` right-hand side of *system* wrapped with
        evaluation counting and output checks.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If ``system.rhs`` does not accept ``(t, y)``.
        """
        rhs_func = system.rhs
        try:
            sig = inspect.signature(rhs_func)
        except (TypeError, ValueError):
            sig = None
        if sig is not None and len(sig.parameters) < 2:
            raise IntegratorConfigError("System.rhs must have signature (t, y)")

        dim = system.dim
        budget = self._max_evaluations

        def _f(t: float, y: np.ndarray) -> np.ndarray:
            if budget is not None and self._evaluations >= budget:
                raise EvaluationBudgetExceededError(
                    f"{self.name}: exceeded the budget of {budget} right-hand side evaluations at t={t}",
                    max_evaluations=budget,
                )
            self._evaluations += 1
            y_dot = np.asarray(rhs_func(t, y), dtype=np.float64)
            if y_dot.shape != (dim,):
                raise DerivativeEvaluationError(
                    f"Right-hand side returned shape {y_dot.shape}, expected ({dim},)", t=t
                )
            if not np.all(np.isfinite(y_dot)):
                raise DerivativeEvaluationError(
                    f"Right-hand side returned non-finite values at t={t}", t=t
                )
            return y_dot

        return _f

    def _init_run(self, t0: float, y0: np.ndarray, t_end: float) -> None:
        """Reset the per-run fields and notify the handlers."""
        self._evaluations = 0
        self._states_initialized = False
        self._states_reset = False
        for state in self._event_states:
            state.handler.init(t0, y0.copy(), t_end)
        for handler in self._step_handlers:
            handler.init(t0, y0.copy(), t_end)

    def _accept_step(
        self,
        interpolator: _StepInterpolator,
        t_end: float,
    ) -> Tuple[float, np.ndarray, bool, bool]:
        """Process events and step handlers on an accepted step.

        Events located inside the step are handled in chronological order
        in the integration direction. Step handlers receive the sub-step
        ending at each event. A stopping event ends the step at the event
        time, and so does a reset, after which the caller must recompute
        the derivatives.

        Parameters
        ----------
        interpolator : :class:`~odekit.algorithms.integrators.interpolators._StepInterpolator`
            Dense output of the step.
        t_end : float
            Target time of the integration.

        Returns
        -------
        tuple of (float, numpy.ndarray, bool, bool)
            The time the integration reached, the state there, whether the
            integration is over and whether the state was reset.
        """
        previous_t = interpolator.previous_time
        current_t = interpolator.current_time
        forward = interpolator.forward
        dim = interpolator.current_state.size

        if not self._states_initialized:
            for state in self._event_states:
                state.reinitialize_begin(interpolator)
            self._states_initialized = True
        elif self._states_reset:
            # g was last read on the state before the reset
            for state in self._event_states:
                state.restart(interpolator)
        self._states_reset = False

        def _chronological(state: _EventState) -> float:
            return state.event_time if forward else -state.event_time

        occurring = [state for state in self._event_states if state.evaluate_step(interpolator)]
        is_last = False

        while occurring:
            occurring.sort(key=_chronological)
            current = occurring.pop(0)
            event_t = current.event_time

            interpolator.set_soft_previous_time(previous_t)
            interpolator.set_soft_current_time(event_t)
            event_y = interpolator.state(event_t)

            for state in self._event_states:
                state.step_accepted(event_t, event_y)
                is_last = is_last or state.stop()

            for handler in self._step_handlers:
                handler.handle_step(interpolator, is_last)

            if is_last:
                return event_t, event_y, True, False

            need_reset = False
            y_before = event_y
            for state in self._event_states:
                needed, event_y = state.reset(event_t, event_y)
                need_reset = need_reset or needed
            if need_reset:
                if event_y.shape != (dim,):
                    raise IntegratorConfigError(
                        f"Reset state has shape {event_y.shape}, expected ({dim},)"
                    )
                self._states_reset = not np.array_equal(event_y, y_before)
                return event_t, event_y, False, True

            occurring = [s for s in occurring if s.status is _EventStatus.CONVERGED]

            previous_t = event_t
            interpolator.set_soft_previous_time(event_t)
            interpolator.set_soft_current_time(current_t)

            if current.evaluate_step(interpolator):
                occurring.append(current)

        interpolator.set_soft_previous_time(previous_t)
        interpolator.set_soft_current_time(current_t)
        current_y = interpolator.state(current_t)
        for state in self._event_states:
            state.step_accepted(current_t, current_y)
            is_last = is_last or state.stop()
        is_last = is_last or abs(current_t - t_end) <= np.spacing(max(abs(current_t), abs(t_end)))

        for handler in self._step_handlers:
            handler.handle_step(interpolator, is_last)

        return current_t, current_y, is_last, False

    def propagate(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
        *,
        event_fn: "Callable[[float, np.ndarray], float] | None" = None,
        event_cfg: "_EventConfig | None" = None,
    ) -> _Solution:
        """Integrate and sample the trajectory on *t_vals*.

        Parameters
        ----------
        system : _DynamicalSystemProtocol
            The dynamical system to integrate.
        y0 : numpy.ndarray
            State at ``t_vals[0]``.
        t_vals : numpy.ndarray
            Strictly monotonic sample times, at least two.
        event_fn : callable, optional
            Switching function ``g(t, y)`` detected during this call only.
        event_cfg : :class:`~odekit.algorithms.integrators.configs._EventConfig`, optional
            Settings of *event_fn*.

        Returns
        -------
        :class:`~odekit.algorithms.integrators.types._Solution`
            States and derivatives at the sample times. When a terminal
            event fires, the samples past it are dropped and the event
            time and state are appended.
        """
        y0 = np.asarray(y0, dtype=np.float64)
        t_vals = np.asarray(t_vals, dtype=np.float64)
        self._validate_samples(t_vals)

        constant = self._maybe_constant_solution(system, y0, t_vals)
        if constant is not None:
            return constant

        output = _ContinuousOutput()
        self.add_step_handler(output)
        handler = None
        if event_fn is not None:
            handler = self.add_event_handler(event_fn, event_cfg)
        y_end = np.empty(system.dim, dtype=np.float64)
        try:
            t_stop = self.integrate(system, t_vals[0], y0, t_vals[-1], y_out=y_end)
        finally:
            self.remove_step_handler(output)
            if handler is not None:
                self.remove_event_handler(handler)

        forward = t_vals[-1] > t_vals[0]
        if t_stop == t_vals[-1]:
            times = t_vals
        else:
            before = t_vals < t_stop if forward else t_vals > t_stop
            times = np.append(t_vals[before], t_stop)

        sol = output.sample(times)
        sol.states[-1] = y_end
        return sol

    @staticmethod
    def _validate_samples(t_vals: np.ndarray) -> None:
        if len(t_vals) < 2:
            raise IntegratorConfigError("Must provide at least 2 time points")
        dt = np.diff(t_vals)
        # zero-span requests are answered with a constant solution
        if np.all(dt == 0.0):
            return
        if not (np.all(dt > 0) or np.all(dt < 0)):
            raise IntegratorConfigError("Time values must be strictly monotonic (either increasing or decreasing)")

    def __str__(self):
        return f"ODEKIT-{self.name}"

    def __repr__(self):
        return f"{self.__class__.__name__}(name='{self.name}', options={self.options})"

    def _maybe_constant_solution(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
    ) -> "_Solution | None":
        """Return constant-state solution when span is effectively zero; else None."""
        if t_vals.size >= 2 and t_vals[0] == t_vals[-1]:
            self.validate_inputs(system, t_vals[0], y0, t_vals[-1])
            deriv0 = np.asarray(system.rhs(t_vals[0], y0), dtype=np.float64)
            states = np.repeat(y0[None, :], repeats=t_vals.size, axis=0)
            derivs = np.repeat(deriv0[None, :], repeats=t_vals.size, axis=0)
            return _Solution(times=t_vals.copy(), states=states, derivatives=derivs)
        return None
