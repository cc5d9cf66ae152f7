"""Event detection for the step-based integrators.

An event is the crossing of zero by a scalar switching function ``g(t, y)``.
After every accepted step the integrator asks each registered
:class:`_EventState` whether ``g`` changes sign inside the step, using the
dense output of the step, and locates the root with Brent's method. Events
are then handled by the integrator in chronological order; each can let the
integration continue, stop it, or reset the state.

Notes
-----
The sign of ``g`` is tracked across steps rather than re-read, and is forced
to its value "just after" an event once the event has been handled. This
prevents an event from firing twice when ``g`` is noisy around its root and
makes sure no ``g`` is evaluated before the last event time.
"""

import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.optimize import root_scalar

from odekit.algorithms.integrators.configs import _EventConfig
from odekit.algorithms.integrators.interpolators import _StepInterpolator
from odekit.algorithms.utils.exceptions import ConvergenceError
from odekit.utils.log_config import logger


class EventAction(Enum):
    """What the integrator does once an event has been handled."""

    CONTINUE = "continue"
    STOP = "stop"
    RESET_STATE = "reset_state"
    RESET_DERIVATIVES = "reset_derivatives"


class EventHandler(ABC):
    """Interface of user-defined switching functions.

    Subclasses implement :meth:`g` and :meth:`event_occurred`, and
    :meth:`reset_state` when :meth:`event_occurred` may return
    :attr:`EventAction.RESET_STATE`.
    """

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        """Called once at the start of every integration."""
        pass

    @abstractmethod
    def g(self, t: float, y: np.ndarray) -> float:
        """Switching function whose zeros are the events."""
        pass

    @abstractmethod
    def event_occurred(self, t: float, y: np.ndarray, increasing: bool) -> EventAction:
        """Handle an event.

        Parameters
        ----------
        t : float
            Event time.
        y : numpy.ndarray
            State at the event time.
        increasing : bool
            True if ``g`` goes from negative to positive values when time
            increases, whatever the integration direction.

        Returns
        -------
        :class:`EventAction`
            Indication of what the integrator should do next.
        """
        pass

    def reset_state(self, t: float, y: np.ndarray) -> np.ndarray:
        """Return the state the integration restarts from after an event
        answered with :attr:`EventAction.RESET_STATE`."""
        return y


class FunctionEventHandler(EventHandler):
    """Wrap a plain callable ``g(t, y) -> float`` into an
    :class:`EventHandler`.

    Parameters
    ----------
    g : callable
        Switching function.
    terminal : bool, default True
        Stop the integration at the event.
    reset : callable, optional
        Function ``(t, y) -> y_new`` applied at the event. Takes precedence
        over *terminal*.
    """

    def __init__(
        self,
        g: Callable[[float, np.ndarray], float],
        terminal: bool = True,
        reset: Optional[Callable[[float, np.ndarray], np.ndarray]] = None,
    ):
        self._g = g
        self.terminal = terminal
        self._reset = reset

    def g(self, t: float, y: np.ndarray) -> float:
        return float(self._g(t, y))

    def event_occurred(self, t: float, y: np.ndarray, increasing: bool) -> EventAction:
        if self._reset is not None:
            return EventAction.RESET_STATE
        return EventAction.STOP if self.terminal else EventAction.CONTINUE

    def reset_state(self, t: float, y: np.ndarray) -> np.ndarray:
        if self._reset is None:
            return y
        return np.asarray(self._reset(t, y), dtype=np.float64)

    def __repr__(self):
        return f"FunctionEventHandler(g={self._g!r}, terminal={self.terminal})"


class _EventStatus(Enum):
    IDLE = "idle"
    PENDING = "pending"
    CONVERGED = "converged"


class _EventState:
    """Runtime state of one event handler during an integration.

    Parameters
    ----------
    handler : :class:`EventHandler`
        The wrapped handler.
    config : :class:`~odekit.algorithms.integrators.configs._EventConfig`
        Convergence threshold, iteration bound, check interval and
        direction filter.
    """

    def __init__(self, handler: EventHandler, config: _EventConfig):
        self.handler = handler
        self.config = config
        self._convergence = float(config.tol)
        self._max_check = float(config.max_check_interval)
        self._max_iter = int(config.max_iter)
        self._direction = int(config.direction)

        self._t0 = np.nan
        self._g0 = np.nan
        self._g0_positive = True
        self._status = _EventStatus.IDLE
        self._pending_time = np.nan
        self._previous_event_time = np.nan
        self._increasing = True
        self._forward = True
        self._next_action = EventAction.CONTINUE

    @property
    def status(self) -> _EventStatus:
        return self._status

    @property
    def convergence(self) -> float:
        return self._convergence

    @property
    def max_check_interval(self) -> float:
        return self._max_check

    @property
    def max_iteration_count(self) -> int:
        return self._max_iter

    @property
    def previous_event_time(self) -> float:
        return self._previous_event_time

    @property
    def event_time(self) -> float:
        """Time of the located event, or an infinity in the integration
        direction when no event is pending."""
        if self._status is _EventStatus.CONVERGED:
            return self._pending_time
        return np.inf if self._forward else -np.inf

    def _g_on_step(self, interpolator: _StepInterpolator, t: float) -> float:
        return float(self.handler.g(t, interpolator.state(t)))

    def reinitialize_begin(self, interpolator: _StepInterpolator) -> None:
        """Reset the runtime fields and read ``g`` at the start of the first
        step of an integration.

        An exact zero of ``g`` at the start is ignored: the sign is taken
        slightly after the start instead.
        """
        self._forward = interpolator.forward
        self._status = _EventStatus.IDLE
        self._pending_time = np.nan
        self._previous_event_time = np.nan
        self._increasing = True
        self._next_action = EventAction.CONTINUE

        self._read_start(interpolator)

    def restart(self, interpolator: _StepInterpolator) -> None:
        """Re-read ``g`` at the start of the first step after a state reset.

        The time of the last handled event is kept, so the same event is not
        reported again at the reset time.
        """
        self._forward = interpolator.forward
        self._read_start(interpolator)

    def _read_start(self, interpolator: _StepInterpolator) -> None:
        self._t0 = interpolator.previous_time
        self._g0 = self._g_on_step(interpolator, self._t0)
        if self._g0 == 0.0:
            epsilon = max(self._convergence, abs(4.0 * np.finfo(float).eps * self._t0))
            offset = min(0.5 * epsilon, abs(interpolator.current_time - self._t0))
            t_start = self._t0 + (offset if self._forward else -offset)
            self._g0 = self._g_on_step(interpolator, t_start)
        self._g0_positive = self._g0 >= 0.0

    def _locate_root(self, interpolator: _StepInterpolator, ta: float, ga: float,
                     tb: float, gb: float) -> float:
        if ga == 0.0:
            return ta
        if gb == 0.0:
            return tb
        lo, hi = (ta, tb) if ta < tb else (tb, ta)
        sol = root_scalar(
            lambda t: self._g_on_step(interpolator, t),
            bracket=(lo, hi),
            method="brentq",
            xtol=self._convergence,
            maxiter=self._max_iter,
        )
        if not sol.converged:
            raise ConvergenceError(
                f"Event localization did not converge in [{lo}, {hi}] after {self._max_iter} iterations"
            )
        return float(sol.root)

    def evaluate_step(self, interpolator: _StepInterpolator) -> bool:
        """Look for a sign change of ``g`` between the tracked start time and
        the end of the step held by *interpolator*.

        Returns
        -------
        bool
            True if an event was located; its time is :attr:`event_time`.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.ConvergenceError`
            If the root solver exceeds ``max_iter`` iterations.
        """
        self._forward = interpolator.forward
        t1 = interpolator.current_time
        dt = t1 - self._t0
        if abs(dt) < self._convergence:
            # too short to locate anything
            self._status = _EventStatus.IDLE
            self._pending_time = np.nan
            return False

        n = max(1, int(math.ceil(abs(dt) / self._max_check))) if np.isfinite(self._max_check) else 1
        h = dt / n
        forward = self._forward
        conv = self._convergence

        ta = self._t0
        ga = self._g0
        i = 0
        while i < n:
            tb = t1 if i == n - 1 else self._t0 + (i + 1) * h
            gb = self._g_on_step(interpolator, tb)

            if self._g0_positive ^ (gb >= 0.0):
                self._increasing = gb >= ga
                increasing_in_time = not (self._increasing ^ forward)
                if self._direction != 0 and increasing_in_time != (self._direction > 0):
                    # crossing not wanted: follow it and keep scanning
                    self._g0_positive = gb >= 0.0
                    ta, ga = tb, gb
                    i += 1
                    continue

                if ga * gb > 0.0:
                    # tracked sign was forced after a previous event
                    self._g0_positive = gb >= 0.0
                    ta, ga = tb, gb
                    i += 1
                    continue

                self._status = _EventStatus.PENDING
                root = self._locate_root(interpolator, ta, ga, tb, gb)

                previous = self._previous_event_time
                if (not np.isnan(previous)
                        and abs(root - ta) <= conv
                        and abs(root - previous) <= conv):
                    # already handled event: step past it while g keeps
                    # its new sign
                    stride = conv
                    while True:
                        ta = min(ta + stride, tb) if forward else max(ta - stride, tb)
                        stride *= 2.0
                        ga = self._g_on_step(interpolator, ta)
                        if not ((self._g0_positive ^ (ga >= 0.0)) and ta != tb):
                            break
                    if ta != tb:
                        # retry the same sub-interval from the new start
                        continue
                    # g kept the other sign up to the end of the sub-interval
                    self._status = _EventStatus.IDLE
                    self._g0_positive = gb >= 0.0
                    ta, ga = tb, gb
                    i += 1
                    continue
                elif np.isnan(previous) or abs(previous - root) > conv:
                    self._set_pending(root)
                    return True
                self._status = _EventStatus.IDLE

            ta, ga = tb, gb
            i += 1

        self._status = _EventStatus.IDLE
        self._pending_time = np.nan
        return False

    def _set_pending(self, root: float) -> None:
        self._pending_time = root
        self._status = _EventStatus.CONVERGED
        logger.debug("Located event of %r at t=%.16g", self.handler, root)

    def step_accepted(self, t: float, y: np.ndarray) -> None:
        """Acknowledge that the integration reached *t*.

        ``g(t, y)`` becomes the reference value for the next step. If the
        located event lies at *t*, the handler is notified and its answer is
        stored for :meth:`stop` and :meth:`reset`.
        """
        self._t0 = t
        self._g0 = float(self.handler.g(t, y))
        if (self._status is _EventStatus.CONVERGED
                and abs(self._pending_time - t) <= self._convergence):
            self._previous_event_time = t
            self._g0_positive = self._increasing
            self._next_action = self.handler.event_occurred(
                t, y, not (self._increasing ^ self._forward)
            )
            logger.debug("Event of %r triggered at t=%.16g: %s", self.handler, t, self._next_action.name)
        else:
            self._g0_positive = self._g0 >= 0.0
            self._next_action = EventAction.CONTINUE

    def stop(self) -> bool:
        """True if the integration must stop at the last event."""
        return self._next_action is EventAction.STOP

    def reset(self, t: float, y: np.ndarray) -> Tuple[bool, np.ndarray]:
        """Apply the reset requested by the event located at *t*, if any.

        Returns
        -------
        tuple of (bool, numpy.ndarray)
            Whether the derivatives must be recomputed, and the (possibly
            new) state.
        """
        if not (self._status is _EventStatus.CONVERGED
                and abs(self._pending_time - t) <= self._convergence):
            return False, y
        if self._next_action is EventAction.RESET_STATE:
            y = np.asarray(self.handler.reset_state(t, y), dtype=np.float64)
            logger.debug("State reset by %r at t=%.16g", self.handler, t)
        self._status = _EventStatus.IDLE
        self._pending_time = np.nan
        return (self._next_action in (EventAction.RESET_STATE, EventAction.RESET_DERIVATIVES)), y

    def __repr__(self):
        return f"_EventState(handler={self.handler!r}, status={self._status.name})"
