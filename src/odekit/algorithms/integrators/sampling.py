"""Step handlers: observers of the accepted steps of an integration.

Two handlers are provided. :class:`_ContinuousOutput` keeps a copy of the
dense output of every step so that the whole trajectory can be evaluated
after the run. :class:`StepNormalizer` resamples the variable steps of an
adaptive integrator on a fixed grid and hands the samples to a callback.
"""

import bisect
from abc import ABC, abstractmethod
from typing import Callable, List

import numpy as np

from odekit.algorithms.integrators.interpolators import _StepInterpolator
from odekit.algorithms.integrators.types import _Solution
from odekit.algorithms.utils.exceptions import IntegratorConfigError


class StepHandler(ABC):
    """Interface of the step observers registered on an integrator.

    Handlers must not modify the interpolator they receive beyond querying
    it; they cannot influence the integration.
    """

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        """Called once at the start of every integration towards *t*."""
        pass

    @abstractmethod
    def handle_step(self, interpolator: _StepInterpolator, is_last: bool) -> None:
        """Process the (sub-)step between the soft bounds of *interpolator*."""
        pass


class _ContinuousOutput(StepHandler):
    """Store the dense output of a whole integration.

    Notes
    -----
    Each stored step keeps the full polynomial of its integrator step but is
    restricted to its soft bounds, so steps split by events are stored as
    several contiguous pieces.
    """

    def __init__(self):
        self._steps: List[_StepInterpolator] = []
        self._ends: List[float] = []
        self._initial_time = np.nan
        self._final_time = np.nan
        self._forward = True

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        self._steps = []
        self._ends = []
        self._initial_time = float(t0)
        self._final_time = float(t0)
        self._forward = t >= t0

    def handle_step(self, interpolator: _StepInterpolator, is_last: bool) -> None:
        if not self._steps:
            self._initial_time = interpolator.soft_previous_time
            self._forward = interpolator.forward
        self._steps.append(interpolator.copy())
        self._final_time = interpolator.soft_current_time
        self._ends.append(self._key(self._final_time))

    def _key(self, t: float) -> float:
        return t if self._forward else -t

    @property
    def initial_time(self) -> float:
        return self._initial_time

    @property
    def final_time(self) -> float:
        return self._final_time

    @property
    def forward(self) -> bool:
        return self._forward

    def __len__(self) -> int:
        return len(self._steps)

    def _locate(self, t: float) -> _StepInterpolator:
        if not self._steps:
            raise ValueError("No step has been stored")
        idx = bisect.bisect_left(self._ends, self._key(t))
        return self._steps[min(idx, len(self._steps) - 1)]

    def interpolate(self, t: float) -> np.ndarray:
        """Return the state at time *t* within the stored trajectory."""
        return self._locate(t).state(t)

    def derivative(self, t: float) -> np.ndarray:
        """Return the derivative of the dense output at time *t*."""
        return self._locate(t).derivative(t)

    def sample(self, times: np.ndarray) -> _Solution:
        """Evaluate the trajectory on *times*, states and derivatives."""
        times = np.asarray(times, dtype=np.float64)
        states = np.array([self.interpolate(t) for t in times])
        derivs = np.array([self.derivative(t) for t in times])
        return _Solution(times=times.copy(), states=states, derivatives=derivs)

    def append(self, other: "_ContinuousOutput") -> None:
        """Concatenate the steps of *other* after the stored ones.

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If the two outputs differ in dimension or direction, or do not
            join.
        """
        if len(other) == 0:
            return
        if not self._steps:
            self._steps = list(other._steps)
            self._ends = list(other._ends)
            self._initial_time = other._initial_time
            self._final_time = other._final_time
            self._forward = other._forward
            return

        dim = self._steps[0].current_state.size
        if other._steps[0].current_state.size != dim:
            raise IntegratorConfigError(
                f"Cannot append an output of dimension {other._steps[0].current_state.size} to one of dimension {dim}"
            )
        if other._forward != self._forward:
            raise IntegratorConfigError("Cannot append outputs integrated in opposite directions")
        last = self._steps[-1]
        gap = abs(other._initial_time - self._final_time)
        if gap > 1.0e-3 * abs(last.current_time - last.previous_time):
            raise IntegratorConfigError(
                f"Outputs are not contiguous: {self._final_time} and {other._initial_time}"
            )
        self._steps.extend(other._steps)
        self._ends.extend(other._ends)
        self._final_time = other._final_time


class StepNormalizer(StepHandler):
    """Turn variable integrator steps into fixed-size samples.

    Parameters
    ----------
    h : float
        Sampling step, positive; its sign follows the integration direction.
    callback : callable
        Function ``(t, y, y_dot, is_last) -> None`` called for every sample.
    bounds : {"first", "last", "both", "neither"}, default "first"
        Whether the initial and final times of the integration are sampled
        even when they are not on the grid.
    mode : {"increment", "multiples"}, default "increment"
        ``"increment"`` samples at ``t0 + k * h``, ``"multiples"`` at the
        integer multiples of *h*.
    """

    _BOUNDS = {"first": (True, False), "last": (False, True),
               "both": (True, True), "neither": (False, False)}
    _MODES = ("increment", "multiples")

    def __init__(
        self,
        h: float,
        callback: Callable[[float, np.ndarray, np.ndarray, bool], None],
        bounds: str = "first",
        mode: str = "increment",
    ):
        if not (np.isfinite(h) and h != 0.0):
            raise IntegratorConfigError(f"Sampling step must be finite and non-zero, got {h}")
        if bounds not in self._BOUNDS:
            raise IntegratorConfigError(f"Unknown bounds setting '{bounds}'")
        if mode not in self._MODES:
            raise IntegratorConfigError(f"Unknown sampling mode '{mode}'")
        self._h_abs = abs(float(h))
        self._h = self._h_abs
        self._callback = callback
        self._first_included, self._last_included = self._BOUNDS[bounds]
        self._mode = mode
        self._reset()

    def _reset(self):
        self._first_time = np.nan
        self._last_time = np.nan
        self._last_state = None
        self._last_derivative = None
        self._forward = True
        self._h = self._h_abs

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        self._reset()

    def _store(self, interpolator: _StepInterpolator, t: float) -> None:
        self._last_time = t
        self._last_state = interpolator.state(t)
        self._last_derivative = interpolator.derivative(t)

    def _emit(self, is_last: bool) -> None:
        if not self._first_included and self._first_time == self._last_time:
            return
        self._callback(self._last_time, self._last_state.copy(), self._last_derivative.copy(), is_last)

    def _in_step(self, t: float, interpolator: _StepInterpolator) -> bool:
        end = interpolator.soft_current_time
        return t <= end if self._forward else t >= end

    def _next_time(self) -> float:
        if self._mode == "increment":
            return self._last_time + self._h
        next_time = (np.floor(self._last_time / self._h) + 1.0) * self._h
        if next_time == self._last_time or abs(next_time - self._last_time) <= np.spacing(abs(self._last_time)):
            next_time += self._h
        return next_time

    def handle_step(self, interpolator: _StepInterpolator, is_last: bool) -> None:
        if self._last_state is None:
            self._first_time = interpolator.soft_previous_time
            self._forward = interpolator.soft_current_time >= self._first_time
            self._h = self._h_abs if self._forward else -self._h_abs
            self._store(interpolator, self._first_time)

        next_time = self._next_time()
        while self._in_step(next_time, interpolator):
            self._emit(False)
            self._store(interpolator, next_time)
            next_time = self._next_time()

        if is_last:
            end = interpolator.soft_current_time
            add_last = self._last_included and self._last_time != end
            self._emit(not add_last)
            if add_last:
                self._store(interpolator, end)
                self._emit(True)
