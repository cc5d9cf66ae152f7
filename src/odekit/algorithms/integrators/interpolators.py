"""Dense output of the Runge-Kutta integrators.

A step interpolator owns the data of the last accepted step and evaluates
the continuous extension of the method anywhere inside it. Event detection
and step handlers only ever read the solution through an interpolator,
which is how the driver's current state is kept untouched until a step is
accepted.

Two branches are used for every continuous extension: for ``theta <= 0.5``
the polynomial is anchored on the state at the beginning of the step, for
``theta > 0.5`` on the state at the end. Evaluating at either endpoint
therefore returns the stored endpoint state exactly.

References
----------
Shampine, L. F. (1986). "Some Practical Runge-Kutta Formulas". Mathematics
of Computation 46 (173).

Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I", Section II.6 and II.10.
"""

import copy
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numba
import numpy as np

from odekit.algorithms.integrators.coefficients import (dop853, euler, gill,
                                                       higham_hall54, luther,
                                                       midpoint, rk45)
from odekit.algorithms.integrators.tableau import _combine_stages
from odekit.algorithms.utils.config import EXTRAPOLATION_TOL, FASTMATH


@numba.njit(cache=False, fastmath=FASTMATH)
def _dp54_vectors(k, B, D):
    n = k.shape[1]
    v = np.empty((4, n), dtype=np.float64)
    for i in range(n):
        v1 = 0.0
        v4 = 0.0
        for j in range(k.shape[0]):
            v1 += B[j] * k[j, i]
            v4 += D[j] * k[j, i]
        v[0, i] = v1
        v[1, i] = k[0, i] - v1
        v[2, i] = v1 - v[1, i] - k[6, i]
        v[3, i] = v4
    return v


@numba.njit(cache=False, fastmath=FASTMATH)
def _dp54_state(theta, h, y_prev, y_curr, v):
    eta = 1.0 - theta
    out = np.empty(y_prev.size, dtype=np.float64)
    if theta <= 0.5:
        for i in range(y_prev.size):
            out[i] = y_prev[i] + theta * h * (
                v[0, i] + eta * (v[1, i] + theta * (v[2, i] + eta * v[3, i]))
            )
    else:
        for i in range(y_prev.size):
            out[i] = y_curr[i] - eta * h * (
                v[0, i] - theta * (v[1, i] + theta * (v[2, i] + eta * v[3, i]))
            )
    return out


@numba.njit(cache=False, fastmath=FASTMATH)
def _dp54_derivative(theta, v):
    dot1 = 1.0 - 2.0 * theta
    dot2 = theta * (2.0 - 3.0 * theta)
    dot3 = 2.0 * theta * (1.0 + theta * (2.0 * theta - 3.0))
    return v[0] + dot1 * v[1] + dot2 * v[2] + dot3 * v[3]


@numba.njit(cache=False, fastmath=FASTMATH)
def _dop853_vectors(k, B, D):
    n = k.shape[1]
    m = D.shape[0]
    v = np.empty((3 + m, n), dtype=np.float64)
    for i in range(n):
        v0 = 0.0
        for j in range(B.size):
            v0 += B[j] * k[j, i]
        v[0, i] = v0
        v[1, i] = k[0, i] - v0
        v[2, i] = v0 - v[1, i] - k[12, i]
        for r in range(m):
            acc = 0.0
            for j in range(k.shape[0]):
                d = D[r, j]
                if d != 0.0:
                    acc += d * k[j, i]
            v[3 + r, i] = acc
    return v


@numba.njit(cache=False, fastmath=FASTMATH)
def _dop853_state(theta, h, y_prev, y_curr, v):
    eta = 1.0 - theta
    out = np.empty(y_prev.size, dtype=np.float64)
    if theta <= 0.5:
        for i in range(y_prev.size):
            out[i] = y_prev[i] + theta * h * (
                v[0, i] + eta * (v[1, i] + theta * (v[2, i] + eta * (v[3, i] + theta * (
                    v[4, i] + eta * (v[5, i] + theta * v[6, i])))))
            )
    else:
        for i in range(y_prev.size):
            out[i] = y_curr[i] - eta * h * (
                v[0, i] - theta * (v[1, i] + theta * (v[2, i] + eta * (v[3, i] + theta * (
                    v[4, i] + eta * (v[5, i] + theta * v[6, i])))))
            )
    return out


@numba.njit(cache=False, fastmath=FASTMATH)
def _dop853_derivative(theta, v):
    dot1 = 1.0 - 2.0 * theta
    dot2 = theta * (2.0 - 3.0 * theta)
    dot3 = 2.0 * theta * (1.0 + theta * (2.0 * theta - 3.0))
    dot4 = theta * theta * (3.0 + theta * (5.0 * theta - 8.0))
    dot5 = theta * theta * (3.0 + theta * (-12.0 + theta * (15.0 - 6.0 * theta)))
    dot6 = theta * theta * theta * (4.0 + theta * (-15.0 + theta * (18.0 - 7.0 * theta)))
    return (v[0] + dot1 * v[1] + dot2 * v[2] + dot3 * v[3]
            + dot4 * v[4] + dot5 * v[5] + dot6 * v[6])


@numba.njit(cache=False, fastmath=FASTMATH)
def _rk4_state(theta, h, y_prev, y_curr, k):
    out = np.empty(y_prev.size, dtype=np.float64)
    if theta <= 0.5:
        s = theta * h / 6.0
        c1 = s * ((6.0 - 9.0 * theta) + 4.0 * theta * theta)
        c23 = s * (6.0 * theta - 4.0 * theta * theta)
        c4 = s * (-3.0 * theta + 4.0 * theta * theta)
        for i in range(y_prev.size):
            out[i] = y_prev[i] + c1 * k[0, i] + c23 * (k[1, i] + k[2, i]) + c4 * k[3, i]
    else:
        s = (1.0 - theta) * h / 6.0
        c1 = s * ((-4.0 * theta + 5.0) * theta - 1.0)
        c23 = s * ((4.0 * theta - 2.0) * theta - 2.0)
        c4 = s * ((-4.0 * theta - 1.0) * theta - 1.0)
        for i in range(y_prev.size):
            out[i] = y_curr[i] + c1 * k[0, i] + c23 * (k[1, i] + k[2, i]) + c4 * k[3, i]
    return out


@numba.njit(cache=False, fastmath=FASTMATH)
def _rk4_derivative(theta, k):
    one_minus = 1.0 - theta
    one_minus_2 = 1.0 - 2.0 * theta
    c1 = one_minus * one_minus_2
    c23 = 2.0 * theta * one_minus
    c4 = -theta * one_minus_2
    return c1 * k[0] + c23 * (k[1] + k[2]) + c4 * k[3]


@numba.njit(cache=False, fastmath=FASTMATH)
def _weights_at(theta, P):
    """Return ``theta * b_i(theta)`` and its derivative, where
    ``b_i(theta) = sum_m P[i, m] theta^m``."""
    s, d = P.shape
    q = np.empty(s, dtype=np.float64)
    dq = np.empty(s, dtype=np.float64)
    for i in range(s):
        p = 0.0
        dp = 0.0
        for m in range(d - 1, -1, -1):
            dp = dp * theta + p
            p = p * theta + P[i, m]
        q[i] = theta * p
        dq[i] = p + theta * dp
    return q, dq


@numba.njit(cache=False, fastmath=FASTMATH)
def _weights_state(theta, h, y_prev, y_curr, k, P, B):
    q, _ = _weights_at(theta, P)
    out = np.empty(y_prev.size, dtype=np.float64)
    for i in range(y_prev.size):
        acc = 0.0
        if theta <= 0.5:
            for j in range(q.size):
                acc += q[j] * k[j, i]
            out[i] = y_prev[i] + h * acc
        else:
            for j in range(q.size):
                acc += (B[j] - q[j]) * k[j, i]
            out[i] = y_curr[i] - h * acc
    return out


@numba.njit(cache=False, fastmath=FASTMATH)
def _weights_derivative(theta, k, P):
    _, dq = _weights_at(theta, P)
    out = np.zeros(k.shape[1], dtype=np.float64)
    for j in range(dq.size):
        out += dq[j] * k[j]
    return out


class _StepInterpolator(ABC):
    """Continuous extension of one accepted step.

    Parameters
    ----------
    extrapolation_tol : float
        Queries are accepted up to ``extrapolation_tol * |h|`` outside of
        the step; further away a :class:`ValueError` is raised.

    Notes
    -----
    Besides the global bounds of the step, the interpolator carries *soft*
    bounds. The driver narrows them when an event splits a step so that
    step handlers see the sub-step ending at the event while the polynomial
    stays the one of the full step.
    """

    def __init__(self, extrapolation_tol: float = EXTRAPOLATION_TOL):
        self._extrapolation_tol = extrapolation_tol
        self._t_prev = np.nan
        self._t_curr = np.nan
        self._soft_prev = np.nan
        self._soft_curr = np.nan
        self._h = 0.0
        self._y_prev: Optional[np.ndarray] = None
        self._y_curr: Optional[np.ndarray] = None
        self._k: Optional[np.ndarray] = None
        self._rhs: Optional[Callable[[float, np.ndarray], np.ndarray]] = None
        self._vectors: Optional[np.ndarray] = None

    def store_step(
        self,
        t_prev: float,
        y_prev: np.ndarray,
        t_curr: float,
        y_curr: np.ndarray,
        k: np.ndarray,
        rhs: Optional[Callable[[float, np.ndarray], np.ndarray]] = None,
    ) -> None:
        """Replace the stored step data.

        Parameters
        ----------
        t_prev, t_curr : float
            Endpoints of the step.
        y_prev, y_curr : numpy.ndarray
            States at the endpoints.
        k : numpy.ndarray of shape (stages, dim)
            Stage derivatives of the step (copied).
        rhs : callable, optional
            Right-hand side, needed by continuous extensions requiring extra
            evaluations.
        """
        self._t_prev = float(t_prev)
        self._t_curr = float(t_curr)
        self._soft_prev = self._t_prev
        self._soft_curr = self._t_curr
        self._h = self._t_curr - self._t_prev
        self._y_prev = np.array(y_prev, dtype=np.float64, copy=True)
        self._y_curr = np.array(y_curr, dtype=np.float64, copy=True)
        self._k = np.array(k, dtype=np.float64, copy=True)
        self._rhs = rhs
        self._vectors = None

    @property
    def forward(self) -> bool:
        return self._h >= 0.0

    @property
    def previous_time(self) -> float:
        return self._t_prev

    @property
    def current_time(self) -> float:
        return self._t_curr

    @property
    def soft_previous_time(self) -> float:
        return self._soft_prev

    @property
    def soft_current_time(self) -> float:
        return self._soft_curr

    def set_soft_previous_time(self, t: float) -> None:
        self._soft_prev = float(t)

    def set_soft_current_time(self, t: float) -> None:
        self._soft_curr = float(t)

    @property
    def previous_state(self) -> np.ndarray:
        return self._y_prev.copy()

    @property
    def current_state(self) -> np.ndarray:
        return self._y_curr.copy()

    def _theta(self, t: float) -> float:
        if self._y_prev is None:
            raise ValueError("No step stored in the interpolator")
        t = float(t)
        lo = min(self._t_prev, self._t_curr)
        hi = max(self._t_prev, self._t_curr)
        margin = self._extrapolation_tol * abs(self._h)
        if t < lo - margin or t > hi + margin:
            raise ValueError(
                f"Time {t} lies outside of the interpolation interval [{lo}, {hi}]"
            )
        if self._h == 0.0:
            return 0.0
        return (t - self._t_prev) / self._h

    def _ensure_vectors(self) -> np.ndarray:
        if self._vectors is None:
            self._vectors = self._compute_vectors()
        return self._vectors

    def state(self, t: float) -> np.ndarray:
        """Return the interpolated state at time *t*."""
        theta = self._theta(t)
        if theta == 0.0:
            return self._y_prev.copy()
        if theta == 1.0:
            return self._y_curr.copy()
        return self._state(theta, self._ensure_vectors())

    def derivative(self, t: float) -> np.ndarray:
        """Return the derivative of the interpolating polynomial at *t*."""
        theta = self._theta(t)
        return self._derivative(theta, self._ensure_vectors())

    def copy(self) -> "_StepInterpolator":
        """Return an independent copy that no longer needs the right-hand
        side, suitable for storage."""
        self._ensure_vectors()
        other = copy.copy(self)
        other._y_prev = self._y_prev.copy()
        other._y_curr = self._y_curr.copy()
        other._k = self._k.copy()
        other._vectors = self._vectors.copy()
        other._rhs = None
        return other

    @abstractmethod
    def _compute_vectors(self) -> np.ndarray:
        """Return the interpolation vectors of the stored step."""
        pass

    @abstractmethod
    def _state(self, theta: float, vectors: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def _derivative(self, theta: float, vectors: np.ndarray) -> np.ndarray:
        pass

    def __repr__(self):
        return (f"{self.__class__.__name__}(previous_time={self._t_prev}, "
                f"current_time={self._t_curr})")


class _DormandPrince54Interpolator(_StepInterpolator):
    """Shampine's 4th order continuous extension of Dormand-Prince 5(4)."""

    def _compute_vectors(self) -> np.ndarray:
        return _dp54_vectors(self._k, rk45.B_HIGH, rk45.D)

    def _state(self, theta, vectors):
        return _dp54_state(theta, self._h, self._y_prev, self._y_curr, vectors)

    def _derivative(self, theta, vectors):
        return _dp54_derivative(theta, vectors)


class _DormandPrince853Interpolator(_StepInterpolator):
    """7th order continuous extension of Dormand-Prince 8(5,3).

    The extension needs three more derivative evaluations (stages 14 to 16)
    which are done on the first query of a step, through the right-hand side
    given to :meth:`store_step`. Steps that are never queried cost nothing
    extra.
    """

    def _compute_vectors(self) -> np.ndarray:
        if self._rhs is None:
            raise ValueError("The 7th order extension needs the right-hand side")
        n_ext = dop853.N_STAGES_EXTENDED
        k = np.empty((n_ext, self._y_prev.size), dtype=np.float64)
        s = self._k.shape[0]
        k[:s] = self._k
        for i in range(s, n_ext):
            y_stage = _combine_stages(self._y_prev, self._h, dop853.A[i], k, i)
            k[i] = self._rhs(self._t_prev + dop853.C[i] * self._h, y_stage)
        return _dop853_vectors(k, dop853.B, dop853.D)

    def _state(self, theta, vectors):
        return _dop853_state(theta, self._h, self._y_prev, self._y_curr, vectors)

    def _derivative(self, theta, vectors):
        return _dop853_derivative(theta, vectors)


class _ClassicalRK4Interpolator(_StepInterpolator):
    """3rd order continuous extension of the classical Runge-Kutta method."""

    def _compute_vectors(self) -> np.ndarray:
        return self._k

    def _state(self, theta, vectors):
        return _rk4_state(theta, self._h, self._y_prev, self._y_curr, vectors)

    def _derivative(self, theta, vectors):
        return _rk4_derivative(theta, vectors)


class _ContinuousWeightsInterpolator(_StepInterpolator):
    """Continuous extension written with polynomial weights,
    ``y(t0 + theta h) = y0 + theta h sum_i b_i(theta) k_i``.

    Subclasses set ``_weights``, whose row ``i`` holds the coefficients of
    ``b_i(theta)`` in increasing powers of theta, and ``_b``, the weights of
    the full step.
    """

    _weights: np.ndarray
    _b: np.ndarray

    def _compute_vectors(self) -> np.ndarray:
        return self._k

    def _state(self, theta, vectors):
        return _weights_state(theta, self._h, self._y_prev, self._y_curr, vectors, self._weights, self._b)

    def _derivative(self, theta, vectors):
        return _weights_derivative(theta, vectors, self._weights)


class _HighamHall54Interpolator(_ContinuousWeightsInterpolator):
    """4th order continuous extension of Higham-Hall 5(4)."""

    _weights = higham_hall54.P
    _b = higham_hall54.B


class _GillInterpolator(_ContinuousWeightsInterpolator):
    """3rd order continuous extension of Gill's method."""

    _weights = gill.P
    _b = gill.B


class _LutherInterpolator(_ContinuousWeightsInterpolator):
    """5th order continuous extension of Luther's method."""

    _weights = luther.P
    _b = luther.B


class _MidpointInterpolator(_ContinuousWeightsInterpolator):
    _weights = midpoint.P
    _b = midpoint.B


class _EulerInterpolator(_ContinuousWeightsInterpolator):
    _weights = euler.P
    _b = euler.B
