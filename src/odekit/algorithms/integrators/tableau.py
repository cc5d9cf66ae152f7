"""Provide the explicit Runge-Kutta step formula shared by every integrator.

A :class:`_ButcherTableau` bundles the coefficients of one method and knows
how to compute the stage derivatives of a step, combine them into the new
state and estimate the local error. The linear combinations run in small
numba kernels; the right-hand side itself is called from Python.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I".
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numba
import numpy as np

from odekit.algorithms.integrators.coefficients import (dop853, euler, gill,
                                                       higham_hall54, luther,
                                                       midpoint, rk4, rk45)
from odekit.algorithms.utils.config import FASTMATH
from odekit.algorithms.utils.exceptions import IntegratorConfigError


@numba.njit(cache=False, fastmath=FASTMATH)
def _combine_stages(y, h, coeffs, k, n):
    """Return ``y + h * sum_{j<n} coeffs[j] * k[j]``."""
    out = y.copy()
    for j in range(n):
        c = coeffs[j]
        if c != 0.0:
            out += h * c * k[j]
    return out


@numba.njit(cache=False, fastmath=FASTMATH)
def _weighted_sum(coeffs, k):
    n = k.shape[1]
    out = np.zeros(n, dtype=np.float64)
    for j in range(coeffs.size):
        c = coeffs[j]
        if c != 0.0:
            out += c * k[j]
    return out


@numba.njit(cache=False, fastmath=FASTMATH)
def _rms_error_norm(h, E, k, scale):
    err = _weighted_sum(E, k)
    acc = 0.0
    for i in range(err.size):
        r = h * err[i] / scale[i]
        acc += r * r
    return np.sqrt(acc / err.size)


@numba.njit(cache=False, fastmath=FASTMATH)
def _dop853_error_norm(h, E5, E3, k, scale):
    err5 = _weighted_sum(E5, k)
    err3 = _weighted_sum(E3, k)
    s5 = 0.0
    s3 = 0.0
    for i in range(err5.size):
        r5 = err5[i] / scale[i]
        r3 = err3[i] / scale[i]
        s5 += r5 * r5
        s3 += r3 * r3
    if s5 == 0.0 and s3 == 0.0:
        return 0.0
    denom = s5 + 0.01 * s3
    if denom <= 0.0:
        denom = 1.0
    return np.abs(h) * s5 / np.sqrt(denom * err5.size)


@dataclass(frozen=True, eq=False)
class _ButcherTableau:
    """Coefficients of an explicit Runge-Kutta method.

    Parameters
    ----------
    name : str
        Identifier of the method.
    order : int
        Formal order of the propagated solution.
    c : numpy.ndarray of shape (s,)
        Nodes.
    a : numpy.ndarray of shape (s, s)
        Strictly lower triangular stage coefficients.
    b : numpy.ndarray of shape (s,)
        Weights of the propagated solution.
    e : numpy.ndarray of shape (s,), optional
        Error weights ``b - b_embedded``. None for methods without an
        embedded formula.
    e3 : numpy.ndarray of shape (s,), optional
        Second set of error weights. When given, the local error is
        measured with the combined 5th/3rd order estimator of DOP853.
    fsal : bool, default False
        Whether the last stage is the derivative at the new state and can
        be reused as the first stage of the next step.
    """

    name: str
    order: int
    c: np.ndarray
    a: np.ndarray
    b: np.ndarray
    e: Optional[np.ndarray] = None
    e3: Optional[np.ndarray] = None
    fsal: bool = False

    def __post_init__(self):
        s = self.b.size
        if self.c.shape != (s,) or self.a.shape != (s, s):
            raise IntegratorConfigError(
                f"Inconsistent tableau '{self.name}': c{self.c.shape}, a{self.a.shape}, b{self.b.shape}"
            )
        for w in (self.e, self.e3):
            if w is not None and w.shape != (s,):
                raise IntegratorConfigError(f"Error weights of '{self.name}' must have shape ({s},)")
        if self.fsal and self.c[-1] != 1.0:
            raise IntegratorConfigError(f"FSAL tableau '{self.name}' must end with node c = 1")

    @property
    def stages(self) -> int:
        return self.b.size

    @property
    def has_error_estimate(self) -> bool:
        return self.e is not None

    def new_stage_array(self, dim: int) -> np.ndarray:
        return np.empty((self.stages, dim), dtype=np.float64)

    def compute_stages(
        self,
        f: Callable[[float, np.ndarray], np.ndarray],
        t: float,
        y: np.ndarray,
        h: float,
        k: np.ndarray,
        first_stage_ready: bool = False,
    ) -> np.ndarray:
        """Fill *k* with the stage derivatives of the step ``(t, y, h)``.

        When *first_stage_ready* is True, ``k[0]`` already holds ``f(t, y)``
        (carried over from the previous step) and is not recomputed.

        For FSAL methods the last stage is evaluated at exactly the state
        returned by :meth:`advance`.
        """
        if not first_stage_ready:
            k[0] = f(t, y)
        for i in range(1, self.stages):
            y_stage = _combine_stages(y, h, self.a[i], k, i)
            k[i] = f(t + self.c[i] * h, y_stage)
        return k

    def advance(self, y: np.ndarray, h: float, k: np.ndarray) -> np.ndarray:
        """Return the propagated state ``y + h * sum_j b_j k_j``."""
        return _combine_stages(y, h, self.b, k, self.stages)

    def error_vector(self, h: float, k: np.ndarray) -> np.ndarray:
        """Return ``h * sum_j e_j k_j``, the difference between the two
        embedded solutions."""
        if self.e is None:
            raise IntegratorConfigError(f"Tableau '{self.name}' has no embedded formula")
        return h * _weighted_sum(self.e, k)

    def error_norm(self, h: float, k: np.ndarray, scale: np.ndarray) -> float:
        """Return the scaled local error of the step, <= 1 for acceptance.

        Parameters
        ----------
        h : float
            Signed step size.
        k : numpy.ndarray
            Stage derivatives of the step.
        scale : numpy.ndarray
            Per-component tolerance ``atol + rtol * max(|y0|, |y1|)``.
        """
        if self.e is None:
            raise IntegratorConfigError(f"Tableau '{self.name}' has no embedded formula")
        if self.e3 is None:
            return float(_rms_error_norm(h, self.e, k, scale))
        return float(_dop853_error_norm(h, self.e, self.e3, k, scale))


DORMAND_PRINCE_54 = _ButcherTableau(
    name="DormandPrince54",
    order=5,
    c=rk45.C,
    a=rk45.A,
    b=rk45.B_HIGH,
    e=rk45.E,
    fsal=True,
)

DORMAND_PRINCE_853 = _ButcherTableau(
    name="DormandPrince853",
    order=8,
    c=dop853.C[:dop853.N_STAGES + 1].copy(),
    a=dop853.A[:dop853.N_STAGES + 1, :dop853.N_STAGES + 1].copy(),
    b=dop853.B,
    e=dop853.E5,
    e3=dop853.E3,
    fsal=True,
)

CLASSICAL_RK4 = _ButcherTableau(
    name="ClassicalRK4",
    order=4,
    c=rk4.C,
    a=rk4.A,
    b=rk4.B,
)

HIGHAM_HALL_54 = _ButcherTableau(
    name="HighamHall54",
    order=5,
    c=higham_hall54.C,
    a=higham_hall54.A,
    b=higham_hall54.B,
    e=higham_hall54.E,
    fsal=True,
)

GILL = _ButcherTableau(name="Gill", order=4, c=gill.C, a=gill.A, b=gill.B)

LUTHER = _ButcherTableau(name="Luther", order=6, c=luther.C, a=luther.A, b=luther.B)

MIDPOINT = _ButcherTableau(name="Midpoint", order=2, c=midpoint.C, a=midpoint.A, b=midpoint.B)

EULER = _ButcherTableau(name="Euler", order=1, c=euler.C, a=euler.A, b=euler.B)
