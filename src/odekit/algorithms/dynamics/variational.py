"""Variational equations for initial-state and parameter sensitivities.

The primary state ``y`` of a system is augmented with the flattened
matrices ``dY/dY0`` (shape ``(n, n)``) and ``dY/dP`` (shape ``(n, k)``)
which obey

.. math::

    \\frac{d}{dt} \\frac{\\partial y}{\\partial y_0} = J \\frac{\\partial y}{\\partial y_0},
    \\qquad
    \\frac{d}{dt} \\frac{\\partial y}{\\partial p} = J \\frac{\\partial y}{\\partial p}
    + \\frac{\\partial f}{\\partial p}

with ``J = df/dy``. The augmented system is an ordinary
:class:`~odekit.algorithms.dynamics.base._DynamicalSystem`, so any
integrator can propagate it. The Jacobians come from the wrapped system
when it provides them analytically, and from forward finite differences
otherwise; the choice is made once, at construction.
"""

from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from odekit.algorithms.dynamics.base import _DynamicalSystem
from odekit.algorithms.utils.exceptions import IntegratorConfigError

_SQRT_EPS = np.sqrt(np.finfo(float).eps)


def _finite_difference_state_jac(rhs, h_y):
    def _jac(t, y, f0):
        n = y.size
        J = np.empty((n, n), dtype=np.float64)
        y_pert = np.array(y, dtype=np.float64, copy=True)
        steps = _SQRT_EPS * np.maximum(1.0, np.abs(y)) if h_y is None else h_y
        for j in range(n):
            saved = y_pert[j]
            y_pert[j] = saved + steps[j]
            J[:, j] = (np.asarray(rhs(t, y_pert), dtype=np.float64) - f0) / steps[j]
            y_pert[j] = saved
        return J
    return _jac


def _finite_difference_parameter_jac(system, name, h_p):
    def _dfdp(t, y, f0):
        p = system.get_parameter(name)
        step = _SQRT_EPS * max(1.0, abs(p)) if h_p is None else h_p
        system.set_parameter(name, p + step)
        try:
            f1 = np.asarray(system.rhs(t, y), dtype=np.float64)
        finally:
            system.set_parameter(name, p)
        return (f1 - f0) / step
    return _dfdp


def _analytical(func):
    def _wrapped(t, y, f0):
        return np.asarray(func(t, y), dtype=np.float64)
    return _wrapped


class _VariationalSystem(_DynamicalSystem):
    """Augment *base* with its variational equations.

    Parameters
    ----------
    base : :class:`~odekit.algorithms.dynamics.base._DynamicalSystem`
        System whose sensitivities are propagated.
    parameters : sequence of str, default ()
        Names of the parameters of *base* to differentiate against.
    h_y : float or numpy.ndarray, optional
        Finite-difference steps for the state Jacobian (scalar or one per
        component). Only used when *base* has no analytical ``jac``.
    h_p : float or sequence of float, optional
        Finite-difference steps for the parameters. Only used for
        parameters without an analytical derivative.
    """

    def __init__(
        self,
        base: _DynamicalSystem,
        parameters: Sequence[str] = (),
        h_y: Union[float, np.ndarray, None] = None,
        h_p: Union[float, Sequence[float], None] = None,
    ):
        n = base.dim
        k = len(parameters)
        super().__init__(n + n * n + n * k)
        self._base = base
        self._n = n
        self._parameters = tuple(parameters)

        for name in self._parameters:
            # raises for unknown names
            base.get_parameter(name)

        if h_y is not None:
            h_y = np.broadcast_to(np.asarray(h_y, dtype=np.float64), (n,)).copy()
            if np.any(h_y == 0.0):
                raise IntegratorConfigError("Finite-difference steps must be non-zero")
        if h_p is None:
            h_p = [None] * k
        elif np.isscalar(h_p):
            h_p = [float(h_p)] * k
        elif len(h_p) != k:
            raise IntegratorConfigError(
                f"Got {len(h_p)} parameter steps for {k} parameters"
            )

        if base.jac is not None:
            self._state_jac = _analytical(base.jac)
            self.analytical_state_jacobian = True
        else:
            self._state_jac = _finite_difference_state_jac(base.rhs, h_y)
            self.analytical_state_jacobian = False

        self._param_jacs = []
        for name, step in zip(self._parameters, h_p):
            func = base.parameter_jac(name)
            if func is not None:
                self._param_jacs.append(_analytical(func))
            else:
                self._param_jacs.append(_finite_difference_parameter_jac(base, name, step))

    @property
    def base(self) -> _DynamicalSystem:
        return self._base

    @property
    def parameters(self) -> Tuple[str, ...]:
        return self._parameters

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        n = self._n
        k = len(self._parameters)
        base_rhs = self._base.rhs
        state_jac = self._state_jac
        param_jacs = self._param_jacs

        def _rhs(t: float, x: np.ndarray) -> np.ndarray:
            y = x[:n]
            phi = x[n:n + n * n].reshape(n, n)
            f0 = np.asarray(base_rhs(t, y), dtype=np.float64)
            J = state_jac(t, y, f0)
            out = np.empty(x.size, dtype=np.float64)
            out[:n] = f0
            out[n:n + n * n] = (J @ phi).ravel()
            if k:
                psi = x[n + n * n:].reshape(n, k)
                dpsi = J @ psi
                for col, dfdp in enumerate(param_jacs):
                    dpsi[:, col] += dfdp(t, y, f0)
                out[n + n * n:] = dpsi.ravel()
            return out

        return _rhs

    def initial_state(self, y0: np.ndarray, dy0_dp: Optional[np.ndarray] = None) -> np.ndarray:
        """Build the augmented initial state.

        ``dY/dY0`` starts at the identity; ``dY/dP`` starts at *dy0_dp*
        (zeros by default, i.e. the initial state does not depend on the
        parameters).
        """
        n = self._n
        k = len(self._parameters)
        self._base.validate_state(y0)
        x0 = np.zeros(self.dim, dtype=np.float64)
        x0[:n] = y0
        x0[n:n + n * n] = np.eye(n).ravel()
        if dy0_dp is not None:
            dy0_dp = np.asarray(dy0_dp, dtype=np.float64)
            if dy0_dp.shape != (n, k):
                raise IntegratorConfigError(
                    f"dy0_dp must have shape {(n, k)}, got {dy0_dp.shape}"
                )
            x0[n + n * n:] = dy0_dp.ravel()
        return x0

    def split(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(y, dy_dy0, dy_dp)`` views of an augmented state."""
        n = self._n
        k = len(self._parameters)
        x = np.asarray(x)
        return (
            x[:n],
            x[n:n + n * n].reshape(n, n),
            x[n + n * n:].reshape(n, k),
        )

    def __repr__(self) -> str:
        return (f"VariationalSystem(base={self._base!r}, "
                f"parameters={self._parameters})")


def create_variational_system(
    system: _DynamicalSystem,
    parameters: Sequence[str] = (),
    h_y: Union[float, np.ndarray, None] = None,
    h_p: Union[float, Sequence[float], None] = None,
) -> _VariationalSystem:
    return _VariationalSystem(system, parameters=parameters, h_y=h_y, h_p=h_p)
