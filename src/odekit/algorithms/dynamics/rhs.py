from typing import Callable, Dict, Mapping, Optional

import numpy as np

from odekit.algorithms.dynamics.base import _DynamicalSystem
from odekit.algorithms.utils.exceptions import IntegratorConfigError


class RHSSystem(_DynamicalSystem):
    """Wrap an arbitrary right-hand side into a
    :class:`~odekit.algorithms.dynamics.base._DynamicalSystem`.

    Parameters
    ----------
    rhs_func : callable
        Function ``(t, y) -> y_dot``. When *parameters* are given the
        function receives them as a third argument ``(t, y, p)`` where *p*
        is a dict of the current parameter values.
    dim : int
        Dimension of the state space.
    name : str, default "Generic RHS"
        Human readable identifier.
    jac : callable, optional
        Analytical state Jacobian, same calling convention as *rhs_func*.
    parameters : mapping, optional
        Initial values of the named scalar parameters.
    parameter_jacs : mapping, optional
        Analytical derivatives of the right-hand side with respect to
        each parameter, same calling convention as *rhs_func*.
    """

    def __init__(
        self,
        rhs_func: Callable[..., np.ndarray],
        dim: int,
        name: str = "Generic RHS",
        jac: Optional[Callable[..., np.ndarray]] = None,
        parameters: Optional[Mapping[str, float]] = None,
        parameter_jacs: Optional[Mapping[str, Callable[..., np.ndarray]]] = None,
    ):
        super().__init__(dim)
        self.name = name
        self._rhs_func = rhs_func
        self._jac_func = jac
        self._params: Dict[str, float] = {k: float(v) for k, v in (parameters or {}).items()}
        self._param_jacs = dict(parameter_jacs or {})
        unknown = set(self._param_jacs) - set(self._params)
        if unknown:
            raise IntegratorConfigError(f"Parameter Jacobians given for unknown parameters {sorted(unknown)}")

    def _bind(self, func):
        if not self._params:
            return func
        params = self._params

        def _bound(t, y):
            return func(t, y, params)

        return _bound

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        return self._bind(self._rhs_func)

    @property
    def jac(self):
        if self._jac_func is None:
            return None
        return self._bind(self._jac_func)

    @property
    def parameter_names(self):
        return tuple(self._params)

    def get_parameter(self, name: str) -> float:
        if name not in self._params:
            return super().get_parameter(name)
        return self._params[name]

    def set_parameter(self, name: str, value: float) -> None:
        if name not in self._params:
            super().set_parameter(name, value)
        self._params[name] = float(value)

    def parameter_jac(self, name: str):
        func = self._param_jacs.get(name)
        if func is None:
            return None
        return self._bind(func)

    def __repr__(self) -> str:
        return f"RHSSystem(name='{self.name}', dim={self.dim})"


def create_rhs_system(
    rhs_func: Callable[..., np.ndarray],
    dim: int,
    name: str = "Generic RHS",
    jac: Optional[Callable[..., np.ndarray]] = None,
    parameters: Optional[Mapping[str, float]] = None,
    parameter_jacs: Optional[Mapping[str, Callable[..., np.ndarray]]] = None,
) -> RHSSystem:
    return RHSSystem(rhs_func, dim, name, jac=jac, parameters=parameters, parameter_jacs=parameter_jacs)
