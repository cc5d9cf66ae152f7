"""Provide the interfaces describing the differential systems integrated by
:mod:`~odekit.algorithms.integrators`.

A system is anything exposing a dimension and a right-hand side
``rhs(t, y) -> y_dot``. Systems may additionally provide the Jacobian of
the right-hand side with respect to the state (``jac``) and expose named
scalar parameters, which is what
:mod:`~odekit.algorithms.dynamics.variational` needs to propagate
sensitivities.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from odekit.algorithms.utils.exceptions import IntegratorConfigError


@runtime_checkable
class _DynamicalSystemProtocol(Protocol):
    """Protocol defining the interface for dynamical systems.

    This protocol specifies the minimum interface that any dynamical system
    must implement to be compatible with the integrator framework.
    """

    @property
    def dim(self) -> int:
        """Dimension of the state space."""
        ...

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        ...


class _DynamicalSystem(ABC):
    """Abstract base class for dynamical systems.

    Parameters
    ----------
    dim : int
        Dimension of the state space.

    Notes
    -----
    Subclasses must implement :attr:`rhs`. The optional capabilities
    (:attr:`jac`, parameters) default to "not available" so that
    :func:`~odekit.algorithms.dynamics.variational.create_variational_system`
    can fall back to finite differences.
    """

    def __init__(self, dim: int):
        if dim <= 0:
            raise IntegratorConfigError(f"Dimension must be positive, got {dim}")
        self._dim = int(dim)

    @property
    def dim(self) -> int:
        """Dimension of the state space."""
        return self._dim

    @property
    @abstractmethod
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        pass

    @property
    def jac(self) -> Optional[Callable[[float, np.ndarray], np.ndarray]]:
        """Analytical state Jacobian ``(t, y) -> (dim, dim)`` or None."""
        return None

    @property
    def parameter_names(self) -> Sequence[str]:
        """Names of the scalar parameters the system exposes."""
        return ()

    def get_parameter(self, name: str) -> float:
        raise IntegratorConfigError(f"Unknown parameter '{name}'")

    def set_parameter(self, name: str, value: float) -> None:
        raise IntegratorConfigError(f"Unknown parameter '{name}'")

    def parameter_jac(self, name: str) -> Optional[Callable[[float, np.ndarray], np.ndarray]]:
        """Analytical derivative ``(t, y) -> (dim,)`` of the right-hand side
        with respect to the parameter *name*, or None."""
        return None

    def validate_state(self, y: np.ndarray) -> None:
        """Validate that a state vector has the correct dimension.

        Parameters
        ----------
        y : numpy.ndarray
            State vector to validate

        Raises
        ------
        :class:`~odekit.algorithms.utils.exceptions.IntegratorConfigError`
            If the state vector has incorrect dimension
        """
        if len(y) != self.dim:
            raise IntegratorConfigError(f"State vector dimension {len(y)} != system dimension {self.dim}")
