import numpy as np
import pytest

from odekit.algorithms.dynamics.base import (_DynamicalSystem,
                                             _DynamicalSystemProtocol)
from odekit.algorithms.dynamics.rhs import RHSSystem, create_rhs_system
from odekit.algorithms.utils.exceptions import IntegratorConfigError


def test_rhs_system_basics():
    def rhs(t, y):
        return -2.0 * y

    system = create_rhs_system(rhs, dim=3, name="Decay")
    assert isinstance(system, RHSSystem)
    assert isinstance(system, _DynamicalSystemProtocol)
    assert system.dim == 3
    assert system.jac is None
    assert system.parameter_names == ()
    assert system.parameter_jac("k") is None
    np.testing.assert_array_equal(system.rhs(0.0, np.ones(3)), -2.0 * np.ones(3))
    assert "Decay" in repr(system)


def test_parameters_are_bound_to_rhs():
    def rhs(t, y, p):
        return p["k"] * y

    def jac(t, y, p):
        return p["k"] * np.eye(1)

    system = create_rhs_system(rhs, dim=1, jac=jac, parameters={"k": 2.0})
    assert system.parameter_names == ("k",)
    np.testing.assert_array_equal(system.rhs(0.0, np.array([3.0])), [6.0])

    system.set_parameter("k", -1.0)
    assert system.get_parameter("k") == -1.0
    np.testing.assert_array_equal(system.rhs(0.0, np.array([3.0])), [-3.0])
    np.testing.assert_array_equal(system.jac(0.0, np.array([3.0])), [[-1.0]])


def test_unknown_parameters():
    system = create_rhs_system(lambda t, y: y, dim=1)
    with pytest.raises(IntegratorConfigError):
        system.get_parameter("k")
    with pytest.raises(IntegratorConfigError):
        system.set_parameter("k", 1.0)
    with pytest.raises(IntegratorConfigError):
        create_rhs_system(lambda t, y, p: y, dim=1, parameters={"k": 1.0},
                          parameter_jacs={"q": lambda t, y, p: y})


def test_dimension_checks():
    with pytest.raises(IntegratorConfigError):
        create_rhs_system(lambda t, y: y, dim=0)

    system = create_rhs_system(lambda t, y: y, dim=2)
    system.validate_state(np.zeros(2))
    with pytest.raises(IntegratorConfigError):
        system.validate_state(np.zeros(3))


def test_custom_system_subclass():
    class _Rotation(_DynamicalSystem):
        def __init__(self, omega):
            super().__init__(2)
            self.omega = omega

        @property
        def rhs(self):
            omega = self.omega

            def _rhs(t, y):
                return np.array([-omega * y[1], omega * y[0]])
            return _rhs

    system = _Rotation(2.0)
    assert system.jac is None
    np.testing.assert_array_equal(system.rhs(0.0, np.array([1.0, 0.0])), [0.0, 2.0])
