import numpy as np
import pytest

from odekit.algorithms.integrators.configs import (_AdaptiveStepConfig,
                                                   _EventConfig)
from odekit.algorithms.integrators.stepsize import _StepSizeController
from odekit.algorithms.utils.exceptions import (IntegratorConfigError,
                                                StepSizeUnderflowError)


@pytest.fixture
def controller():
    cfg = _AdaptiveStepConfig(rtol=1e-6, atol=1e-9, min_step=1e-4, max_step=0.5)
    return _StepSizeController(cfg, order=5, dim=2)


def test_factor_bounds(controller):
    assert controller.factor(0.0) == 10.0
    assert controller.factor(1.0) == pytest.approx(0.9)
    assert controller.factor(1e12) == 0.2
    assert controller.factor(1e-30) == 10.0
    # smaller errors never give smaller steps
    errors = np.logspace(-8, 4, 25)
    factors = [controller.factor(e) for e in errors]
    assert all(a >= b for a, b in zip(factors[:-1], factors[1:]))


def test_accept():
    assert _StepSizeController.accept(1.0)
    assert _StepSizeController.accept(0.3)
    assert not _StepSizeController.accept(1.0 + 1e-12)


def test_scale_uses_largest_magnitude(controller):
    y0 = np.array([1.0, -2.0])
    y1 = np.array([-3.0, 0.5])
    np.testing.assert_allclose(controller.scale(y0, y1), 1e-9 + 1e-6 * np.array([3.0, 2.0]))
    np.testing.assert_allclose(controller.scale(y0), 1e-9 + 1e-6 * np.array([1.0, 2.0]))


def test_filter_step(controller):
    assert controller.filter_step(0.01, True, False) == 0.01
    assert controller.filter_step(2.0, True, False) == 0.5
    assert controller.filter_step(-2.0, False, False) == -0.5
    assert controller.filter_step(1e-6, True, True) == 1e-4
    assert controller.filter_step(-1e-6, False, True) == -1e-4
    with pytest.raises(StepSizeUnderflowError) as excinfo:
        controller.filter_step(1e-6, True, False, t=3.0)
    assert excinfo.value.step == 1e-6


def test_filter_step_detects_steps_lost_in_rounding():
    ctrl = _StepSizeController(_AdaptiveStepConfig(), order=5, dim=1)
    with pytest.raises(StepSizeUnderflowError):
        ctrl.filter_step(1e-13, True, False, t=1e4)
    # the last step of an integration may be tiny
    assert ctrl.filter_step(1e-13, True, True, t=1e4) == 1e-13


def test_vector_tolerances_must_match_dimension():
    cfg = _AdaptiveStepConfig(rtol=np.array([1e-6, 1e-8]))
    _StepSizeController(cfg, order=5, dim=2)
    with pytest.raises(IntegratorConfigError):
        _StepSizeController(cfg, order=5, dim=3)


def test_initial_step_from_config():
    cfg = _AdaptiveStepConfig(initial_step=0.25)
    ctrl = _StepSizeController(cfg, order=8, dim=1)

    def f(t, y):
        raise AssertionError("no evaluation expected")

    y0 = np.array([1.0])
    assert ctrl.initialize_step(f, True, 0.0, y0, y0, 10.0) == 0.25
    assert ctrl.initialize_step(f, False, 0.0, y0, y0, -10.0) == -0.25
    # never larger than the span
    assert ctrl.initialize_step(f, True, 0.0, y0, y0, 0.1) == pytest.approx(0.1)


def test_initial_step_estimate():
    calls = []

    def f(t, y):
        calls.append(t)
        return -y

    ctrl = _StepSizeController(_AdaptiveStepConfig(rtol=1e-8, atol=1e-8), order=5, dim=1)
    y0 = np.array([1.0])
    h = ctrl.initialize_step(f, True, 0.0, y0, f(0.0, y0), 10.0)
    assert 0.0 < h < 1.0
    assert len(calls) == 2

    h_back = ctrl.initialize_step(f, False, 0.0, y0, -y0, -10.0)
    assert h_back < 0.0


def test_initial_step_clamped_to_bounds():
    cfg = _AdaptiveStepConfig(rtol=1e-13, atol=1e-13, min_step=1e-2, max_step=0.1)
    ctrl = _StepSizeController(cfg, order=5, dim=1)

    def f(t, y):
        return 1e3 * np.cos(1e3 * t) * np.ones_like(y)

    y0 = np.array([0.0])
    assert ctrl.initialize_step(f, True, 0.0, y0, f(0.0, y0), 1.0) == pytest.approx(1e-2)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"rtol": -1.0},
        {"atol": np.nan},
        {"rtol": 0.0, "atol": 0.0},
        {"min_step": -1.0},
        {"max_step": 0.0},
        {"min_step": 1.0, "max_step": 0.5},
        {"safety": 1.5},
        {"min_reduction": 1.0},
        {"max_growth": 1.0},
        {"initial_step": np.inf},
        {"max_evaluations": 0},
        {"rtol": np.ones((2, 2))},
    ],
)
def test_invalid_adaptive_config(kwargs):
    with pytest.raises(IntegratorConfigError):
        _AdaptiveStepConfig(**kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [{"direction": 2}, {"tol": 0.0}, {"max_iter": 0}, {"max_check_interval": -1.0}],
)
def test_invalid_event_config(kwargs):
    with pytest.raises(IntegratorConfigError):
        _EventConfig(**kwargs)


def test_config_errors_are_value_errors():
    with pytest.raises(ValueError):
        _AdaptiveStepConfig(rtol=-1.0)
