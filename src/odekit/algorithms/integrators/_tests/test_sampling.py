import numpy as np
import pytest

from odekit.algorithms.dynamics.rhs import create_rhs_system
from odekit.algorithms.integrators import AdaptiveRK, RungeKutta
from odekit.algorithms.integrators.configs import _EventConfig
from odekit.algorithms.integrators.sampling import (StepNormalizer,
                                                    _ContinuousOutput)
from odekit.algorithms.integrators.types import _Solution
from odekit.algorithms.utils.exceptions import IntegratorConfigError


@pytest.fixture(scope="module")
def sine():
    def rhs(t, y):
        return np.array([np.cos(t)])
    return create_rhs_system(rhs, dim=1, name="Sine")


def _run_output(system, t0, t1, order=8):
    output = _ContinuousOutput()
    integrator = AdaptiveRK(order=order, rtol=1e-12, atol=1e-12)
    integrator.add_step_handler(output)
    integrator.integrate(system, t0, np.array([np.sin(t0)]), t1)
    return output


def test_continuous_output_covers_trajectory(sine):
    output = _run_output(sine, 0.0, 3.0)

    assert output.initial_time == 0.0
    assert output.final_time == 3.0
    assert output.forward
    assert len(output) > 1
    for t in np.linspace(0.0, 3.0, 37):
        assert abs(output.interpolate(t)[0] - np.sin(t)) < 1e-9
        assert abs(output.derivative(t)[0] - np.cos(t)) < 1e-7


def test_continuous_output_backward(sine):
    output = _run_output(sine, 2.0, -1.0, order=5)
    assert not output.forward
    for t in (1.9, 0.5, -0.99):
        assert abs(output.interpolate(t)[0] - np.sin(t)) < 1e-9


def test_continuous_output_sample(sine):
    output = _run_output(sine, 0.0, 1.0)
    times = np.array([0.0, 0.2, 0.7, 1.0])
    sol = output.sample(times)
    assert isinstance(sol, _Solution)
    np.testing.assert_allclose(sol.states[:, 0], np.sin(times), atol=1e-10)
    np.testing.assert_allclose(sol.derivatives[:, 0], np.cos(times), atol=1e-8)


def test_continuous_output_split_by_events(sine):
    """Steps cut by non-terminal events are stored as contiguous pieces."""
    output = _ContinuousOutput()
    integrator = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12, initial_step=3.0)
    integrator.add_step_handler(output)
    integrator.add_event_handler(lambda t, y: y[0] - 0.5, _EventConfig(terminal=False))
    integrator.integrate(sine, 0.0, np.array([0.0]), 3.0)

    for t in (np.pi / 6, 1.0, 5 * np.pi / 6, 2.9):
        assert abs(output.interpolate(t)[0] - np.sin(t)) < 1e-9


def test_empty_output_raises():
    with pytest.raises(ValueError):
        _ContinuousOutput().interpolate(0.0)


def test_append_contiguous_outputs(sine):
    first = _run_output(sine, 0.0, 1.0)
    second = _run_output(sine, 1.0, 2.0)
    n_first = len(first)
    first.append(second)

    assert len(first) == n_first + len(second)
    assert first.initial_time == 0.0
    assert first.final_time == 2.0
    for t in (0.5, 1.0, 1.5):
        assert abs(first.interpolate(t)[0] - np.sin(t)) < 1e-9


def test_append_to_empty_output(sine):
    target = _ContinuousOutput()
    target.append(_run_output(sine, 0.0, 1.0))
    assert target.final_time == 1.0


def test_append_rejects_incompatible_outputs(sine):
    base = _run_output(sine, 0.0, 1.0)

    with pytest.raises(IntegratorConfigError):
        base.append(_run_output(sine, 1.5, 2.0))
    with pytest.raises(IntegratorConfigError):
        base.append(_run_output(sine, 1.0, 0.5))

    def rhs2(t, y):
        return np.array([1.0, 0.0])
    plane = create_rhs_system(rhs2, dim=2, name="Plane")
    other = _ContinuousOutput()
    integrator = AdaptiveRK(order=5)
    integrator.add_step_handler(other)
    integrator.integrate(plane, 1.0, np.zeros(2), 2.0)
    with pytest.raises(IntegratorConfigError):
        base.append(other)


class _Samples:
    def __init__(self):
        self.times = []
        self.states = []
        self.flags = []

    def __call__(self, t, y, y_dot, is_last):
        self.times.append(t)
        self.states.append(y[0])
        self.flags.append(is_last)


@pytest.mark.parametrize(
    "bounds, expected",
    [
        ("first", [0.0, 0.25, 0.5, 0.75, 1.0]),
        ("neither", [0.25, 0.5, 0.75, 1.0]),
        ("both", [0.0, 0.25, 0.5, 0.75, 1.0]),
        ("last", [0.25, 0.5, 0.75, 1.0]),
    ],
)
def test_step_normalizer_grid(sine, bounds, expected):
    samples = _Samples()
    integrator = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12)
    integrator.add_step_handler(StepNormalizer(0.25, samples, bounds=bounds))
    integrator.integrate(sine, 0.0, np.array([0.0]), 1.0)

    np.testing.assert_allclose(samples.times, expected)
    np.testing.assert_allclose(samples.states, np.sin(expected), atol=1e-10)
    assert samples.flags[-1] and not any(samples.flags[:-1])


def test_step_normalizer_adds_off_grid_end(sine):
    samples = _Samples()
    integrator = AdaptiveRK(order=5, rtol=1e-10, atol=1e-10)
    integrator.add_step_handler(StepNormalizer(0.25, samples, bounds="both"))
    integrator.integrate(sine, 0.0, np.array([0.0]), 0.9)

    np.testing.assert_allclose(samples.times, [0.0, 0.25, 0.5, 0.75, 0.9])


def test_step_normalizer_multiples(sine):
    samples = _Samples()
    integrator = RungeKutta(order=4, step=0.07)
    integrator.add_step_handler(StepNormalizer(0.25, samples, bounds="first", mode="multiples"))
    integrator.integrate(sine, 0.1, np.array([np.sin(0.1)]), 1.0)

    np.testing.assert_allclose(samples.times, [0.1, 0.25, 0.5, 0.75, 1.0])


def test_step_normalizer_backward(sine):
    samples = _Samples()
    integrator = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12)
    integrator.add_step_handler(StepNormalizer(0.5, samples))
    integrator.integrate(sine, 2.0, np.array([np.sin(2.0)]), 0.0)

    np.testing.assert_allclose(samples.times, [2.0, 1.5, 1.0, 0.5, 0.0])
    np.testing.assert_allclose(samples.states, np.sin(samples.times), atol=1e-10)


def test_step_normalizer_reused_across_runs(sine):
    samples = _Samples()
    integrator = AdaptiveRK(order=5)
    integrator.add_step_handler(StepNormalizer(0.5, samples))
    integrator.integrate(sine, 0.0, np.array([0.0]), 1.0)
    integrator.integrate(sine, 0.0, np.array([0.0]), 1.0)
    np.testing.assert_allclose(samples.times, [0.0, 0.5, 1.0] * 2)


@pytest.mark.parametrize(
    "kwargs",
    [{"h": 0.0}, {"h": np.nan}, {"h": 0.1, "bounds": "middle"}, {"h": 0.1, "mode": "random"}],
)
def test_step_normalizer_invalid_settings(kwargs):
    with pytest.raises(IntegratorConfigError):
        StepNormalizer(callback=lambda *args: None, **kwargs)


def test_step_handler_type_is_checked():
    with pytest.raises(IntegratorConfigError):
        AdaptiveRK(order=5).add_step_handler(lambda interp, last: None)


def test_solution_interpolation():
    times = np.linspace(0.0, 1.0, 21)
    sol = _Solution(times=times, states=np.sin(times)[:, None], derivatives=np.cos(times)[:, None])
    assert abs(sol.interpolate(0.33)[0] - np.sin(0.33)) < 1e-6

    reverse = _Solution(times=times[::-1], states=np.sin(times[::-1])[:, None])
    assert abs(reverse.interpolate(0.33)[0] - np.sin(0.33)) < 1e-3

    with pytest.raises(ValueError):
        sol.interpolate(1.5)
    with pytest.raises(ValueError):
        _Solution(times=times, states=np.zeros((3, 1)))
