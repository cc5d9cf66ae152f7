import numpy as np
import pytest
from scipy.integrate import solve_ivp

from odekit.algorithms.dynamics.rhs import create_rhs_system
from odekit.algorithms.integrators.configs import _AdaptiveStepConfig
from odekit.algorithms.integrators.rk import (AdaptiveRK, RungeKutta, _DOP853,
                                              _RK4, _RK45, _Euler, _Gill,
                                              _HighamHall54, _Luther,
                                              _Midpoint)
from odekit.algorithms.integrators.sampling import StepHandler
from odekit.algorithms.integrators.tableau import (CLASSICAL_RK4,
                                                   DORMAND_PRINCE_54,
                                                   DORMAND_PRINCE_853, EULER,
                                                   GILL, HIGHAM_HALL_54,
                                                   LUTHER, MIDPOINT)
from odekit.algorithms.utils.exceptions import (DerivativeEvaluationError,
                                                EvaluationBudgetExceededError,
                                                IntegratorConfigError,
                                                StepSizeUnderflowError)


class _StepRecorder(StepHandler):
    """Keep the soft bounds and the end state of every handled step."""

    def __init__(self):
        self.steps = []
        self.last_flags = []

    def init(self, t0, y0, t):
        self.steps = []
        self.last_flags = []

    def handle_step(self, interpolator, is_last):
        t_start = interpolator.soft_previous_time
        t_stop = interpolator.soft_current_time
        self.steps.append((t_start, t_stop, interpolator.state(t_stop)))
        self.last_flags.append(is_last)


@pytest.fixture(scope="module")
def oscillator():
    """Harmonic oscillator x'' = -x as a first-order system."""
    def rhs(t, y):
        return np.array([y[1], -y[0]])
    return create_rhs_system(rhs, dim=2, name="Harmonic oscillator")


@pytest.fixture(scope="module")
def decay():
    def rhs(t, y):
        return -y
    return create_rhs_system(rhs, dim=1, name="Exponential decay")


@pytest.mark.parametrize(
    "tableau, degree",
    [
        (DORMAND_PRINCE_54, 4),
        (DORMAND_PRINCE_853, 7),
        (CLASSICAL_RK4, 3),
        (HIGHAM_HALL_54, 4),
        (GILL, 3),
        (LUTHER, 5),
        (MIDPOINT, 1),
        (EULER, 0),
    ],
)
def test_single_step_integrates_polynomials_exactly(tableau, degree):
    """A method of order p integrates y' = (d+1) t^d exactly for d < p."""
    def f(t, y):
        return np.array([(degree + 1) * t ** degree])

    k = tableau.new_stage_array(1)
    y0 = np.array([0.0])
    h = 1.0
    tableau.compute_stages(f, 0.0, y0, h, k)
    y1 = tableau.advance(y0, h, k)

    assert abs(y1[0] - 1.0) < 1e-13, f"{tableau.name}: got {y1[0]}"


def test_fsal_stage_is_derivative_at_new_state():
    """The last stage of an FSAL method equals f at the propagated state."""
    def f(t, y):
        return np.array([np.cos(t) * y[0]])

    for tableau in (DORMAND_PRINCE_54, DORMAND_PRINCE_853, HIGHAM_HALL_54):
        k = tableau.new_stage_array(1)
        y0 = np.array([1.0])
        h = 0.3
        tableau.compute_stages(f, 0.0, y0, h, k)
        y1 = tableau.advance(y0, h, k)
        np.testing.assert_allclose(k[-1], f(h, y1), rtol=0, atol=1e-15)


def test_embedded_error_vanishes_for_constant_derivative():
    def f(t, y):
        return np.array([2.0, -1.0])

    for tableau in (DORMAND_PRINCE_54, DORMAND_PRINCE_853, HIGHAM_HALL_54):
        k = tableau.new_stage_array(2)
        tableau.compute_stages(f, 0.0, np.zeros(2), 0.5, k)
        err = tableau.error_norm(0.5, k, np.full(2, 1e-10))
        assert err < 1e-3, f"{tableau.name}: error norm {err}"


@pytest.mark.parametrize("tableau", [DORMAND_PRINCE_54, HIGHAM_HALL_54])
def test_embedded_solution_is_fourth_order(tableau):
    """The embedded solution ``advance - error_vector`` is exact for cubics."""
    def f(t, y):
        return np.array([4.0 * t ** 3])

    k = tableau.new_stage_array(1)
    y0 = np.array([0.0])
    tableau.compute_stages(f, 0.0, y0, 1.0, k)
    y_low = tableau.advance(y0, 1.0, k) - tableau.error_vector(1.0, k)

    assert abs(y_low[0] - 1.0) < 1e-13, f"{tableau.name}: got {y_low[0]}"


def test_tableau_without_error_weights():
    assert not CLASSICAL_RK4.has_error_estimate
    with pytest.raises(IntegratorConfigError):
        CLASSICAL_RK4.error_vector(0.1, CLASSICAL_RK4.new_stage_array(1))


@pytest.mark.parametrize(
    "method, bound",
    [("dormand_prince54", 1e-9), ("dop853", 1e-9), ("higham_hall54", 1e-8)],
)
def test_oscillator_accuracy(oscillator, method, bound):
    """Adaptive integration of the oscillator over a few periods."""
    integrator = AdaptiveRK(method=method, rtol=1e-12, atol=1e-12)
    y = np.empty(2)
    t_final = integrator.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 10.0, y_out=y)

    expected = np.array([np.cos(10.0), -np.sin(10.0)])
    assert t_final == 10.0
    assert np.linalg.norm(y - expected) < bound, (
        f"{integrator}: error too large: {np.linalg.norm(y - expected)}"
    )


def test_dop853_agrees_with_scipy(oscillator):
    """Compare the DOP853 end state against scipy's implementation."""
    y0 = np.array([0.3, 0.2])
    t_end = 20.0

    integrator = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12)
    y = np.empty(2)
    integrator.integrate(oscillator, 0.0, y0, t_end, y_out=y)

    ref = solve_ivp(oscillator.rhs, (0.0, t_end), y0, method="DOP853", rtol=1e-12, atol=1e-12)
    assert ref.success
    assert np.allclose(y, ref.y[:, -1], rtol=1e-8, atol=1e-8), (
        f"odekit {y} differs from scipy {ref.y[:, -1]}"
    )


def test_backward_integration(decay):
    """Integrate y' = -y from t=1 back to t=0."""
    integrator = AdaptiveRK(order=5, rtol=1e-10, atol=1e-12)
    recorder = integrator.add_step_handler(_StepRecorder())
    y = np.empty(1)
    t_final = integrator.integrate(decay, 1.0, np.array([np.exp(-1.0)]), 0.0, y_out=y)

    assert t_final == 0.0
    assert abs(y[0] - 1.0) < 1e-8
    starts = np.array([s[0] for s in recorder.steps])
    stops = np.array([s[1] for s in recorder.steps])
    assert np.all(stops < starts), "Backward steps must decrease time"
    assert recorder.last_flags[-1] and not any(recorder.last_flags[:-1])


def test_step_handlers_receive_contiguous_steps(oscillator):
    integrator = AdaptiveRK(order=8, rtol=1e-10, atol=1e-10)
    recorder = integrator.add_step_handler(_StepRecorder())
    integrator.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 5.0)

    assert recorder.steps[0][0] == 0.0
    assert recorder.steps[-1][1] == 5.0
    for prev, nxt in zip(recorder.steps[:-1], recorder.steps[1:]):
        assert prev[1] == nxt[0]


def test_tighter_tolerance_takes_more_steps(oscillator):
    """Accepted step count is non-decreasing when the tolerance shrinks."""
    counts = []
    for tol in (1e-4, 1e-7, 1e-10):
        integrator = AdaptiveRK(order=5, rtol=tol, atol=tol)
        recorder = integrator.add_step_handler(_StepRecorder())
        integrator.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 10.0)
        counts.append(len(recorder.steps))

    assert counts == sorted(counts), f"Step counts not monotonic: {counts}"


def test_max_step_is_honoured(oscillator):
    integrator = AdaptiveRK(order=8, max_step=0.05)
    recorder = integrator.add_step_handler(_StepRecorder())
    integrator.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 1.0)

    sizes = [abs(stop - start) for start, stop, _ in recorder.steps]
    assert max(sizes) <= 0.05 + 1e-15
    assert len(sizes) >= 20


def test_vector_tolerances(oscillator):
    integrator = AdaptiveRK(order=5, rtol=np.array([1e-10, 1e-10]), atol=np.array([1e-12, 1e-12]))
    y = np.empty(2)
    integrator.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 1.0, y_out=y)
    assert abs(y[0] - np.cos(1.0)) < 1e-8

    bad = AdaptiveRK(order=5, rtol=np.array([1e-10, 1e-10, 1e-10]))
    with pytest.raises(IntegratorConfigError):
        bad.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 1.0)


def test_step_size_underflow():
    """y' = y^2 blows up at t = 1; a large minimal step cannot follow it."""
    def rhs(t, y):
        return y * y

    system = create_rhs_system(rhs, dim=1, name="Blow-up")
    integrator = AdaptiveRK(order=5, min_step=1e-3, rtol=1e-10, atol=1e-10)
    y = np.empty(1)
    with pytest.raises(StepSizeUnderflowError):
        integrator.integrate(system, 0.0, np.array([1.0]), 2.0, y_out=y)
    assert np.all(np.isfinite(y))
    assert y[0] > 1.0


def test_evaluation_budget(oscillator):
    integrator = AdaptiveRK(order=8, max_evaluations=50)
    with pytest.raises(EvaluationBudgetExceededError) as excinfo:
        integrator.integrate(oscillator, 0.0, np.array([1.0, 0.0]), 100.0)
    assert excinfo.value.max_evaluations == 50
    assert integrator.evaluations == 50


def test_evaluations_are_counted():
    calls = []

    def rhs(t, y):
        calls.append(t)
        return -y

    system = create_rhs_system(rhs, dim=1, name="Counted decay")
    integrator = AdaptiveRK(order=5)
    integrator.integrate(system, 0.0, np.array([1.0]), 3.0)
    assert integrator.evaluations == len(calls)

    fixed = RungeKutta(order=4, step=0.1)
    calls.clear()
    fixed.integrate(system, 0.0, np.array([1.0]), 1.0)
    assert fixed.evaluations == len(calls) == 40


def test_non_finite_derivative_keeps_last_accepted_state():
    def rhs(t, y):
        if t > 0.5:
            return np.array([np.nan])
        return -y

    system = create_rhs_system(rhs, dim=1, name="Failing decay")
    integrator = AdaptiveRK(order=5, max_step=0.1)
    recorder = integrator.add_step_handler(_StepRecorder())
    y = np.empty(1)
    with pytest.raises(DerivativeEvaluationError) as excinfo:
        integrator.integrate(system, 0.0, np.array([1.0]), 1.0, y_out=y)

    assert excinfo.value.t > 0.5
    last_t, last_y = recorder.steps[-1][1], recorder.steps[-1][2]
    assert last_t <= 0.5
    np.testing.assert_array_equal(y, last_y)


def test_wrong_derivative_shape():
    def rhs(t, y):
        return np.array([1.0, 2.0])

    system = create_rhs_system(rhs, dim=1, name="Bad shape")
    with pytest.raises(DerivativeEvaluationError):
        AdaptiveRK(order=5).integrate(system, 0.0, np.array([0.0]), 1.0)


def test_initial_state_is_not_modified(decay):
    y0 = np.array([1.0])
    AdaptiveRK(order=8).integrate(decay, 0.0, y0, 2.0)
    assert y0[0] == 1.0


def test_zero_span(decay):
    integrator = AdaptiveRK(order=5)
    y = np.empty(1)
    t_final = integrator.integrate(decay, 1.5, np.array([0.7]), 1.5, y_out=y)
    assert t_final == 1.5
    assert y[0] == 0.7
    assert integrator.evaluations == 0

    sol = integrator.propagate(decay, np.array([0.7]), np.array([2.0, 2.0]))
    assert np.all(sol.states == 0.7)


def test_invalid_inputs(decay):
    integrator = AdaptiveRK(order=5)
    with pytest.raises(IntegratorConfigError):
        integrator.integrate(decay, 0.0, np.array([1.0, 2.0]), 1.0)
    with pytest.raises(IntegratorConfigError):
        integrator.integrate(decay, 0.0, np.array([np.nan]), 1.0)
    with pytest.raises(IntegratorConfigError):
        integrator.integrate(decay, 0.0, np.array([1.0]), np.inf)
    with pytest.raises(IntegratorConfigError):
        integrator.integrate(decay, 0.0, np.array([1.0]), 1.0, y_out=np.empty(3))
    with pytest.raises(IntegratorConfigError):
        integrator.propagate(decay, np.array([1.0]), np.array([0.0, 1.0, 0.5]))


def test_factories():
    assert isinstance(AdaptiveRK(order=5), _RK45)
    assert isinstance(AdaptiveRK(order=8), _DOP853)
    assert isinstance(AdaptiveRK(method="higham_hall54"), _HighamHall54)
    assert isinstance(AdaptiveRK(order=8, method="dormand_prince54"), _RK45)
    assert isinstance(RungeKutta(order=4, step=0.1), _RK4)
    assert isinstance(RungeKutta(order=1, step=0.1), _Euler)
    assert isinstance(RungeKutta(order=2, step=0.1), _Midpoint)
    assert isinstance(RungeKutta(order=6, step=0.1), _Luther)
    assert isinstance(RungeKutta(step=0.1, method="gill"), _Gill)
    assert AdaptiveRK(order=8).order == 8
    assert AdaptiveRK(method="higham_hall54").order == 5
    assert RungeKutta(step=0.1, method="luther").order == 6
    assert str(AdaptiveRK(order=5)) == "ODEKIT-RK45"
    assert str(RungeKutta(step=0.1, method="gill")) == "ODEKIT-Gill"

    with pytest.raises(IntegratorConfigError):
        AdaptiveRK(order=6)
    with pytest.raises(IntegratorConfigError):
        AdaptiveRK(method="gill")
    with pytest.raises(IntegratorConfigError):
        RungeKutta(order=3, step=0.1)
    with pytest.raises(IntegratorConfigError):
        RungeKutta(step=0.1, method="dop853")
    with pytest.raises(IntegratorConfigError):
        RungeKutta(order=4)
    with pytest.raises(IntegratorConfigError):
        RungeKutta(order=4, step=-0.1)
    with pytest.raises(IntegratorConfigError):
        AdaptiveRK(order=5, config=_AdaptiveStepConfig(), rtol=1e-6)


def test_fixed_step_rk4_converges_with_order_four(decay):
    """Halving the step divides the global error by about 2^4."""
    errors = []
    for step in (0.1, 0.05):
        y = np.empty(1)
        t_final = RungeKutta(order=4, step=step).integrate(decay, 0.0, np.array([1.0]), 1.0, y_out=y)
        assert t_final == 1.0
        errors.append(abs(y[0] - np.exp(-1.0)))

    ratio = errors[0] / errors[1]
    assert 12.0 < ratio < 20.0, f"Unexpected convergence ratio {ratio}"


@pytest.mark.parametrize(
    "method, order",
    [("euler", 1), ("midpoint", 2), ("gill", 4), ("luther", 6)],
)
def test_fixed_step_methods_converge_with_their_order(decay, method, order):
    """Halving the step divides the global error by about 2^order."""
    errors = []
    for step in (0.25, 0.125):
        y = np.empty(1)
        integrator = RungeKutta(step=step, method=method)
        t_final = integrator.integrate(decay, 0.0, np.array([1.0]), 1.0, y_out=y)
        assert t_final == 1.0
        errors.append(abs(y[0] - np.exp(-1.0)))

    ratio = errors[0] / errors[1]
    expected = 2.0 ** order
    assert 0.7 * expected < ratio < 1.3 * expected, f"{method}: convergence ratio {ratio}"


def test_fixed_step_luther_on_oscillator(oscillator):
    y = np.empty(2)
    RungeKutta(order=6, step=0.1).integrate(oscillator, 0.0, np.array([1.0, 0.0]), 2.0 * np.pi, y_out=y)
    assert np.linalg.norm(y - np.array([1.0, 0.0])) < 1e-8


def test_fixed_step_shortens_last_step(decay):
    recorder = _StepRecorder()
    integrator = RungeKutta(order=4, step=0.3)
    integrator.add_step_handler(recorder)
    integrator.integrate(decay, 0.0, np.array([1.0]), 1.0)

    assert len(recorder.steps) == 4
    assert recorder.steps[-1][1] == 1.0
    assert abs((recorder.steps[-1][1] - recorder.steps[-1][0]) - 0.1) < 1e-12


def test_propagate_samples_trajectory(oscillator):
    """Samples of propagate match the closed-form solution."""
    t_vals = np.linspace(0.0, 2.0 * np.pi, 50)
    sol = AdaptiveRK(order=8, rtol=1e-12, atol=1e-12).propagate(oscillator, np.array([1.0, 0.0]), t_vals)

    np.testing.assert_allclose(sol.times, t_vals)
    np.testing.assert_allclose(sol.states[:, 0], np.cos(t_vals), atol=1e-9)
    np.testing.assert_allclose(sol.states[:, 1], -np.sin(t_vals), atol=1e-9)
    np.testing.assert_allclose(sol.derivatives[:, 0], -np.sin(t_vals), atol=1e-8)


def test_propagate_backward(decay):
    t_vals = np.linspace(2.0, 0.0, 11)
    sol = AdaptiveRK(order=5, rtol=1e-10, atol=1e-12).propagate(decay, np.array([np.exp(-2.0)]), t_vals)
    np.testing.assert_allclose(sol.states[:, 0], np.exp(-t_vals), rtol=1e-7)
