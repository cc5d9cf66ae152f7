"""Example script: a ball bouncing on the floor, integrated with DOP853.

Each impact is an event on the height; the handler reverses and damps the
velocity, and the integration stops once the bounces become negligible.

python examples/bouncing_ball.py
"""

import os
import sys

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from odekit import (AdaptiveRK, EventAction, EventConfig, EventHandler,
                    StepNormalizer, create_rhs_system)
from odekit.utils.log_config import logger

GRAVITY = 9.81
RESTITUTION = 0.8


class _Floor(EventHandler):
    """Impact with the floor at height zero."""

    def __init__(self, min_speed=0.5):
        self.min_speed = min_speed
        self.impacts = []

    def g(self, t, y):
        return y[0]

    def event_occurred(self, t, y, increasing):
        self.impacts.append(t)
        if abs(y[1]) * RESTITUTION < self.min_speed:
            return EventAction.STOP
        return EventAction.RESET_STATE

    def reset_state(self, t, y):
        return np.array([0.0, -RESTITUTION * y[1]])


def main() -> None:
    """Drop a ball from 10 m and report its impacts."""

    def rhs(t, y):
        return np.array([y[1], -GRAVITY])

    system = create_rhs_system(rhs, dim=2, name="Falling ball")
    integrator = AdaptiveRK(order=8, rtol=1e-10, atol=1e-10)

    floor = integrator.add_event_handler(_Floor(), EventConfig(direction=-1, tol=1e-12))

    heights = []
    integrator.add_step_handler(StepNormalizer(0.1, lambda t, y, y_dot, last: heights.append(y[0])))

    y = np.empty(2)
    t_stop = integrator.integrate(system, 0.0, np.array([10.0, 0.0]), 60.0, y_out=y)

    logger.info("Stopped at t=%.6f after %d impacts", t_stop, len(floor.impacts))
    for i, t in enumerate(floor.impacts[:5]):
        logger.info("Impact %d at t=%.9f", i + 1, t)
    logger.info("Highest sampled height after the first impact: %.4f m", max(heights[15:], default=0.0))


if __name__ == "__main__":
    main()
