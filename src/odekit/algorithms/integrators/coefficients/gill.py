"""Coefficients of Gill's 4th order Runge-Kutta method.

Gill's variant of the classical method reduces the round-off error
accumulated by the stages.

References
----------
Gill, S. (1951). "A process for the step-by-step integration of
differential equations in an automatic digital computing machine".
Proceedings of the Cambridge Philosophical Society 47 (1).
"""

import numpy as np

_SQ2 = np.sqrt(2.0)

C = np.array([0.0, 0.5, 0.5, 1.0], dtype=np.float64)

A = np.array([
    [0.0, 0.0, 0.0, 0.0],
    [0.5, 0.0, 0.0, 0.0],
    [(_SQ2 - 1.0) / 2.0, (2.0 - _SQ2) / 2.0, 0.0, 0.0],
    [0.0, -_SQ2 / 2.0, (2.0 + _SQ2) / 2.0, 0.0],
], dtype=np.float64)

B = np.array([1/6, (2.0 - _SQ2) / 6.0, (2.0 + _SQ2) / 6.0, 1/6], dtype=np.float64)

# 3rd order continuous weights, coefficients of theta, theta^2, theta^3
P = np.array([
    [1.0, -3/2, 2/3],
    [0.0, 1.0 - 1.0 / _SQ2, -2/3 * (1.0 - 1.0 / _SQ2)],
    [0.0, 1.0 + 1.0 / _SQ2, -2/3 * (1.0 + 1.0 / _SQ2)],
    [0.0, -1/2, 2/3],
], dtype=np.float64)
