"""Coefficients of the Higham-Hall 5(4) method.

The 5th order solution is propagated. Like Dormand-Prince 5(4) the method
is FSAL: the last stage is the derivative at the new state.

References
----------
Higham, D. J.; Hall, G. (1990). "Embedded Runge-Kutta formulae with stable
equilibrium states". Journal of Computational and Applied Mathematics 29 (1).
"""

import numpy as np

C = np.array([0.0, 2/9, 1/3, 1/2, 3/5, 1.0, 1.0], dtype=np.float64)

A = np.array([
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [2/9, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [1/12, 1/4, 0.0, 0.0, 0.0, 0.0, 0.0],
    [1/8, 0.0, 3/8, 0.0, 0.0, 0.0, 0.0],
    [91/500, -27/100, 78/125, 8/125, 0.0, 0.0, 0.0],
    [-11/20, 27/20, 12/5, -36/5, 5.0, 0.0, 0.0],
    [1/12, 0.0, 27/32, -4/3, 125/96, 5/48, 0.0],
], dtype=np.float64)

B = np.array([1/12, 0.0, 27/32, -4/3, 125/96, 5/48, 0.0], dtype=np.float64)

# difference between the 5th and the embedded 4th order weights
E = np.array([-1/20, 0.0, 81/160, -6/5, 25/32, 1/16, -1/10], dtype=np.float64)

# Continuous weights, coefficients of theta to theta^4
P = np.array([
    [1.0, -15/4, 16/3, -5/2],
    [0.0, 0.0, 0.0, 0.0],
    [0.0, 459/32, -243/8, 135/8],
    [0.0, -22.0, 152/3, -30.0],
    [0.0, 375/32, -625/24, 125/8],
    [0.0, -5/16, 5/12, 0.0],
    [0.0, 0.0, 0.0, 0.0],
], dtype=np.float64)
