"""Coefficients of the Dormand-Prince 5(4) method.

The 5th order solution is propagated and the embedded 4th order one is only
used for error estimation. The last stage is evaluated at the new state so
that it doubles as the first stage of the next step (FSAL).

References
----------
Dormand, J. R.; Prince, P. J. (1980). "A family of embedded Runge-Kutta
formulae". Journal of Computational and Applied Mathematics 6 (1).

Shampine, L. F. (1986). "Some Practical Runge-Kutta Formulas". Mathematics
of Computation 46 (173).
"""

import numpy as np

N_STAGES = 6

C = np.array([0.0, 1/5, 3/10, 4/5, 8/9, 1.0, 1.0], dtype=np.float64)

A = np.array([
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [1/5, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [3/40, 9/40, 0.0, 0.0, 0.0, 0.0, 0.0],
    [44/45, -56/15, 32/9, 0.0, 0.0, 0.0, 0.0],
    [19372/6561, -25360/2187, 64448/6561, -212/729, 0.0, 0.0, 0.0],
    [9017/3168, -355/33, 46732/5247, 49/176, -5103/18656, 0.0, 0.0],
    [35/384, 0.0, 500/1113, 125/192, -2187/6784, 11/84, 0.0],
], dtype=np.float64)

B_HIGH = np.array([35/384, 0.0, 500/1113, 125/192, -2187/6784, 11/84, 0.0], dtype=np.float64)

B_LOW = np.array(
    [5179/57600, 0.0, 7571/16695, 393/640, -92097/339200, 187/2100, 1/40],
    dtype=np.float64,
)

E = B_HIGH - B_LOW

# Shampine's continuous extension, weights of the 4th interpolation vector
D = np.array([
    -12715105075.0 / 11282082432.0,
    0.0,
    87487479700.0 / 32700410799.0,
    -10690763975.0 / 1880347072.0,
    701980252875.0 / 199316789632.0,
    -1453857185.0 / 822651844.0,
    69997945.0 / 29380423.0,
], dtype=np.float64)
