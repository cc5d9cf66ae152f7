"""Coefficients of Luther's 6th order Runge-Kutta method and its 5th order
continuous extension.

References
----------
Luther, H. A. (1968). "An explicit sixth-order Runge-Kutta formula".
Mathematics of Computation 22 (102).
"""

import numpy as np

_Q = np.sqrt(21.0)

C = np.array([0.0, 1.0, 1/2, 2/3, (7.0 - _Q) / 14.0, (7.0 + _Q) / 14.0, 1.0], dtype=np.float64)

A = np.array([
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [3/8, 1/8, 0.0, 0.0, 0.0, 0.0, 0.0],
    [8/27, 2/27, 8/27, 0.0, 0.0, 0.0, 0.0],
    [(-21.0 + 9.0 * _Q) / 392.0, (-56.0 + 8.0 * _Q) / 392.0, (336.0 - 48.0 * _Q) / 392.0,
     (-63.0 + 3.0 * _Q) / 392.0, 0.0, 0.0, 0.0],
    [(-1155.0 - 255.0 * _Q) / 1960.0, (-280.0 - 40.0 * _Q) / 1960.0, -320.0 * _Q / 1960.0,
     (63.0 + 363.0 * _Q) / 1960.0, (2352.0 + 392.0 * _Q) / 1960.0, 0.0, 0.0],
    [(330.0 + 105.0 * _Q) / 180.0, 120.0 / 180.0, (-200.0 + 280.0 * _Q) / 180.0,
     (126.0 - 189.0 * _Q) / 180.0, (-686.0 - 126.0 * _Q) / 180.0, (490.0 - 70.0 * _Q) / 180.0, 0.0],
], dtype=np.float64)

B = np.array([1/20, 0.0, 16/45, 0.0, 49/180, 49/180, 1/20], dtype=np.float64)

# Continuous weights, coefficients of theta to theta^5. Rows 5 and 6 are
# conjugate in sqrt(21).
_C5 = (-49.0 - 49.0 * _Q, 392.0 + 287.0 * _Q, -637.0 - 357.0 * _Q, 833.0 + 343.0 * _Q)
_C6 = (-49.0 + 49.0 * _Q, 392.0 - 287.0 * _Q, -637.0 + 357.0 * _Q, 833.0 - 343.0 * _Q)

P = np.array([
    [1.0, -27/5, 12.0, -47/4, 21/5],
    [0.0, 0.0, 0.0, 0.0, 0.0],
    [0.0, -104/15, 320/9, -152/3, 112/5],
    [0.0, 162/25, -162/5, 243/5, -567/25],
    [0.0, _C5[3] / 300.0, _C5[2] / 90.0, _C5[1] / 60.0, _C5[0] / 25.0],
    [0.0, _C6[3] / 300.0, _C6[2] / 90.0, _C6[1] / 60.0, _C6[0] / 25.0],
    [0.0, 3/10, -1.0, 3/4, 0.0],
], dtype=np.float64)
