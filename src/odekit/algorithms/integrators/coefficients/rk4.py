"""Coefficients of the classical 4th order Runge-Kutta method."""

import numpy as np

C = np.array([0.0, 0.5, 0.5, 1.0], dtype=np.float64)

A = np.array([
    [0.0, 0.0, 0.0, 0.0],
    [0.5, 0.0, 0.0, 0.0],
    [0.0, 0.5, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
], dtype=np.float64)

B = np.array([1/6, 1/3, 1/3, 1/6], dtype=np.float64)
