"""Coefficients of the explicit Euler method."""

import numpy as np

C = np.array([0.0], dtype=np.float64)

A = np.array([[0.0]], dtype=np.float64)

B = np.array([1.0], dtype=np.float64)

# b_1(theta) = 1: the dense output is the straight line of the step
P = np.array([[1.0]], dtype=np.float64)
