"""Package-wide numerical defaults."""

import numpy as np

# Default absolute / relative tolerance of the adaptive integrators
TOL = 1e-10

# Global flag for Numba's fastmath option
FASTMATH = False

# Default settings of the event localization
EVENT_MAX_CHECK = np.inf
EVENT_TOL = 1e-12
EVENT_MAX_ITER = 100

# Fraction of the step length tolerated when querying a step interpolator
# outside of its interval
EXTRAPOLATION_TOL = 1e-6
