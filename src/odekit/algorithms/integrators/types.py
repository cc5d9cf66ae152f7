from dataclasses import dataclass
from typing import Optional, Union

import numpy as np


@dataclass
class _Solution:
    """
    Container for integration results.

    Attributes
    ----------
    times : numpy.ndarray
        Array of time points, shape (n_points,), monotonic in the direction
        of integration.
    states : numpy.ndarray
        Array of state vectors, shape (n_points, n_dim)
    derivatives : numpy.ndarray or None, optional
        Array of time derivatives f(t, y) evaluated at the stored time points,
        shape (n_points, n_dim).  When provided, cubic Hermite interpolation is
        used; otherwise interpolation falls back to linear.
    """
    times: np.ndarray
    states: np.ndarray
    derivatives: Optional[np.ndarray] = None

    def __post_init__(self):
        if len(self.times) != len(self.states):
            raise ValueError(
                f"Times and states must have same length: "
                f"{len(self.times)} != {len(self.states)}"
            )
        if self.derivatives is not None and len(self.derivatives) != len(self.times):
            raise ValueError(
                "If provided, derivatives must have the same length as times "
                f"({len(self.derivatives)} != {len(self.times)})"
            )

    def interpolate(self, t: Union[np.ndarray, float]) -> np.ndarray:
        """Evaluate the solution at arbitrary time points by interpolation.

        Parameters
        ----------
        t : float or array_like
            Time (or array of times) at which to evaluate the solution.  Must
            lie within the integration interval spanned by ``times``.

        Returns
        -------
        ndarray
            Interpolated state(s) with shape ``(n_dim,)`` for a scalar *t* or
            ``(n_times, n_dim)`` for an array input.
        """
        t_arr = np.atleast_1d(t).astype(float)
        times = self.times
        states = self.states
        derivs = self.derivatives

        # searchsorted needs increasing nodes
        if times.size > 1 and times[-1] < times[0]:
            times = times[::-1]
            states = states[::-1]
            derivs = None if derivs is None else derivs[::-1]

        if np.any(t_arr < times[0]) or np.any(t_arr > times[-1]):
            raise ValueError("Interpolation times must lie within the solution interval.")

        if times.size == 1:
            y_out = np.repeat(states[:1], t_arr.size, axis=0)
            return y_out[0] if np.isscalar(t) else y_out

        idxs = np.searchsorted(times, t_arr, side="right") - 1
        idxs = np.clip(idxs, 0, len(times) - 2)

        t0 = times[idxs]
        t1 = times[idxs + 1]
        y0 = states[idxs]
        y1 = states[idxs + 1]

        h = (t1 - t0)
        # terminal events can produce a zero-length last interval
        safe_h = np.where(h == 0.0, 1.0, h)
        s = np.where(h == 0.0, 0.0, (t_arr - t0) / safe_h)

        if derivs is None:
            y_out = y0 + ((y1 - y0).T * s).T
        else:
            f0 = derivs[idxs]
            f1 = derivs[idxs + 1]

            s2 = s * s
            s3 = s2 * s
            h00 = 2 * s3 - 3 * s2 + 1
            h10 = s3 - 2 * s2 + s
            h01 = -2 * s3 + 3 * s2
            h11 = s3 - s2

            y_out = (
                (h00[:, None] * y0) +
                (h10[:, None] * (h[:, None] * f0)) +
                (h01[:, None] * y1) +
                (h11[:, None] * (h[:, None] * f1))
            )

        if np.isscalar(t):
            return y_out[0]
        return y_out
