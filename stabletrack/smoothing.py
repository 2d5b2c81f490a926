"""
One Euro Filter
===============

Speed-adaptive low-pass filter for noisy positions. At low speed the cutoff
stays near ``min_cutoff`` (little jitter); as the signal moves faster the
cutoff rises by ``beta * |derivative|`` (little lag).

Each tracklet owns one filter instance. The filter keeps per-component state
and must be fed non-decreasing timestamps.

Reference: Casiez, Roussel, Vogel. "1€ Filter: A Simple Speed-based Low-pass
Filter for Noisy Input in Interactive Systems", CHI 2012.
"""

import math
from typing import Optional, Sequence, Union

import numpy as np

ArrayLike = Union[np.ndarray, Sequence[float], float]


def smoothing_factor(cutoff: np.ndarray, frequency: float) -> np.ndarray:
    """Exponential smoothing factor for a given cutoff (Hz) and rate (Hz)."""
    tau = 1.0 / (2.0 * math.pi * cutoff)
    te = 1.0 / frequency
    return 1.0 / (1.0 + tau / te)


class LowPassFilter:
    """Single-pole exponential smoother."""

    def __init__(self):
        self.last_raw: Optional[np.ndarray] = None
        self.last_filtered: Optional[np.ndarray] = None

    @property
    def initialized(self) -> bool:
        return self.last_filtered is not None

    def filter(self, value: np.ndarray, alpha: np.ndarray) -> np.ndarray:
        if self.last_filtered is None:
            filtered = value
        else:
            filtered = alpha * value + (1.0 - alpha) * self.last_filtered
        self.last_raw = value
        self.last_filtered = filtered
        return filtered


class OneEuroFilter:
    """
    One Euro filter over scalars or vectors (applied element-wise).

    Args:
        min_cutoff: Minimum cutoff frequency (Hz)
        beta: Speed coefficient
        derivative_cutoff: Cutoff for the derivative estimate (Hz)
        frequency: Initial sampling frequency (Hz), re-estimated from timestamps

    Example:
        f = OneEuroFilter(min_cutoff=0.05, beta=0.3, derivative_cutoff=2.0, frequency=30.0)
        smoothed = f.filter(np.array([0.1, 0.2, 0.3]), timestamp=0.033)
    """

    def __init__(
        self,
        min_cutoff: float = 0.05,
        beta: float = 0.3,
        derivative_cutoff: float = 2.0,
        frequency: float = 30.0,
    ):
        if min_cutoff <= 0:
            raise ValueError(f"min_cutoff must be > 0, got {min_cutoff}")
        if beta <= 0:
            raise ValueError(f"beta must be > 0, got {beta}")
        if derivative_cutoff <= 0:
            raise ValueError(f"derivative_cutoff must be > 0, got {derivative_cutoff}")
        if frequency <= 0:
            raise ValueError(f"frequency must be > 0, got {frequency}")

        self.min_cutoff = float(min_cutoff)
        self.beta = float(beta)
        self.derivative_cutoff = float(derivative_cutoff)
        self.frequency = float(frequency)

        self._x = LowPassFilter()
        self._dx = LowPassFilter()
        self.last_timestamp: Optional[float] = None

    def filter(self, value: ArrayLike, timestamp: Optional[float] = None) -> np.ndarray:
        """Filter one sample.

        Args:
            value: Raw sample (scalar or vector)
            timestamp: Sample time in seconds. Must not decrease.

        Returns:
            Filtered sample with the same shape as ``value``

        Raises:
            ValueError: If ``timestamp`` is earlier than the previous one
        """
        x = np.asarray(value, dtype=float)

        if timestamp is not None:
            if self.last_timestamp is not None:
                dt = timestamp - self.last_timestamp
                if dt < 0:
                    raise ValueError(
                        f"timestamps must not decrease: {timestamp} < {self.last_timestamp}"
                    )
                if dt > 0:
                    self.frequency = 1.0 / dt
            self.last_timestamp = timestamp

        if self._x.initialized:
            dx = (x - self._x.last_raw) * self.frequency
        else:
            dx = np.zeros_like(x)

        edx = self._dx.filter(dx, smoothing_factor(np.full_like(x, self.derivative_cutoff), self.frequency))
        cutoff = self.min_cutoff + self.beta * np.abs(edx)
        return self._x.filter(x, smoothing_factor(cutoff, self.frequency)).copy()

    @property
    def value(self) -> Optional[np.ndarray]:
        """Last filtered sample, or None before the first sample."""
        return None if self._x.last_filtered is None else self._x.last_filtered.copy()
