"""
utils/buffers.py — Bounded windows & stabilisation helpers
===========================================================
Every stage of the engine keeps a small, fixed-capacity FIFO of recent
values.  `SlidingWindow` is that FIFO: push-then-evict-oldest is its only
mutation, and each component owns its windows exclusively.

The helpers below are the shared "anti-jitter" toolbox the estimators use
before a value becomes externally visible:

* `median`            — robust centre of a short buffer.
* `weighted_average`  — recency-weighted mean (linear or exponential).
* `outlier_mask`      — IQR fence used to drop wild estimates.
* `hampel_filter`     — sample-level outlier replacement for raw windows.
"""

from collections import deque
from typing import Iterable

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view


class SlidingWindow:
    """Fixed-capacity FIFO of floats."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"SlidingWindow capacity must be >= 1, got {capacity}.")
        self._values: deque[float] = deque(maxlen=capacity)

    def push(self, value: float) -> None:
        self._values.append(float(value))

    def extend(self, values: Iterable[float]) -> None:
        for value in values:
            self.push(value)

    def clear(self) -> None:
        self._values.clear()

    @property
    def capacity(self) -> int:
        return self._values.maxlen

    @property
    def is_full(self) -> bool:
        return len(self._values) == self._values.maxlen

    @property
    def last(self) -> float | None:
        return self._values[-1] if self._values else None

    def values(self) -> list[float]:
        return list(self._values)

    def as_array(self) -> np.ndarray:
        return np.fromiter(self._values, dtype=np.float64, count=len(self._values))

    def mean(self) -> float:
        """Mean of what is buffered so far (partial-window average)."""
        return float(np.mean(self.as_array())) if self._values else 0.0

    def median(self) -> float:
        return float(np.median(self.as_array())) if self._values else 0.0

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self):
        return iter(self._values)


def median(values: Iterable[float]) -> float:
    """Median of `values`, or 0.0 for an empty sequence."""
    arr = np.asarray(list(values), dtype=np.float64)
    return float(np.median(arr)) if arr.size else 0.0


def weighted_average(values: Iterable[float], decay: float | None = None) -> float:
    """
    Recency-weighted mean; the last element is the most recent.

    Parameters
    ----------
    values : iterable of float
    decay  : float | None
        None  → linear weights 1, 2, …, n.
        float → exponential weights decay**0 … decay**(n-1).

    Returns
    -------
    float   0.0 for an empty sequence.
    """
    arr = np.asarray(list(values), dtype=np.float64)
    if arr.size == 0:
        return 0.0
    if decay is None:
        weights = np.arange(1, arr.size + 1, dtype=np.float64)
    else:
        weights = np.power(float(decay), np.arange(arr.size, dtype=np.float64))
    return float(np.sum(arr * weights) / np.sum(weights))


def outlier_mask(values: Iterable[float], k: float = 1.5) -> np.ndarray:
    """
    Boolean mask that is True for values inside the Tukey IQR fence.

    Fewer than 4 values cannot define quartiles, so everything is kept.
    """
    arr = np.asarray(list(values), dtype=np.float64)
    if arr.size < 4:
        return np.ones(arr.size, dtype=bool)
    q1, q3 = np.percentile(arr, [25, 75])
    iqr = q3 - q1
    return (arr >= q1 - k * iqr) & (arr <= q3 + k * iqr)


def hampel_filter(signal: np.ndarray, window: int = 7, n_sigmas: float = 2.5) -> np.ndarray:
    """
    Replace samples that deviate from their local median by more than
    `n_sigmas` scaled MADs.

    Parameters
    ----------
    signal   : ndarray, shape (N,)
    window   : int     Odd window length centred on each sample.
    n_sigmas : float   Rejection threshold in units of 1.4826·MAD.

    Returns
    -------
    ndarray, shape (N,)   A filtered copy; the input is left untouched.
    """
    x = np.asarray(signal, dtype=np.float64)
    if x.size < window:
        return x.copy()

    half = window // 2
    padded = np.pad(x, half, mode="edge")
    windows = sliding_window_view(padded, window)          # shape (N, window)
    local_median = np.median(windows, axis=1)
    mad = 1.4826 * np.median(np.abs(windows - local_median[:, None]), axis=1)

    outliers = np.abs(x - local_median) > n_sigmas * mad
    # A zero MAD (flat neighbourhood) must not flag every tiny deviation
    outliers &= mad > 0

    filtered = x.copy()
    filtered[outliers] = local_median[outliers]
    return filtered
