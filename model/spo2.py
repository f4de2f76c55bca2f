"""
model/spo2.py — SpO2 estimation from the AC/DC ratio
=====================================================
    R    = AC / DC                      (pulsatile over steady light)
    SpO2 = round(110 − 25·R), clamped to [70, 100] %

The linear calibration curve is the classic empirical pulse-oximetry
approximation.  A single camera channel is used, so this is a trend
indicator, not a ratio-of-ratios oximeter.

Stabilisation is two-staged: every raw value enters a 10-entry moving
average, and the externally visible value is the median of the last 5
averages.  The average absorbs frame noise; the median keeps one bad
window from moving the reading.

⚠️  NOT a medical device.  Do not use for clinical decisions.
"""

import numpy as np

from config import (
    SPO2_WINDOW,
    SPO2_MIN_SAMPLES,
    SPO2_MIN_PERFUSION,
    SPO2_INTERCEPT,
    SPO2_SLOPE,
    SPO2_MIN,
    SPO2_MAX,
    SPO2_AVERAGE_BUFFER,
    SPO2_MEDIAN_BUFFER,
)
from features.extraction import perfusion_index
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("model.spo2")


class SpO2Estimator:
    """Stateful SpO2 estimator; call `estimate()` with the recent filtered window."""

    def __init__(self):
        self._averages = SlidingWindow(SPO2_AVERAGE_BUFFER)
        self._medians = SlidingWindow(SPO2_MEDIAN_BUFFER)
        self._last: int | None = None

    def estimate(self, window) -> int | None:
        """
        Returns
        -------
        int | None
            SpO2 in %.  None while the window is shorter than
            SPO2_MIN_SAMPLES; the last accepted value while perfusion is
            too weak.
        """
        x = np.asarray(window, dtype=np.float64)[-SPO2_WINDOW:]
        if x.size < SPO2_MIN_SAMPLES:
            return None

        ratio = perfusion_index(x)
        if ratio < SPO2_MIN_PERFUSION:
            logger.debug("SpO2 skipped: perfusion %.4f below %.4f", ratio, SPO2_MIN_PERFUSION)
            return self._last

        raw = float(np.clip(round(SPO2_INTERCEPT - SPO2_SLOPE * ratio), SPO2_MIN, SPO2_MAX))
        self._averages.push(raw)
        self._medians.push(self._averages.mean())

        self._last = int(np.clip(round(self._medians.median()), SPO2_MIN, SPO2_MAX))
        return self._last

    @property
    def last_value(self) -> int | None:
        return self._last

    def reset(self) -> None:
        self._averages.clear()
        self._medians.clear()
        self._last = None
