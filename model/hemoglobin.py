"""
model/hemoglobin.py — Hemoglobin estimation from light absorption
==================================================================
    R  = AC / DC                         (pulsatile over steady light)
    Hb = 12.5 + (R − 1)·2.5  g/dL,       clamped to [8, 18]

A Beer-Lambert style linear model: more hemoglobin absorbs more light,
which changes how much of the transmitted brightness pulses with each
beat.  With a single camera channel the relation is a coarse trend only.

The visible value is the median of the last 5 raw estimates, rounded to
one decimal.  Windows with almost no pulsatile component (finger lifted,
flat input) keep the previous value instead of producing one.

⚠️  NOT a medical device.  Anaemia or polycythaemia can only be assessed
    with a blood test.
"""

import numpy as np

from config import (
    HEMOGLOBIN_WINDOW,
    HEMOGLOBIN_MIN_SAMPLES,
    HEMOGLOBIN_MIN_PERFUSION,
    HEMOGLOBIN_BASE,
    HEMOGLOBIN_SLOPE,
    HEMOGLOBIN_RANGE,
    HEMOGLOBIN_MEDIAN_BUFFER,
)
from features.extraction import perfusion_index
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("model.hemoglobin")


def hemoglobin_from_ratio(ratio: float) -> float:
    """Map an AC/DC ratio to g/dL, clamped to HEMOGLOBIN_RANGE."""
    low, high = HEMOGLOBIN_RANGE
    return float(np.clip(HEMOGLOBIN_BASE + (ratio - 1.0) * HEMOGLOBIN_SLOPE, low, high))


class HemoglobinEstimator:
    """Stateful hemoglobin estimator; call `estimate()` with the recent filtered window."""

    def __init__(self):
        self._estimates = SlidingWindow(HEMOGLOBIN_MEDIAN_BUFFER)
        self._last: float | None = None

    def estimate(self, window) -> float | None:
        """
        Returns
        -------
        float | None
            Hemoglobin in g/dL (one decimal).  None until the window holds
            HEMOGLOBIN_MIN_SAMPLES; the last value while perfusion is too
            weak.
        """
        x = np.asarray(window, dtype=np.float64)[-HEMOGLOBIN_WINDOW:]
        if x.size < HEMOGLOBIN_MIN_SAMPLES:
            return None

        ratio = perfusion_index(x)
        if ratio < HEMOGLOBIN_MIN_PERFUSION:
            logger.debug("Hemoglobin skipped: perfusion %.4f below %.4f", ratio, HEMOGLOBIN_MIN_PERFUSION)
            return self._last

        self._estimates.push(hemoglobin_from_ratio(ratio))
        self._last = round(self._estimates.median(), 1)
        return self._last

    @property
    def last_value(self) -> float | None:
        return self._last

    def reset(self) -> None:
        self._estimates.clear()
        self._last = None
