"""
ppg/filters.py — Streaming preprocessing filter chain
======================================================
Turns one raw brightness sample into one denoised sample.  The chain is
stateful and must be fed in strict arrival order:

    raw → median(5) → moving average(3) → EMA(α=0.4)
        → adaptive baseline → soft-threshold denoise → Savitzky-Golay(9)

Why this order?
---------------
* The median stage comes first so a single saturated or dropped frame
  never reaches the averaging stages (which would smear it over several
  samples).
* MA + EMA remove sensor noise while keeping the ~1 Hz cardiac
  component.
* The baseline tracks slow illumination drift.  The signal is split into
  `baseline + normalised` so the next stage can work on the pulse alone
  while the output keeps its DC level (the estimators need it for AC/DC
  ratios).
* Soft thresholding attenuates values close to the baseline.  The
  threshold follows a short-window standard deviation, so a weak pulse
  is never flattened by a constant set for a strong one.  Attenuated
  values keep at least `DENOISE_MIN_GAIN` of their amplitude.
* Savitzky-Golay smoothing preserves peak height much better than a
  plain moving average, which matters for the amplitude features.

Until a stage's window is full it returns the average of what it has,
so the chain produces output from the very first sample.

Signal loss
-----------
When the last `LOW_SIGNAL_FRAMES` raw samples span less than
`LOW_SIGNAL_THRESHOLD` (peak to peak), `signal_lost` turns True.  The
raw spread does not depend on the lagging baseline, so a flat input is
flagged after exactly `LOW_SIGNAL_FRAMES` samples even straight after a
strong pulse.  The chain resets its own dynamic threshold; the engine
uses the flag to reset per-peak detection state downstream.
"""

import math

import numpy as np
from scipy.signal import savgol_coeffs

from config import (
    MEDIAN_WINDOW,
    MOVING_AVERAGE_WINDOW,
    EMA_ALPHA,
    BASELINE_FACTOR,
    DENOISE_STD_WINDOW,
    DENOISE_THRESHOLD_FACTOR,
    DENOISE_MIN_GAIN,
    SG_WINDOW,
    SG_POLYORDER,
    LOW_SIGNAL_THRESHOLD,
    LOW_SIGNAL_FRAMES,
)
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("ppg.filters")


class FilterChain:
    """
    Stateful multi-stage denoiser for a 1-D PPG stream.

    Parameters
    ----------
    ema_alpha       : float   Smoothing factor of the EMA stage.
    baseline_factor : float   Memory of the adaptive baseline (0.92–0.96).
    sg_window       : int     Savitzky-Golay taps (odd, 7–9).
    """

    def __init__(
        self,
        ema_alpha: float = EMA_ALPHA,
        baseline_factor: float = BASELINE_FACTOR,
        sg_window: int = SG_WINDOW,
    ):
        self._ema_alpha = ema_alpha
        self._baseline_factor = baseline_factor

        self._raw = SlidingWindow(MEDIAN_WINDOW)
        self._medians = SlidingWindow(MOVING_AVERAGE_WINDOW)
        self._normalized = SlidingWindow(DENOISE_STD_WINDOW)
        self._denoised = SlidingWindow(sg_window)
        self._level = SlidingWindow(LOW_SIGNAL_FRAMES)
        # Coefficients for a dot product with [oldest … newest], evaluated
        # at the window centre.
        self._sg_coeffs = savgol_coeffs(sg_window, SG_POLYORDER, use="dot")

        self._ema: float | None = None
        self._baseline: float | None = None
        self._signal_lost = False
        self.last_normalized = 0.0

    # ── Public API ───────────────────────────────────────────────────────────

    def filter(self, raw: float) -> float:
        """Push one raw sample through every stage and return the denoised value."""
        raw = float(raw)
        if not math.isfinite(raw):
            # A corrupt frame repeats the previous sample instead of poisoning the state
            raw = self._raw.last if self._raw.last is not None else 0.0
            logger.debug("Non-finite sample replaced with %.3f", raw)

        # ── 1. Median (outlier rejection) ─────────────────────────────────
        self._raw.push(raw)
        med = self._raw.median()

        # ── 2. Moving average ─────────────────────────────────────────────
        self._medians.push(med)
        averaged = self._medians.mean()

        # ── 3. EMA ────────────────────────────────────────────────────────
        if self._ema is None:
            self._ema = averaged
        else:
            self._ema = self._ema_alpha * averaged + (1.0 - self._ema_alpha) * self._ema

        # ── 4. Adaptive baseline ──────────────────────────────────────────
        if self._baseline is None:
            self._baseline = self._ema
        else:
            k = self._baseline_factor
            self._baseline = self._baseline * k + self._ema * (1.0 - k)
        normalized = self._ema - self._baseline
        self.last_normalized = normalized

        # ── 5. Soft-threshold denoise ─────────────────────────────────────
        self._normalized.push(normalized)
        threshold = DENOISE_THRESHOLD_FACTOR * float(np.std(self._normalized.as_array()))
        if threshold > 0 and abs(normalized) < threshold:
            gain = max(DENOISE_MIN_GAIN, abs(normalized) / threshold)
            normalized *= gain
        denoised = self._baseline + normalized

        # ── 6. Savitzky-Golay ─────────────────────────────────────────────
        self._denoised.push(denoised)
        if self._denoised.is_full:
            output = float(np.dot(self._sg_coeffs, self._denoised.as_array()))
        else:
            output = self._denoised.mean()

        self._track_signal_level(raw)
        return output

    def filter_many(self, samples) -> np.ndarray:
        """Filter a whole sequence in order; convenient for reference windows."""
        return np.array([self.filter(s) for s in samples], dtype=np.float64)

    @property
    def signal_lost(self) -> bool:
        """True while the last LOW_SIGNAL_FRAMES raw samples are flat."""
        return self._signal_lost

    @property
    def baseline(self) -> float:
        return self._baseline if self._baseline is not None else 0.0

    def reset(self) -> None:
        self._raw.clear()
        self._medians.clear()
        self._normalized.clear()
        self._denoised.clear()
        self._level.clear()
        self._ema = None
        self._baseline = None
        self._signal_lost = False
        self.last_normalized = 0.0

    # ── Internals ────────────────────────────────────────────────────────────

    def _track_signal_level(self, raw: float) -> None:
        self._level.push(raw)
        flat = self._level.is_full and float(np.ptp(self._level.as_array())) < LOW_SIGNAL_THRESHOLD

        if flat and not self._signal_lost:
            logger.warning(
                "Signal lost: last %d samples span < %.3f, resetting detection state.",
                LOW_SIGNAL_FRAMES, LOW_SIGNAL_THRESHOLD,
            )
            # Dynamic threshold reverts to its default (no history)
            self._normalized.clear()
        elif self._signal_lost and not flat:
            logger.info("Signal recovered.")
        self._signal_lost = flat
