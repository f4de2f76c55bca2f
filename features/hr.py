"""
features/hr.py — Streaming heart-rate & peak estimation
========================================================
Consumes one filtered sample at a time and decides, sample by sample,
whether a heartbeat has just been confirmed.

State machine
-------------
    Warmup (first 3 s)  →  Detecting  →  [Candidate → Confirmed]

1. **Candidate**
   The signal is falling (derivative below the adaptive derivative
   threshold), the sample sits clearly above the running baseline
   (normalised amplitude above the adaptive signal threshold), and the
   previous sample was not below 0.98 × baseline.

2. **Confirmed**
   The candidate's confidence reaches the adaptive minimum, the last
   three buffered values fall twice in a row (we are on the descending
   edge just after the top), at least `MIN_PEAK_TIME_MS` has passed since
   the previous beat, and no beat was confirmed yet on this edge
   (hysteresis).

3. **Validated**
   Finally the peak amplitude must be consistent with the recent beats:
   not smaller than the recent mean by more than a factor of 1.15, and
   not an isolated spike of more than 2.5 × that mean.  Only accepted
   amplitudes enter that mean; after five rejections in a row it is
   learned again from scratch.

Normalisation
-------------
Amplitudes and derivatives are divided by the range of the last
`HR_WINDOW_SIZE` samples, so every threshold is a fraction of the pulse
height rather than an absolute brightness difference.  The same detector
therefore works for bright and dim fingers / faces.

Rate reporting
--------------
Each validated beat yields an RR interval.  Intervals translating to
40–200 BPM enter a 12-entry history, and the reported rate is an EMA
(α = 0.2) of the history's running median.  While the signal is lost the
EMA target is 0, so the reported rate decays instead of freezing.

Adaptive tuning
---------------
Every `ADAPTIVE_TUNING_PEAK_WINDOW` confirmed beats the three thresholds
are blended (learning rate 0.1) toward statistics of those beats and
clamped to fixed bounds, which lets the detector settle on the user's
own signal strength.
"""

from dataclasses import dataclass

import numpy as np

from config import (
    SAMPLE_RATE_HZ,
    HR_WINDOW_SIZE,
    HR_MIN_SAMPLES,
    HR_BASELINE_FACTOR,
    WARMUP_MS,
    MIN_PEAK_TIME_MS,
    MIN_BPM,
    MAX_BPM,
    BPM_HISTORY_SIZE,
    BPM_EMA_ALPHA,
    PEAK_CONFIRMATION_BUFFER,
    PEAK_BASELINE_RATIO,
    AMPLITUDE_CONFIDENCE_SPAN,
    DERIVATIVE_CONFIDENCE_SPAN,
    PEAK_VALIDATION_WINDOW,
    PEAK_VALIDATION_MIN_HISTORY,
    PEAK_VALIDATION_RATIO,
    PEAK_SPIKE_RATIO,
    FINAL_BPM_MIN_SAMPLES,
    FINAL_BPM_TRIM,
    RR_HISTORY_SIZE,
    DEFAULT_SIGNAL_THRESHOLD,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_DERIVATIVE_THRESHOLD,
    ADAPTIVE_TUNING_PEAK_WINDOW,
    ADAPTIVE_LEARNING_RATE,
    ADAPTIVE_AMPLITUDE_FACTOR,
    ADAPTIVE_DERIVATIVE_FACTOR,
    ADAPTIVE_CONFIDENCE_DRIFT,
    MIN_ADAPTIVE_SIGNAL_THRESHOLD,
    MAX_ADAPTIVE_SIGNAL_THRESHOLD,
    MIN_ADAPTIVE_MIN_CONFIDENCE,
    MAX_ADAPTIVE_MIN_CONFIDENCE,
    MIN_ADAPTIVE_DERIVATIVE_THRESHOLD,
    MAX_ADAPTIVE_DERIVATIVE_THRESHOLD,
)
from utils.buffers import SlidingWindow, median
from utils.logger import get_logger

logger = get_logger("features.hr")

MAX_RR_INTERVAL_MS = 60000.0 / MIN_BPM


@dataclass
class PeakEvent:
    """A confirmed, validated heartbeat."""
    timestamp_ms: float
    amplitude: float      # Normalised peak height (fraction of the recent range)
    confidence: float     # 0–1
    derivative: float     # Normalised slope at confirmation (negative)


@dataclass
class HeartRateResult:
    """Per-sample output of `HeartRateEstimator.process()`."""
    bpm: float                              # Smoothed rate, 0.0 while unknown
    confidence: float                       # Candidate confidence (0 if no candidate)
    is_peak: bool                           # A beat was confirmed on this sample
    peak: PeakEvent | None = None
    rr_interval_ms: float | None = None     # Interval ending at this beat, if valid


def _clip(value: float, low: float, high: float) -> float:
    return float(min(max(value, low), high))


class HeartRateEstimator:
    """
    Adaptive real-time beat detector.

    Parameters
    ----------
    fs : float   Nominal sampling rate; only used for log messages, all
                 timing relies on the timestamps passed to `process()`.
    """

    def __init__(self, fs: float = SAMPLE_RATE_HZ):
        self._fs = fs

        self._signal = SlidingWindow(HR_WINDOW_SIZE)
        self._recent = SlidingWindow(3)          # Values for the centred derivative
        self._confirmation = SlidingWindow(PEAK_CONFIRMATION_BUFFER)
        self._amplitudes = SlidingWindow(PEAK_VALIDATION_WINDOW)
        self._bpm_history = SlidingWindow(BPM_HISTORY_SIZE)
        self._rr = SlidingWindow(RR_HISTORY_SIZE)
        self._tuning_peaks: list[PeakEvent] = []
        self._rejected_run = 0

        self._baseline: float | None = None
        self._last_value: float | None = None
        self._start_ms: float | None = None
        self._last_peak_ms: float | None = None
        self._previous_peak_ms: float | None = None
        self._last_confirmed = False
        self._signal_lost = False
        self._smooth_bpm = 0.0

        self._reset_adaptive()

    # ── Public API ───────────────────────────────────────────────────────────

    def process(self, value: float, timestamp_ms: float, signal_lost: bool = False) -> HeartRateResult:
        """
        Feed one filtered sample.

        Parameters
        ----------
        value        : float   Output of the preprocessing filter chain.
        timestamp_ms : float   Capture time of the sample.
        signal_lost  : bool    Set by the caller while the input is flat;
                               clears per-peak state and decays the rate.
        """
        value = float(value)
        if self._start_ms is None:
            self._start_ms = timestamp_ms

        if self._baseline is None:
            self._baseline = value
        else:
            self._baseline = self._baseline * HR_BASELINE_FACTOR + value * (1.0 - HR_BASELINE_FACTOR)
        self._signal.push(value)
        self._recent.push(value)
        previous = self._last_value
        self._last_value = value

        if signal_lost:
            if not self._signal_lost:
                logger.info("Heart-rate detection reset after signal loss.")
                self.reset_detection_state()
            self._signal_lost = True
            self._update_smooth_bpm(0.0)
            return HeartRateResult(bpm=self._smooth_bpm, confidence=0.0, is_peak=False)
        self._signal_lost = False

        if len(self._signal) < HR_MIN_SAMPLES:
            return HeartRateResult(bpm=self._smooth_bpm, confidence=0.0, is_peak=False)

        span = float(np.ptp(self._signal.as_array()))
        recent = self._recent.values()
        normalized = 0.0
        derivative = 0.0
        if span > 0:
            normalized = (value - self._baseline) / span
            if len(recent) >= 2:
                derivative = (recent[-1] - recent[0]) / (len(recent) - 1) / span
        self._confirmation.push(normalized)

        is_candidate = (
            derivative < self._derivative_threshold
            and normalized > self._signal_threshold
            and previous is not None
            and previous >= PEAK_BASELINE_RATIO * self._baseline
        )

        confidence = 0.0
        peak = None
        rr_interval = None
        if is_candidate:
            confidence = self._confidence(normalized, derivative)
            peak = self._confirm_peak(derivative, confidence, timestamp_ms)
        else:
            self._last_confirmed = False

        if peak is not None:
            rr_interval = self._register_beat(peak)

        self._update_smooth_bpm(median(self._bpm_history) if len(self._bpm_history) else 0.0)
        return HeartRateResult(
            bpm=self._smooth_bpm,
            confidence=confidence,
            is_peak=peak is not None,
            peak=peak,
            rr_interval_ms=rr_interval,
        )

    def get_final_bpm(self) -> float | None:
        """
        Session summary: mean of the BPM history after discarding the
        lowest and highest 20 %.  None with fewer than 5 entries.
        """
        history = sorted(self._bpm_history.values())
        if len(history) < FINAL_BPM_MIN_SAMPLES:
            return None
        cut = int(len(history) * FINAL_BPM_TRIM)
        trimmed = history[cut:len(history) - cut]
        return float(np.mean(trimmed))

    @property
    def rr_intervals(self) -> list[float]:
        """Valid RR intervals (ms), oldest first, at most RR_HISTORY_SIZE."""
        return self._rr.values()

    @property
    def bpm_history(self) -> list[float]:
        return self._bpm_history.values()

    @property
    def confirmation_buffer(self) -> list[float]:
        return self._confirmation.values()

    @property
    def last_peak_ms(self) -> float | None:
        return self._last_peak_ms

    @property
    def thresholds(self) -> dict[str, float]:
        """Current adaptive thresholds."""
        return {
            "signal": self._signal_threshold,
            "min_confidence": self._min_confidence,
            "derivative": self._derivative_threshold,
        }

    def reset_detection_state(self) -> None:
        """Clear per-peak state and revert the adaptive thresholds to defaults."""
        self._recent.clear()
        self._confirmation.clear()
        self._amplitudes.clear()
        self._tuning_peaks.clear()
        self._rejected_run = 0
        self._last_peak_ms = None
        self._previous_peak_ms = None
        self._last_confirmed = False
        self._reset_adaptive()

    def reset(self) -> None:
        """Forget everything, including the BPM history and warmup clock."""
        self.reset_detection_state()
        self._signal.clear()
        self._bpm_history.clear()
        self._rr.clear()
        self._baseline = None
        self._last_value = None
        self._start_ms = None
        self._signal_lost = False
        self._smooth_bpm = 0.0

    # ── Detection internals ──────────────────────────────────────────────────

    def _confidence(self, normalized: float, derivative: float) -> float:
        amplitude_conf = min(1.0, abs(normalized) / (self._signal_threshold * AMPLITUDE_CONFIDENCE_SPAN))
        derivative_conf = min(1.0, abs(derivative) / abs(self._derivative_threshold * DERIVATIVE_CONFIDENCE_SPAN))
        return (amplitude_conf + derivative_conf) / 2.0

    def _confirm_peak(self, derivative: float, confidence: float, timestamp_ms: float) -> PeakEvent | None:
        if timestamp_ms - self._start_ms < WARMUP_MS:
            # An edge that starts in warmup is spent
            self._last_confirmed = True
            return None
        if self._last_confirmed or confidence < self._min_confidence:
            return None

        buffered = self._confirmation.values()
        if len(buffered) < 3:
            return None
        if not buffered[-3] > buffered[-2] > buffered[-1]:
            return None
        if float(np.mean(buffered)) <= self._signal_threshold:
            return None
        if self._last_peak_ms is not None and timestamp_ms - self._last_peak_ms < MIN_PEAK_TIME_MS:
            return None

        # One decision per descending edge, accepted or not
        self._last_confirmed = True

        amplitude = max(buffered)
        if not self._validate_amplitude(amplitude):
            logger.debug("Peak at %.0f ms rejected by amplitude validation (%.3f).", timestamp_ms, amplitude)
            return None
        return PeakEvent(
            timestamp_ms=timestamp_ms,
            amplitude=amplitude,
            confidence=confidence,
            derivative=derivative,
        )

    def _validate_amplitude(self, amplitude: float) -> bool:
        history = self._amplitudes.values()
        accepted = True
        if len(history) >= PEAK_VALIDATION_MIN_HISTORY:
            reference = float(np.mean(history))
            if reference > 0:
                accepted = reference <= amplitude * PEAK_VALIDATION_RATIO and amplitude <= PEAK_SPIKE_RATIO * reference
        # Rejected amplitudes stay out of the reference
        if accepted:
            self._amplitudes.push(amplitude)
            self._rejected_run = 0
        else:
            self._rejected_run += 1
            if self._rejected_run >= PEAK_VALIDATION_WINDOW:
                logger.debug("%d peaks rejected in a row; relearning the amplitude reference.", self._rejected_run)
                self._amplitudes.clear()
                self._rejected_run = 0
        return accepted

    def _register_beat(self, peak: PeakEvent) -> float | None:
        self._previous_peak_ms = self._last_peak_ms
        self._last_peak_ms = peak.timestamp_ms

        self._tuning_peaks.append(peak)
        if len(self._tuning_peaks) >= ADAPTIVE_TUNING_PEAK_WINDOW:
            self._tune()

        if self._previous_peak_ms is None:
            return None
        interval = peak.timestamp_ms - self._previous_peak_ms
        if not MIN_PEAK_TIME_MS <= interval <= MAX_RR_INTERVAL_MS:
            return None

        self._rr.push(interval)
        instant_bpm = 60000.0 / interval
        if MIN_BPM <= instant_bpm <= MAX_BPM:
            self._bpm_history.push(instant_bpm)
        return interval

    def _update_smooth_bpm(self, target: float) -> None:
        if self._smooth_bpm == 0.0:
            self._smooth_bpm = target
        else:
            self._smooth_bpm = BPM_EMA_ALPHA * target + (1.0 - BPM_EMA_ALPHA) * self._smooth_bpm

    # ── Adaptive tuning ──────────────────────────────────────────────────────

    def _reset_adaptive(self) -> None:
        self._signal_threshold = DEFAULT_SIGNAL_THRESHOLD
        self._min_confidence = DEFAULT_MIN_CONFIDENCE
        self._derivative_threshold = DEFAULT_DERIVATIVE_THRESHOLD

    def _tune(self) -> None:
        lr = ADAPTIVE_LEARNING_RATE
        mean_amplitude = float(np.mean([p.amplitude for p in self._tuning_peaks]))
        mean_confidence = float(np.mean([p.confidence for p in self._tuning_peaks]))
        mean_derivative = float(np.mean([p.derivative for p in self._tuning_peaks]))
        self._tuning_peaks.clear()

        self._signal_threshold = _clip(
            (1 - lr) * self._signal_threshold + lr * mean_amplitude * ADAPTIVE_AMPLITUDE_FACTOR,
            MIN_ADAPTIVE_SIGNAL_THRESHOLD, MAX_ADAPTIVE_SIGNAL_THRESHOLD,
        )
        # Confident beats tighten the gate a little, marginal beats relax it
        drift = ADAPTIVE_CONFIDENCE_DRIFT if mean_confidence > self._min_confidence else -ADAPTIVE_CONFIDENCE_DRIFT
        self._min_confidence = _clip(
            self._min_confidence + drift,
            MIN_ADAPTIVE_MIN_CONFIDENCE, MAX_ADAPTIVE_MIN_CONFIDENCE,
        )
        self._derivative_threshold = _clip(
            (1 - lr) * self._derivative_threshold + lr * mean_derivative * ADAPTIVE_DERIVATIVE_FACTOR,
            MIN_ADAPTIVE_DERIVATIVE_THRESHOLD, MAX_ADAPTIVE_DERIVATIVE_THRESHOLD,
        )
        logger.debug(
            "Adaptive thresholds: signal=%.3f  min_conf=%.2f  derivative=%.4f",
            self._signal_threshold, self._min_confidence, self._derivative_threshold,
        )
