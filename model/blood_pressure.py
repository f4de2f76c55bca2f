"""
model/blood_pressure.py — Blood Pressure estimation (morphology regression)
============================================================================

⚠️⚠️⚠️  CRITICAL DISCLAIMER ⚠️⚠️⚠️
This module provides an *ESTIMATED* blood pressure, NOT a measured one.
The coefficients follow plausible physiological correlations but have
NOT been validated against clinical blood-pressure measurements.

USE THIS OUTPUT ONLY AS A ROUGH WELLNESS INDICATOR.
⚠️⚠️⚠️

────────────────────────────────────────────────────────────────────────
Design Rationale
────────────────────────────────────────────────────────────────────────
Pulse waveform shape and timing carry weak-to-moderate information about
arterial pressure.  Six features are extracted from the last ~8 s of the
filtered signal and each contributes a bounded additive term to a
120/80 mmHg baseline:

    heart_rate          beats per minute from inter-peak spacing
    amplitude           perfusion (AC/DC) in percent
    pulse_transit_time  inter-peak spacing in ms
    peak_valley_ratio   mean peak level / mean valley level
    waveform_width      pulse width at half height (samples)
    notch_ratio         dicrotic-notch height relative to the pulse height

    term = clip((feature − reference) × coefficient, ±BP_TERM_LIMIT)

The coefficient table lives in config.BP_COEFFICIENTS.  Estimates from
weaker signals are pulled toward 120/80 in proportion to signal quality.

Processing
----------
    window → Hampel(7, 2.5 MAD) → Savitzky-Golay(9) → features
           → regression → + calibration offset → physiological clamps
           → 25-entry buffer → IQR outlier rejection → recency-weighted mean

Physiological constraints: systolic ∈ [90, 180], diastolic ∈ [60, 110],
pulse pressure ∈ [25, 75] and therefore diastolic < systolic.

Calibration
-----------
One reference cuff reading plus a signal window recorded at the same
time gives additive offsets: ``offset = reference − uncalibrated``.  The
offset is always recomputed from the *uncalibrated* estimate, so
repeating a calibration with the same reference never compounds it.

Delayed finalisation
--------------------
`start_final_measurement()` buffers subsequent live values.  Once
`BP_COMPLETION_DELAY_MS` has elapsed, `poll_final_measurement()` returns
one outlier-filtered, exponentially recency-weighted average as the
session's final reading.
"""

from collections import deque
from dataclasses import dataclass

import numpy as np
from scipy.signal import savgol_filter

from config import (
    SAMPLE_RATE_HZ,
    SG_WINDOW,
    SG_POLYORDER,
    BP_WINDOW,
    BP_MIN_SAMPLES,
    BP_MIN_CALIBRATION_SAMPLES,
    BP_MIN_PERFUSION,
    BP_MIN_QUALITY,
    BP_FULL_TRUST_QUALITY,
    BP_BASE_SYSTOLIC,
    BP_BASE_DIASTOLIC,
    BP_TERM_LIMIT,
    BP_HAMPEL_WINDOW,
    BP_HAMPEL_SIGMAS,
    BP_MIN_BEAT_SAMPLES,
    BP_MAX_BEAT_SAMPLES,
    BP_MEASUREMENT_BUFFER,
    BP_FINAL_BUFFER,
    BP_COMPLETION_DELAY_MS,
    BP_FINAL_WEIGHT_DECAY,
    BP_COEFFICIENTS,
    SYSTOLIC_RANGE,
    DIASTOLIC_RANGE,
    PULSE_PRESSURE_RANGE,
)
from errors import CalibrationDataInsufficient, InvalidCalibrationReference
from features.extraction import (
    beats,
    dicrotic_notch,
    find_peaks,
    find_valleys,
    perfusion_index,
    pulse_width,
    signal_quality,
)
from utils.buffers import hampel_filter, outlier_mask, weighted_average
from utils.logger import get_logger

logger = get_logger("model.blood_pressure")


@dataclass(frozen=True)
class BloodPressure:
    systolic: int
    diastolic: int

    @property
    def pulse_pressure(self) -> int:
        return self.systolic - self.diastolic

    def __str__(self) -> str:
        return f"{self.systolic}/{self.diastolic}"


def to_reading(systolic: float, diastolic: float) -> BloodPressure:
    """Round to whole mmHg while keeping every physiological constraint."""
    sys_low, sys_high = SYSTOLIC_RANGE
    dia_low, dia_high = DIASTOLIC_RANGE
    pp_low, pp_high = PULSE_PRESSURE_RANGE

    s = int(round(float(np.clip(systolic, sys_low, sys_high))))
    d = int(round(diastolic))
    d = max(d, s - pp_high, dia_low)
    d = min(d, s - pp_low, dia_high)
    return BloodPressure(systolic=s, diastolic=d)


def extract_bp_features(window, fs: float = SAMPLE_RATE_HZ) -> dict[str, float] | None:
    """
    Morphology and timing features of a preprocessed window.

    Returns None when fewer than two plausible beats are present.
    """
    x = np.asarray(window, dtype=np.float64)
    peaks = find_peaks(x)
    valleys = find_valleys(x)
    if peaks.size < 2 or valleys.size < 1:
        return None

    intervals = np.diff(peaks)
    intervals = intervals[(intervals >= BP_MIN_BEAT_SAMPLES) & (intervals <= BP_MAX_BEAT_SAMPLES)]
    if intervals.size == 0:
        return None
    mean_interval = float(intervals.mean())

    dc = float(x.mean())
    peak_level = float(x[peaks].mean())
    valley_level = float(x[valleys].mean())
    if dc <= 0 or valley_level <= 0:
        return None

    notch_ratios = []
    for _, peak, valley_after in beats(x):
        notch = dicrotic_notch(x, peak, valley_after)
        height = x[peak] - x[valley_after]
        if notch is not None and height > 0:
            notch_ratios.append((x[notch] - x[valley_after]) / height)

    return {
        "heart_rate": 60.0 * fs / mean_interval,
        "amplitude": (peak_level - valley_level) / dc * 100.0,
        "pulse_transit_time": mean_interval / fs * 1000.0,
        "peak_valley_ratio": peak_level / valley_level,
        "waveform_width": pulse_width(x, peaks),
        # No detectable notch → neutral (reference) value
        "notch_ratio": float(np.mean(notch_ratios)) if notch_ratios else BP_COEFFICIENTS["notch_ratio"][0],
    }


class BloodPressureEstimator:
    """
    Stateful BP estimator with calibration offsets and delayed finalisation.

    Parameters
    ----------
    fs           : float   Sampling rate of the filtered window.
    coefficients : dict    Override for config.BP_COEFFICIENTS.
    """

    def __init__(self, fs: float = SAMPLE_RATE_HZ, coefficients: dict | None = None):
        self._fs = fs
        self._coefficients = dict(coefficients or BP_COEFFICIENTS)

        self._systolic_offset = 0.0
        self._diastolic_offset = 0.0
        self._calibrated = False

        self._measurements: deque[tuple[float, float]] = deque(maxlen=BP_MEASUREMENT_BUFFER)
        self._final_buffer: deque[tuple[float, float]] = deque(maxlen=BP_FINAL_BUFFER)
        self._final_started_ms: float | None = None
        self._final: BloodPressure | None = None
        self._last: BloodPressure | None = None

    # ── Public API ───────────────────────────────────────────────────────────

    def estimate(self, window) -> BloodPressure | None:
        """
        Live estimate from the recent filtered window.

        Returns None while the window is too short; the last accepted
        value while the signal is too weak or the candidate is rejected.
        """
        x = np.asarray(window, dtype=np.float64)[-BP_WINDOW:]
        if x.size < BP_MIN_SAMPLES:
            return None

        raw = self.uncalibrated_estimate(x)
        if raw is None:
            return self._last

        candidate = self._constrain(raw[0] + self._systolic_offset, raw[1] + self._diastolic_offset)
        if candidate is None:
            logger.warning("Discarded implausible BP candidate %.0f/%.0f", *raw)
            return self._last

        self._measurements.append(candidate)
        self._last = self._stabilised()
        if self._final_started_ms is not None:
            self._final_buffer.append((float(self._last.systolic), float(self._last.diastolic)))
        return self._last

    def uncalibrated_estimate(self, window) -> tuple[float, float] | None:
        """Regression output (systolic, diastolic) before offsets and clamps."""
        x = np.asarray(window, dtype=np.float64)
        if x.size < max(BP_MIN_SAMPLES, SG_WINDOW):
            return None

        quality = signal_quality(x, self._fs)
        perfusion = perfusion_index(x)
        if perfusion < BP_MIN_PERFUSION or quality < BP_MIN_QUALITY:
            logger.debug("BP skipped: quality=%.2f perfusion=%.4f", quality, perfusion)
            return None

        cleaned = savgol_filter(
            hampel_filter(x, BP_HAMPEL_WINDOW, BP_HAMPEL_SIGMAS),
            SG_WINDOW,
            SG_POLYORDER,
        )
        features = extract_bp_features(cleaned, self._fs)
        if features is None:
            return None

        systolic, diastolic = BP_BASE_SYSTOLIC, BP_BASE_DIASTOLIC
        for name, (reference, sys_coeff, dia_coeff) in self._coefficients.items():
            delta = features[name] - reference
            systolic += float(np.clip(delta * sys_coeff, -BP_TERM_LIMIT, BP_TERM_LIMIT))
            diastolic += float(np.clip(delta * dia_coeff, -BP_TERM_LIMIT, BP_TERM_LIMIT))

        # Weak signals regress toward the population baseline
        trust = min(1.0, quality / BP_FULL_TRUST_QUALITY)
        systolic = BP_BASE_SYSTOLIC + (systolic - BP_BASE_SYSTOLIC) * trust
        diastolic = BP_BASE_DIASTOLIC + (diastolic - BP_BASE_DIASTOLIC) * trust
        return systolic, diastolic

    def set_calibration(self, reference_systolic: float, reference_diastolic: float, window) -> tuple[float, float]:
        """
        Learn additive offsets from one reference reading.

        Parameters
        ----------
        reference_systolic, reference_diastolic : float   Cuff reading (mmHg).
        window : array-like   Filtered samples recorded with the reference.

        Returns
        -------
        (systolic_offset, diastolic_offset)

        Raises
        ------
        CalibrationDataInsufficient
            Window shorter than BP_MIN_CALIBRATION_SAMPLES or without a
            usable pulse.
        InvalidCalibrationReference
            Reference diastolic not below systolic.
        """
        if not 0 < reference_diastolic < reference_systolic:
            raise InvalidCalibrationReference(
                "blood_pressure",
                f"reference must satisfy 0 < diastolic < systolic, got {reference_systolic}/{reference_diastolic}",
            )
        x = np.asarray(window, dtype=np.float64)
        if x.size < BP_MIN_CALIBRATION_SAMPLES:
            raise CalibrationDataInsufficient(
                "blood_pressure",
                f"need at least {BP_MIN_CALIBRATION_SAMPLES} samples, got {x.size}",
            )
        raw = self.uncalibrated_estimate(x[-BP_WINDOW:])
        if raw is None:
            raise CalibrationDataInsufficient("blood_pressure", "no usable pulse in the reference window")

        self._systolic_offset = float(reference_systolic) - raw[0]
        self._diastolic_offset = float(reference_diastolic) - raw[1]
        self._calibrated = True
        # Pre-calibration values must not leak into the calibrated average
        self._measurements.clear()
        self._last = None
        logger.info(
            "BP calibrated: reference %s/%s vs raw %.1f/%.1f → offsets %+.1f/%+.1f",
            reference_systolic, reference_diastolic, raw[0], raw[1],
            self._systolic_offset, self._diastolic_offset,
        )
        return self._systolic_offset, self._diastolic_offset

    def start_final_measurement(self, now_ms: float) -> None:
        """Begin buffering live values for the delayed final reading."""
        self._final_started_ms = now_ms
        self._final_buffer.clear()
        self._final = None
        logger.info("BP final measurement started (completes in %d ms).", BP_COMPLETION_DELAY_MS)

    def poll_final_measurement(self, now_ms: float) -> BloodPressure | None:
        """
        The final reading once the completion delay has elapsed, else None.

        After completion the same value keeps being returned until the
        next `start_final_measurement()` or `reset()`.
        """
        if self._final_started_ms is None:
            return self._final
        if now_ms - self._final_started_ms < BP_COMPLETION_DELAY_MS:
            return None

        if self._final_buffer:
            systolic = np.array([s for s, _ in self._final_buffer])
            diastolic = np.array([d for _, d in self._final_buffer])
            mask = outlier_mask(systolic) & outlier_mask(diastolic)
            if not mask.any():
                mask[:] = True
            self._final = to_reading(
                weighted_average(systolic[mask], decay=BP_FINAL_WEIGHT_DECAY),
                weighted_average(diastolic[mask], decay=BP_FINAL_WEIGHT_DECAY),
            )
        else:
            self._final = self._last

        self._final_started_ms = None
        self._final_buffer.clear()
        logger.info("BP final measurement: %s", self._final if self._final else "--/--")
        return self._final

    @property
    def offsets(self) -> tuple[float, float]:
        return self._systolic_offset, self._diastolic_offset

    @property
    def is_calibrated(self) -> bool:
        return self._calibrated

    @property
    def final_value(self) -> BloodPressure | None:
        return self._final

    @property
    def last_value(self) -> BloodPressure | None:
        return self._last

    def reset(self, keep_calibration: bool = True) -> None:
        """Clear buffers; calibration offsets survive unless told otherwise."""
        self._measurements.clear()
        self._final_buffer.clear()
        self._final_started_ms = None
        self._final = None
        self._last = None
        if not keep_calibration:
            self._systolic_offset = 0.0
            self._diastolic_offset = 0.0
            self._calibrated = False

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _constrain(systolic: float, diastolic: float) -> tuple[float, float] | None:
        if not (np.isfinite(systolic) and np.isfinite(diastolic)):
            return None
        sys_low, sys_high = SYSTOLIC_RANGE
        dia_low, dia_high = DIASTOLIC_RANGE
        pp_low, pp_high = PULSE_PRESSURE_RANGE

        s = float(np.clip(systolic, sys_low, sys_high))
        d = float(np.clip(diastolic, dia_low, dia_high))
        d = float(np.clip(d, s - pp_high, s - pp_low))
        d = float(np.clip(d, dia_low, dia_high))
        if d >= s:
            return None
        return s, d

    def _stabilised(self) -> BloodPressure:
        systolic = np.array([s for s, _ in self._measurements])
        diastolic = np.array([d for _, d in self._measurements])
        mask = outlier_mask(systolic) & outlier_mask(diastolic)
        if not mask.any():
            mask[:] = True
        return to_reading(weighted_average(systolic[mask]), weighted_average(diastolic[mask]))
