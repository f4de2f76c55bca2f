"""
model/lipids.py — Cholesterol / triglyceride estimation (placeholder regression)
=================================================================================

⚠️⚠️⚠️  CRITICAL DISCLAIMER ⚠️⚠️⚠️
Blood lipids cannot be measured optically from a fingertip video.  The
projection below uses PLACEHOLDER coefficients, not validated ones.
Treat the output as an experimental wellness indicator only.
⚠️⚠️⚠️

────────────────────────────────────────────────────────────────────────
Model
────────────────────────────────────────────────────────────────────────
Nine features are extracted from the filtered window (see
config.LIPID_FEATURES):

    waveform_area     mean of the min-max normalised window
    systolic_slope    rise per sample, valley → peak (normalised units)
    diastolic_slope   fall per sample, peak → next valley
    peak_interval     mean inter-peak spacing in seconds
    inflection_area   area after / before the dicrotic notch within a beat
    very_low … high   relative spectral band powers

Each estimate is a magnitude-normalised projection of the feature
deviations onto a fixed coefficient vector:

    score = c · (f − f_ref) / ‖c‖
    value = base + scale · score          (× calibration factor)

Smoothing
---------
Signal quality doubles as confidence; below 0.7 the last value is kept.
An accepted value may move at most 15 mg/dL from the previous one, then
a 5-entry median and the physiological clamps are applied.
"""

from dataclasses import dataclass

import numpy as np

from config import (
    SAMPLE_RATE_HZ,
    LIPID_WINDOW,
    LIPID_MIN_SAMPLES,
    LIPID_MIN_CONFIDENCE,
    LIPID_MAX_CHANGE,
    LIPID_MEDIAN_BUFFER,
    LIPID_BANDS,
    LIPID_FEATURES,
    LIPID_FEATURE_REFERENCE,
    CHOLESTEROL_COEFFS,
    TRIGLYCERIDE_COEFFS,
    CHOLESTEROL_BASE,
    CHOLESTEROL_SCALE,
    TRIGLYCERIDE_BASE,
    TRIGLYCERIDE_SCALE,
    CHOLESTEROL_RANGE,
    TRIGLYCERIDE_RANGE,
    CALIBRATION_FACTOR_RANGE,
)
from errors import CalibrationDataInsufficient, InvalidCalibrationReference
from features.extraction import (
    band_power,
    beats,
    dicrotic_notch,
    find_peaks,
    signal_quality,
    spectrum,
)
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("model.lipids")


@dataclass(frozen=True)
class LipidProfile:
    cholesterol: int
    triglycerides: int
    confidence: float = 0.0


def extract_lipid_features(window, fs: float = SAMPLE_RATE_HZ) -> np.ndarray | None:
    """Feature vector ordered as config.LIPID_FEATURES, or None without two peaks."""
    x = np.asarray(window, dtype=np.float64)
    ac = float(np.ptp(x)) if x.size else 0.0
    if ac <= 0:
        return None
    peaks = find_peaks(x)
    if peaks.size < 2:
        return None
    xn = (x - x.min()) / ac

    rises, falls, area_ratios = [], [], []
    for before, peak, after in beats(xn):
        rises.append((xn[peak] - xn[before]) / (peak - before))
        falls.append((xn[peak] - xn[after]) / (after - peak))
        split = dicrotic_notch(xn, peak, after) or peak
        area_before = float(xn[before:split].sum())
        area_after = float(xn[split:after + 1].sum())
        if area_before > 0:
            area_ratios.append(area_after / area_before)
    if not rises:
        return None

    freqs, power = spectrum(x, fs)
    total = band_power(freqs, power, LIPID_BANDS["very_low"][0], LIPID_BANDS["high"][1])
    bands = [
        band_power(freqs, power, low, high) / total if total > 0 else 0.0
        for low, high in LIPID_BANDS.values()
    ]

    return np.array(
        [
            float(xn.mean()),
            float(np.mean(rises)),
            float(np.mean(falls)),
            float(np.mean(np.diff(peaks))) / fs,
            float(np.mean(area_ratios)) if area_ratios else 1.0,
            *bands,
        ],
        dtype=np.float64,
    )


class LipidEstimator:
    """
    Parameters
    ----------
    fs                    : float   Sampling rate of the filtered window.
    cholesterol_coeffs    : tuple   Override for config.CHOLESTEROL_COEFFS.
    triglyceride_coeffs   : tuple   Override for config.TRIGLYCERIDE_COEFFS.
    feature_reference     : tuple   Override for config.LIPID_FEATURE_REFERENCE.
    """

    def __init__(
        self,
        fs: float = SAMPLE_RATE_HZ,
        cholesterol_coeffs=CHOLESTEROL_COEFFS,
        triglyceride_coeffs=TRIGLYCERIDE_COEFFS,
        feature_reference=LIPID_FEATURE_REFERENCE,
    ):
        self._fs = fs
        self._chol_coeffs = np.asarray(cholesterol_coeffs, dtype=np.float64)
        self._trig_coeffs = np.asarray(triglyceride_coeffs, dtype=np.float64)
        self._reference = np.asarray(feature_reference, dtype=np.float64)
        n = len(LIPID_FEATURES)
        if not (self._chol_coeffs.size == self._trig_coeffs.size == self._reference.size == n):
            raise ValueError(f"Lipid coefficient tables must have {n} entries.")

        self._chol_factor = 1.0
        self._trig_factor = 1.0
        self._chol_values = SlidingWindow(LIPID_MEDIAN_BUFFER)
        self._trig_values = SlidingWindow(LIPID_MEDIAN_BUFFER)
        self._last: LipidProfile | None = None
        self._last_raw: tuple[float, float] | None = None

    # ── Public API ───────────────────────────────────────────────────────────

    def estimate(self, window) -> LipidProfile | None:
        x = np.asarray(window, dtype=np.float64)[-LIPID_WINDOW:]
        if x.size < LIPID_MIN_SAMPLES:
            return self._last

        raw = self.uncalibrated_estimate(x)
        if raw is None:
            return self._last
        self._last_raw = raw

        confidence = signal_quality(x, self._fs)
        if confidence < LIPID_MIN_CONFIDENCE:
            logger.debug("Lipids skipped: confidence %.2f", confidence)
            return self._last

        chol = self._smooth(raw[0] * self._chol_factor, self._chol_values, CHOLESTEROL_RANGE)
        trig = self._smooth(raw[1] * self._trig_factor, self._trig_values, TRIGLYCERIDE_RANGE)
        self._last = LipidProfile(cholesterol=chol, triglycerides=trig, confidence=round(confidence, 3))
        return self._last

    def uncalibrated_estimate(self, window) -> tuple[float, float] | None:
        """(cholesterol, triglycerides) in mg/dL before calibration and smoothing."""
        features = extract_lipid_features(window, self._fs)
        if features is None:
            return None
        deviation = features - self._reference
        chol_score = float(np.dot(self._chol_coeffs, deviation)) / float(np.linalg.norm(self._chol_coeffs))
        trig_score = float(np.dot(self._trig_coeffs, deviation)) / float(np.linalg.norm(self._trig_coeffs))
        return (
            CHOLESTEROL_BASE + CHOLESTEROL_SCALE * chol_score,
            TRIGLYCERIDE_BASE + TRIGLYCERIDE_SCALE * trig_score,
        )

    def set_calibration(self, reference_cholesterol: float, reference_triglycerides: float, window=None) -> tuple[float, float]:
        """
        Learn per-user factors ``reference / uncalibrated``, clamped to [0.5, 2.0].

        The uncalibrated values come from `window` when given, else from the
        most recent estimate.

        Raises
        ------
        CalibrationDataInsufficient   No uncalibrated value is available yet.
        InvalidCalibrationReference   Non-positive reference.
        """
        if reference_cholesterol <= 0 or reference_triglycerides <= 0:
            raise InvalidCalibrationReference("lipids", "reference values must be positive")
        raw = self._last_raw
        if window is not None:
            x = np.asarray(window, dtype=np.float64)[-LIPID_WINDOW:]
            if x.size >= LIPID_MIN_SAMPLES:
                raw = self.uncalibrated_estimate(x) or raw
        if raw is None or raw[0] <= 0 or raw[1] <= 0:
            raise CalibrationDataInsufficient("lipids", "no lipid estimate available yet")

        low, high = CALIBRATION_FACTOR_RANGE
        self._chol_factor = float(np.clip(reference_cholesterol / raw[0], low, high))
        self._trig_factor = float(np.clip(reference_triglycerides / raw[1], low, high))
        self._chol_values.clear()
        self._trig_values.clear()
        self._last = None
        logger.info(
            "Lipids calibrated: factors cholesterol=%.3f triglycerides=%.3f",
            self._chol_factor, self._trig_factor,
        )
        return self._chol_factor, self._trig_factor

    @property
    def calibration_factors(self) -> tuple[float, float]:
        return self._chol_factor, self._trig_factor

    @property
    def last_value(self) -> LipidProfile | None:
        return self._last

    def reset(self, keep_calibration: bool = True) -> None:
        self._chol_values.clear()
        self._trig_values.clear()
        self._last = None
        self._last_raw = None
        if not keep_calibration:
            self._chol_factor = 1.0
            self._trig_factor = 1.0

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _smooth(value: float, history: SlidingWindow, bounds: tuple[int, int]) -> int:
        low, high = bounds
        previous = history.last
        if previous is not None:
            value = previous + float(np.clip(value - previous, -LIPID_MAX_CHANGE, LIPID_MAX_CHANGE))
        history.push(float(np.clip(value, low, high)))
        return int(round(float(np.clip(history.median(), low, high))))
