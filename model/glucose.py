"""
model/glucose.py — Glucose estimation (NIR / Beer-Lambert placeholder model)
=============================================================================

⚠️⚠️⚠️  CRITICAL DISCLAIMER ⚠️⚠️⚠️
A consumer camera cannot measure blood glucose.  This module turns
generic PPG amplitude features into a number on the mg/dL scale using a
Beer-Lambert style model with PLACEHOLDER coefficients.  Without a
per-user calibration against a real glucometer the output is
meaningless; even with one it is a wellness trend indicator at best.
⚠️⚠️⚠️

────────────────────────────────────────────────────────────────────────
Model
────────────────────────────────────────────────────────────────────────
A five-wavelength NIR absorbance set is synthesised from the window's
perfusion index (PI = AC/DC) and pulsatility (std/mean):

    s_λ   = (λ / 940 nm)^−1.2                 wavelength scattering scale
    ΔA_λ  = log10(1 + PI · s_λ)              pulsatile absorbance
    ΔL    = 0.3 cm · (1 + pulsatility)       effective pulsatile path
    c_λ   = ΔA_λ / (ε_λ · ΔL)                Beer-Lambert, mmol/L

The per-wavelength concentrations are weight-averaged, converted to
mg/dL (× 18.016) and multiplied by the calibration factor.

Gating
------
The estimate is only refreshed when the running mean of the last 10
signal-quality scores is ≥ 0.55 and PI ≥ 0.045; otherwise the last
accepted value is kept.  Accepted values are clamped to [70, 400] mg/dL
and smoothed by a 5-entry median.

Calibration
-----------
``factor = reference / uncalibrated``, clamped to [0.5, 2.0].  The
reference window must hold at least 180 filtered samples.
"""

import numpy as np

from config import (
    SAMPLE_RATE_HZ,
    GLUCOSE_WINDOW,
    GLUCOSE_MIN_CALIBRATION_SAMPLES,
    GLUCOSE_MIN_PERFUSION,
    GLUCOSE_MIN_QUALITY,
    GLUCOSE_QUALITY_HISTORY,
    GLUCOSE_MEDIAN_BUFFER,
    GLUCOSE_WAVELENGTHS_NM,
    GLUCOSE_EXTINCTION_COEFFS,
    GLUCOSE_WAVELENGTH_WEIGHTS,
    GLUCOSE_REFERENCE_WAVELENGTH_NM,
    GLUCOSE_SCATTERING_EXPONENT,
    GLUCOSE_PULSATILE_PATH_CM,
    GLUCOSE_MG_PER_MMOL,
    GLUCOSE_RANGE,
    CALIBRATION_FACTOR_RANGE,
)
from errors import CalibrationDataInsufficient, InvalidCalibrationReference
from features.extraction import dc_component, perfusion_index, signal_quality
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("model.glucose")


class GlucoseEstimator:
    """
    Parameters
    ----------
    fs                   : float   Sampling rate of the filtered window.
    wavelengths_nm       : tuple   Override for config.GLUCOSE_WAVELENGTHS_NM.
    extinction_coeffs    : tuple   Override for config.GLUCOSE_EXTINCTION_COEFFS.
    wavelength_weights   : tuple   Override for config.GLUCOSE_WAVELENGTH_WEIGHTS.
    """

    def __init__(
        self,
        fs: float = SAMPLE_RATE_HZ,
        wavelengths_nm=GLUCOSE_WAVELENGTHS_NM,
        extinction_coeffs=GLUCOSE_EXTINCTION_COEFFS,
        wavelength_weights=GLUCOSE_WAVELENGTH_WEIGHTS,
    ):
        self._fs = fs
        self._wavelengths = np.asarray(wavelengths_nm, dtype=np.float64)
        self._extinction = np.asarray(extinction_coeffs, dtype=np.float64)
        weights = np.asarray(wavelength_weights, dtype=np.float64)
        if not (self._wavelengths.size == self._extinction.size == weights.size):
            raise ValueError("Wavelength, extinction and weight tables must have the same length.")
        self._weights = weights / weights.sum()

        self._factor = 1.0
        self._quality = SlidingWindow(GLUCOSE_QUALITY_HISTORY)
        self._values = SlidingWindow(GLUCOSE_MEDIAN_BUFFER)
        self._last: int | None = None
        self.last_analysis: dict = {}

    # ── Public API ───────────────────────────────────────────────────────────

    def estimate(self, window) -> int | None:
        """
        Returns
        -------
        int | None
            Glucose in mg/dL, or the last accepted value (None before the
            first one) while the window is short or the signal is weak.
        """
        x = np.asarray(window, dtype=np.float64)[-GLUCOSE_WINDOW:]
        if x.size < GLUCOSE_WINDOW:
            return self._last

        self._quality.push(signal_quality(x, self._fs))
        mean_quality = self._quality.mean()
        pi = perfusion_index(x)
        if mean_quality < GLUCOSE_MIN_QUALITY or pi < GLUCOSE_MIN_PERFUSION:
            logger.debug("Glucose skipped: quality=%.2f perfusion=%.4f", mean_quality, pi)
            return self._last

        raw = self.uncalibrated_estimate(x)
        if raw is None:
            return self._last

        low, high = GLUCOSE_RANGE
        self._values.push(float(np.clip(raw * self._factor, low, high)))
        self._last = int(round(self._values.median()))
        return self._last

    def uncalibrated_estimate(self, window) -> float | None:
        """Weighted Beer-Lambert concentration in mg/dL, before calibration."""
        x = np.asarray(window, dtype=np.float64)
        dc = dc_component(x)
        pi = perfusion_index(x)
        if dc <= 0 or pi <= 0:
            return None

        pulsatility = float(np.std(x)) / dc
        scattering = (self._wavelengths / GLUCOSE_REFERENCE_WAVELENGTH_NM) ** -GLUCOSE_SCATTERING_EXPONENT
        absorbance = np.log10(1.0 + pi * scattering)
        path_cm = GLUCOSE_PULSATILE_PATH_CM * (1.0 + pulsatility)
        concentrations = absorbance / (self._extinction * path_cm)

        mg_dl = float(np.dot(self._weights, concentrations)) * GLUCOSE_MG_PER_MMOL
        self.last_analysis = {
            "perfusion_index": pi,
            "pulsatility": pulsatility,
            "path_cm": path_cm,
            "absorbance": absorbance.tolist(),
            "concentration_mmol": concentrations.tolist(),
            "uncalibrated_mgdl": mg_dl,
        }
        return mg_dl if np.isfinite(mg_dl) else None

    def set_calibration(self, reference_mgdl: float, window) -> float:
        """
        Learn the multiplicative calibration factor.

        Raises
        ------
        CalibrationDataInsufficient
            Fewer than GLUCOSE_MIN_CALIBRATION_SAMPLES samples, or no
            pulsatile component in the window.
        InvalidCalibrationReference
            Non-positive reference.
        """
        if reference_mgdl <= 0:
            raise InvalidCalibrationReference("glucose", f"reference must be positive, got {reference_mgdl}")
        x = np.asarray(window, dtype=np.float64)
        if x.size < GLUCOSE_MIN_CALIBRATION_SAMPLES:
            raise CalibrationDataInsufficient(
                "glucose",
                f"need at least {GLUCOSE_MIN_CALIBRATION_SAMPLES} samples, got {x.size}",
            )
        raw = self.uncalibrated_estimate(x[-GLUCOSE_WINDOW:])
        if raw is None or raw <= 0:
            raise CalibrationDataInsufficient("glucose", "no pulsatile component in the reference window")

        low, high = CALIBRATION_FACTOR_RANGE
        self._factor = float(np.clip(reference_mgdl / raw, low, high))
        self._values.clear()
        self._last = None
        logger.info(
            "Glucose calibrated: reference %.0f vs raw %.1f mg/dL → factor %.3f",
            reference_mgdl, raw, self._factor,
        )
        return self._factor

    @property
    def calibration_factor(self) -> float:
        return self._factor

    @property
    def last_value(self) -> int | None:
        return self._last

    def reset(self, keep_calibration: bool = True) -> None:
        self._quality.clear()
        self._values.clear()
        self._last = None
        self.last_analysis = {}
        if not keep_calibration:
            self._factor = 1.0
