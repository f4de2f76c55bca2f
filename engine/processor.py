"""
engine/processor.py — Vital-signs orchestration
================================================
`VitalsEngine` is the single object a caller owns.  One `process()` call
per captured sample runs the whole pipeline synchronously:

    raw ──▶ FilterChain ──▶ 300-sample window
                 │                 │
                 ▼                 ├──▶ SpO2Estimator
        HeartRateEstimator         ├──▶ BloodPressureEstimator
                 │                 ├──▶ GlucoseEstimator
          RR interval              ├──▶ LipidEstimator
                 │                 └──▶ HemoglobinEstimator
                 ▼
        ArrhythmiaAnalyzer
                 │
                 ▼
           VitalsReading

During calibration the full pipeline keeps running (so baselines and
buffers fill up) but the reading carries only the progress status and
no numeric values.

The engine is not thread-safe; callers that receive frames concurrently
must serialise `process()` calls (the API layer holds a lock).

⚠️  Wellness indicator only, NOT a medical device.
"""

import time

import numpy as np

from config import SAMPLE_RATE_HZ, SIGNAL_WINDOW_SIZE
from engine.calibration import CalibrationSession, CalibrationProgress
from engine.readings import VitalsReading
from features.extraction import signal_quality
from features.hr import HeartRateEstimator
from features.hrv import ArrhythmiaAnalyzer, STATUS_CALIBRATING, compute_hrv
from model.blood_pressure import BloodPressure, BloodPressureEstimator
from model.glucose import GlucoseEstimator
from model.hemoglobin import HemoglobinEstimator
from model.lipids import LipidEstimator
from model.spo2 import SpO2Estimator
from ppg.filters import FilterChain
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("engine.processor")


class VitalsEngine:
    """
    Parameters
    ----------
    fs : float   Nominal sampling rate of the incoming stream.
    """

    def __init__(self, fs: float = SAMPLE_RATE_HZ):
        self._fs = fs
        self._filters = FilterChain()
        self._window = SlidingWindow(SIGNAL_WINDOW_SIZE)

        self._hr = HeartRateEstimator(fs)
        self._arrhythmia = ArrhythmiaAnalyzer()
        self._spo2 = SpO2Estimator()
        self._bp = BloodPressureEstimator(fs)
        self._glucose = GlucoseEstimator(fs)
        self._lipids = LipidEstimator(fs)
        self._hemoglobin = HemoglobinEstimator()
        self._calibration = CalibrationSession()

        self._last_timestamp_ms: float | None = None
        self._last_valid: VitalsReading | None = None

    # ── Streaming ────────────────────────────────────────────────────────────

    def process(self, raw_value: float, timestamp_ms: float | None = None) -> VitalsReading:
        """
        Feed one raw PPG sample.

        Parameters
        ----------
        raw_value    : float          Mean brightness of the captured frame.
        timestamp_ms : float | None   Capture time; the wall clock when omitted.
        """
        t = float(timestamp_ms) if timestamp_ms is not None else time.time() * 1000.0
        self._last_timestamp_ms = t

        filtered = self._filters.filter(raw_value)
        self._window.push(filtered)
        window = self._window.as_array()

        beat = self._hr.process(filtered, t, signal_lost=self._filters.signal_lost)
        if beat.rr_interval_ms is not None:
            rhythm = self._arrhythmia.process_rr(beat.rr_interval_ms, t)
        else:
            rhythm = self._arrhythmia.status(t)

        spo2 = self._spo2.estimate(window)
        bp = self._bp.estimate(window)
        glucose = self._glucose.estimate(window)
        lipids = self._lipids.estimate(window)
        hemoglobin = self._hemoglobin.estimate(window)
        self._bp.poll_final_measurement(t)
        quality = signal_quality(window, self._fs)

        was_calibrating = self._calibration.is_calibrating
        self._calibration.on_sample(t)
        progress = self._calibration.snapshot()

        if was_calibrating:
            # The completing sample still reports no numbers
            return VitalsReading(
                timestamp_ms=t,
                arrhythmia_status=f"{STATUS_CALIBRATING}|{progress.overall}",
                signal_quality=quality,
                is_peak=beat.is_peak,
                calibration=progress,
            )

        reading = VitalsReading(
            timestamp_ms=t,
            heart_rate=beat.bpm if beat.bpm > 0 else None,
            spo2=spo2,
            blood_pressure=bp,
            arrhythmia_status=rhythm.status,
            glucose=glucose,
            lipids=lipids,
            hemoglobin=hemoglobin,
            signal_quality=quality,
            is_peak=beat.is_peak,
            calibration=progress,
            hrv=rhythm.metrics,
        )
        if reading.is_complete:
            self._last_valid = reading
        return reading

    # ── Calibration ──────────────────────────────────────────────────────────

    def start_calibration(self, now_ms: float | None = None) -> None:
        """Reset per-metric progress; without `now_ms` the next sample starts the timer."""
        self._calibration.start(now_ms)

    def force_calibration_completion(self) -> None:
        self._calibration.complete()

    @property
    def calibration(self) -> CalibrationProgress:
        return self._calibration.snapshot()

    def set_blood_pressure_calibration(self, reference_systolic: float, reference_diastolic: float, sample_window) -> tuple[float, float]:
        """
        Calibrate BP against a cuff reading.

        `sample_window` holds the RAW samples recorded with the reference;
        they run through a fresh filter chain so the live stream is untouched.
        """
        filtered = FilterChain().filter_many(np.asarray(sample_window, dtype=np.float64))
        return self._bp.set_calibration(reference_systolic, reference_diastolic, filtered)

    def set_glucose_calibration(self, reference_mgdl: float, sample_window) -> float:
        """Calibrate glucose against a glucometer reading (raw `sample_window`)."""
        filtered = FilterChain().filter_many(np.asarray(sample_window, dtype=np.float64))
        return self._glucose.set_calibration(reference_mgdl, filtered)

    def set_lipid_calibration(self, reference_cholesterol: float, reference_triglycerides: float) -> tuple[float, float]:
        """Calibrate lipids against lab values, using the current live window."""
        return self._lipids.set_calibration(
            reference_cholesterol, reference_triglycerides, window=self._window.as_array()
        )

    # ── Measurement lifecycle ────────────────────────────────────────────────

    def finish_measurement(self, now_ms: float | None = None) -> None:
        """Start the delayed BP finalisation; poll `get_final_blood_pressure()`."""
        if now_ms is None:
            now_ms = self._last_timestamp_ms if self._last_timestamp_ms is not None else time.time() * 1000.0
        self._bp.start_final_measurement(now_ms)

    def get_final_blood_pressure(self) -> BloodPressure | None:
        return self._bp.final_value

    def get_final_bpm(self) -> int:
        """Trimmed-mean BPM of the session; 0 when too few beats were seen."""
        bpm = self._hr.get_final_bpm()
        return int(round(bpm)) if bpm is not None else 0

    def get_rr_intervals(self) -> list[float]:
        return self._hr.rr_intervals

    @property
    def last_valid_reading(self) -> VitalsReading | None:
        return self._last_valid

    def summary(self) -> dict:
        """Session summary for reports and the API."""
        rr = self.get_rr_intervals()
        final_bp = self.get_final_blood_pressure()
        return {
            "final_bpm": self.get_final_bpm(),
            "rr_intervals_ms": rr,
            "hrv": compute_hrv(rr),
            "arrhythmia_count": self._arrhythmia.count,
            "final_blood_pressure": str(final_bp) if final_bp else None,
            "last_valid_reading": self._last_valid.to_dict() if self._last_valid else None,
            "calibration": self._calibration.snapshot().to_dict(),
        }

    def reset(self) -> VitalsReading | None:
        """
        Soft reset: stop and clear every estimator, keep calibration
        factors and return the retained last fully-valid reading.
        """
        self._filters.reset()
        self._window.clear()
        self._hr.reset()
        self._arrhythmia.reset()
        self._spo2.reset()
        self._bp.reset(keep_calibration=True)
        self._glucose.reset(keep_calibration=True)
        self._lipids.reset(keep_calibration=True)
        self._hemoglobin.reset()
        self._calibration.cancel()
        self._last_timestamp_ms = None
        logger.info("Engine reset (last valid reading retained).")
        return self._last_valid

    def full_reset(self) -> None:
        """Hard reset: also forget calibrations and the retained reading."""
        self.reset()
        self._bp.reset(keep_calibration=False)
        self._glucose.reset(keep_calibration=False)
        self._lipids.reset(keep_calibration=False)
        self._calibration.reset()
        self._last_valid = None
        logger.info("Engine fully reset.")
