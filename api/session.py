"""
api/session.py — Monitoring Session Manager
=============================================
Owns one `VitalsEngine` and serialises every call into it.  The engine
itself is not reentrant, while FastAPI may run request handlers
concurrently, so each public method holds `_lock` for the full
duration of the engine call.

Lifecycle
---------
    1. Optional: `start_calibration()` and stream samples until the
       calibration block reports state "active".
    2. `process_samples(...)` for every batch of captured samples.
    3. Optional: reference calibrations for BP / glucose / lipids.
    4. `finish_measurement()` then poll `summary()` for the final BP.
    5. `reset()` (soft) or `full_reset()` before the next user.
"""

import threading

from engine.processor import VitalsEngine
from utils.logger import get_logger
from api.schemas import SampleIn

logger = get_logger("api.session")

# ── Disclaimer string injected into every summary ────────────────────────────
DISCLAIMER = (
    "⚠️ This is a WELLNESS ESTIMATION tool — NOT a medical device. "
    "Heart rate, SpO2, blood pressure, glucose, lipid and hemoglobin values are ESTIMATES "
    "derived from photoplethysmography with placeholder calibration models. "
    "They have NOT been validated for clinical use. "
    "Do NOT make medical decisions based on these readings. "
    "Consult a qualified healthcare professional for diagnosis or treatment."
)


class MonitorSession:
    """
    Thread-safe wrapper around a single `VitalsEngine`.

    Instantiate once at application startup and reuse across requests.
    """

    def __init__(self, engine: VitalsEngine | None = None):
        self._lock = threading.Lock()
        self._engine = engine or VitalsEngine()
        logger.info("MonitorSession initialised.")

    # ── Streaming ──────────────────────────────────────────────────────────

    def process_samples(self, samples: list[SampleIn]) -> tuple[int, int, dict]:
        """
        Feed samples in order.

        Returns
        -------
        (processed, peaks, latest_reading_dict)
        """
        peaks = 0
        with self._lock:
            for sample in samples:
                reading = self._engine.process(sample.value, sample.timestamp_ms)
                peaks += int(reading.is_peak)
        return len(samples), peaks, reading.to_dict()

    # ── Calibration ────────────────────────────────────────────────────────

    def start_calibration(self, now_ms: float | None = None) -> dict:
        with self._lock:
            self._engine.start_calibration(now_ms)
            return self._engine.calibration.to_dict()

    def complete_calibration(self) -> dict:
        with self._lock:
            self._engine.force_calibration_completion()
            return self._engine.calibration.to_dict()

    def calibration(self) -> dict:
        with self._lock:
            return self._engine.calibration.to_dict()

    def calibrate_blood_pressure(self, systolic: float, diastolic: float, samples: list[float]) -> tuple[float, float]:
        with self._lock:
            return self._engine.set_blood_pressure_calibration(systolic, diastolic, samples)

    def calibrate_glucose(self, reference_mgdl: float, samples: list[float]) -> float:
        with self._lock:
            return self._engine.set_glucose_calibration(reference_mgdl, samples)

    def calibrate_lipids(self, cholesterol: float, triglycerides: float) -> tuple[float, float]:
        with self._lock:
            return self._engine.set_lipid_calibration(cholesterol, triglycerides)

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def finish_measurement(self, now_ms: float | None = None) -> None:
        with self._lock:
            self._engine.finish_measurement(now_ms)

    def summary(self) -> dict:
        with self._lock:
            result = self._engine.summary()
        result["disclaimer"] = DISCLAIMER
        return result

    def reset(self) -> dict | None:
        """Soft reset; returns the retained last valid reading, if any."""
        with self._lock:
            retained = self._engine.reset()
        return retained.to_dict() if retained else None

    def full_reset(self) -> None:
        with self._lock:
            self._engine.full_reset()
        logger.info("Session fully reset.")
