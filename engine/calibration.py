"""
engine/calibration.py — Calibration session state machine
==========================================================
    Idle ──start()──▶ Calibrating ──(samples | timeout | complete())──▶ Active

While calibrating, every processed sample advances a per-metric progress
value:

    progress[m] = round(100 · min(time_fraction, sample_fraction) · weight[m])

Calibration ends when CALIBRATION_REQUIRED_SAMPLES samples were seen or
CALIBRATION_DURATION_MS elapsed (sample timestamps, not the wall clock),
or when `complete()` forces it.  Completion sets every metric to 100 %.
"""

from dataclasses import dataclass, field
from enum import Enum

from config import (
    CALIBRATION_REQUIRED_SAMPLES,
    CALIBRATION_DURATION_MS,
    CALIBRATION_WEIGHTS,
)
from utils.logger import get_logger

logger = get_logger("engine.calibration")


class CalibrationState(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    ACTIVE = "active"


@dataclass
class CalibrationProgress:
    """Snapshot of the calibration session, safe to hand to callers."""
    state: CalibrationState
    overall: int                                     # 0–100
    metrics: dict[str, int] = field(default_factory=dict)
    samples: int = 0
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "overall": self.overall,
            "metrics": dict(self.metrics),
            "samples": self.samples,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class CalibrationSession:
    """
    Parameters
    ----------
    required_samples : int     Samples that complete the session.
    duration_ms      : float   Elapsed time that completes the session.
    """

    def __init__(
        self,
        required_samples: int = CALIBRATION_REQUIRED_SAMPLES,
        duration_ms: float = CALIBRATION_DURATION_MS,
    ):
        self._required_samples = required_samples
        self._duration_ms = duration_ms
        self.reset()

    def start(self, now_ms: float | None = None) -> None:
        """Begin (or restart) calibration; without `now_ms` the next sample anchors the timer."""
        self.state = CalibrationState.CALIBRATING
        self._started_ms = now_ms
        self._last_ms = now_ms
        self._samples = 0
        self._progress = {metric: 0 for metric in CALIBRATION_WEIGHTS}
        logger.info("Calibration started (%d samples or %d ms).", self._required_samples, self._duration_ms)

    def on_sample(self, timestamp_ms: float) -> bool:
        """
        Account for one processed sample.

        Returns
        -------
        bool   True on the sample that completes calibration.
        """
        if self.state is not CalibrationState.CALIBRATING:
            return False
        if self._started_ms is None:
            self._started_ms = timestamp_ms
        self._last_ms = timestamp_ms
        self._samples += 1

        elapsed = timestamp_ms - self._started_ms
        if self._samples >= self._required_samples or elapsed >= self._duration_ms:
            self.complete()
            return True

        fraction = min(elapsed / self._duration_ms, self._samples / self._required_samples)
        fraction = min(1.0, max(0.0, fraction))
        self._progress = {
            metric: int(round(100 * fraction * weight))
            for metric, weight in CALIBRATION_WEIGHTS.items()
        }
        return False

    def complete(self) -> None:
        """Jump every metric to 100 % and switch to Active."""
        self._progress = {metric: 100 for metric in CALIBRATION_WEIGHTS}
        if self.state is not CalibrationState.ACTIVE:
            logger.info("Calibration completed after %d samples.", self._samples)
        self.state = CalibrationState.ACTIVE

    def cancel(self) -> None:
        """Stop an in-progress calibration; an Active session is left alone."""
        if self.state is CalibrationState.CALIBRATING:
            logger.info("Calibration cancelled at %d%%.", self.overall)
            self.reset()

    def reset(self) -> None:
        self.state = CalibrationState.IDLE
        self._started_ms: float | None = None
        self._last_ms: float | None = None
        self._samples = 0
        self._progress = {metric: 0 for metric in CALIBRATION_WEIGHTS}

    @property
    def is_calibrating(self) -> bool:
        return self.state is CalibrationState.CALIBRATING

    @property
    def overall(self) -> int:
        if not self._progress:
            return 0
        return int(round(sum(self._progress.values()) / len(self._progress)))

    def snapshot(self) -> CalibrationProgress:
        elapsed = 0.0
        if self._started_ms is not None and self._last_ms is not None:
            elapsed = self._last_ms - self._started_ms
        return CalibrationProgress(
            state=self.state,
            overall=self.overall,
            metrics=dict(self._progress),
            samples=self._samples,
            elapsed_ms=elapsed,
        )
