"""
errors.py — Caller-visible error types
=======================================
The engine degrades every signal problem (short windows, weak perfusion,
implausible values) to a placeholder and keeps running.  The only
failure a caller ever sees is a calibration request that cannot be
honoured, because silently ignoring a reference reading would leave the
user believing the device is calibrated.

Both calibration errors derive from `CalibrationError` (a `ValueError`),
which the API maps to HTTP 422.
"""


class CalibrationError(ValueError):
    """A calibration request was refused; `metric` names the estimator."""

    def __init__(self, metric: str, reason: str):
        self.metric = metric
        self.reason = reason
        super().__init__(f"{metric} calibration rejected: {reason}")


class CalibrationDataInsufficient(CalibrationError):
    """Raised when a calibration call supplies too few or unusable reference samples."""


class InvalidCalibrationReference(CalibrationError):
    """Raised when the reference reading itself is impossible (non-positive, diastolic ≥ systolic)."""
