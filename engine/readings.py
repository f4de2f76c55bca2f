"""
engine/readings.py — Engine output types
=========================================
Internally an unknown value is ``None``.  The "0 / --/--" placeholders
that UIs expect only appear in `VitalsReading.to_dict()`, so nothing
inside the engine ever does arithmetic on a sentinel.
"""

from dataclasses import dataclass, field

from engine.calibration import CalibrationProgress
from model.blood_pressure import BloodPressure
from model.lipids import LipidProfile

BP_PLACEHOLDER = "--/--"


@dataclass
class VitalsReading:
    """One assembled output of `VitalsEngine.process()`."""
    timestamp_ms: float
    heart_rate: float | None = None
    spo2: int | None = None
    blood_pressure: BloodPressure | None = None
    arrhythmia_status: str = ""
    glucose: int | None = None
    lipids: LipidProfile | None = None
    hemoglobin: float | None = None
    signal_quality: float = 0.0
    is_peak: bool = False
    calibration: CalibrationProgress | None = None
    hrv: dict = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        """Heart rate, SpO2 and blood pressure are all known."""
        return (
            self.heart_rate is not None
            and self.heart_rate > 0
            and self.spo2 is not None
            and self.blood_pressure is not None
        )

    def to_dict(self) -> dict:
        """Boundary representation with 0 / "--/--" for unknown values."""
        return {
            "timestamp_ms": self.timestamp_ms,
            "heart_rate": int(round(self.heart_rate)) if self.heart_rate else 0,
            "spo2": self.spo2 or 0,
            "blood_pressure": str(self.blood_pressure) if self.blood_pressure else BP_PLACEHOLDER,
            "arrhythmia_status": self.arrhythmia_status,
            "glucose": self.glucose or 0,
            "lipids": {
                "cholesterol": self.lipids.cholesterol if self.lipids else 0,
                "triglycerides": self.lipids.triglycerides if self.lipids else 0,
            },
            "hemoglobin": self.hemoglobin or 0,
            "signal_quality": round(self.signal_quality, 3),
            "is_peak": self.is_peak,
            "calibration": self.calibration.to_dict() if self.calibration else None,
        }
