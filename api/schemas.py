"""
api/schemas.py — Pydantic request & response models
=====================================================
Centralises all data-transfer objects so that FastAPI can auto-generate
OpenAPI docs and perform input validation for free.

Only shape validation happens here.  Whether a calibration window is
long enough is the engine's decision (it answers with 422 as well).
"""

from pydantic import BaseModel, Field
from typing import Optional


# ── Request Models ───────────────────────────────────────────────────────────


class SampleIn(BaseModel):
    """One raw PPG sample (mean frame brightness)."""
    value: float = Field(..., description="Raw PPG value.")
    timestamp_ms: Optional[float] = Field(
        None, ge=0, description="Capture time in ms; server clock when omitted."
    )


class SampleBatch(BaseModel):
    """Samples in arrival order.  They are processed one by one."""
    samples: list[SampleIn] = Field(..., min_length=1, max_length=3000)


class CalibrationStartRequest(BaseModel):
    now_ms: Optional[float] = Field(
        None, ge=0, description="Calibration start time; the next sample when omitted."
    )


class BloodPressureCalibrationRequest(BaseModel):
    """Cuff reading plus the raw samples recorded at the same time."""
    systolic: float = Field(..., gt=50, lt=260, description="Reference systolic (mmHg).")
    diastolic: float = Field(..., gt=30, lt=160, description="Reference diastolic (mmHg).")
    samples: list[float] = Field(..., description="Raw PPG samples (≥ 90).")


class GlucoseCalibrationRequest(BaseModel):
    reference_mgdl: float = Field(..., gt=20, lt=700, description="Glucometer reading (mg/dL).")
    samples: list[float] = Field(..., description="Raw PPG samples (≥ 180).")


class LipidCalibrationRequest(BaseModel):
    cholesterol: float = Field(..., gt=0, lt=600, description="Total cholesterol (mg/dL).")
    triglycerides: float = Field(..., gt=0, lt=2000, description="Triglycerides (mg/dL).")


class MeasurementFinishRequest(BaseModel):
    now_ms: Optional[float] = Field(None, ge=0)


# ── Response Models ──────────────────────────────────────────────────────────


class LipidData(BaseModel):
    cholesterol: int
    triglycerides: int


class CalibrationData(BaseModel):
    state: str                           # "idle" | "calibrating" | "active"
    overall: int
    metrics: dict[str, int]
    samples: int
    elapsed_ms: float


class VitalsReadingResponse(BaseModel):
    """One engine reading; unknown values are 0 or "--/--"."""
    timestamp_ms: float
    heart_rate: int
    spo2: int
    blood_pressure: str
    arrhythmia_status: str
    glucose: int
    lipids: LipidData
    hemoglobin: float = 0.0               # g/dL
    signal_quality: float
    is_peak: bool
    calibration: Optional[CalibrationData] = None


class SamplesResponse(BaseModel):
    processed: int
    peaks: int
    latest: VitalsReadingResponse


class HRVData(BaseModel):
    sdnn_ms: Optional[float] = None
    rmssd_ms: Optional[float] = None
    pnn50: Optional[float] = None
    mean_rr_ms: Optional[float] = None
    shannon_entropy: Optional[float] = None
    sample_entropy: Optional[float] = None
    num_beats: int
    valid: bool


class SummaryResponse(BaseModel):
    disclaimer: str
    final_bpm: int
    rr_intervals_ms: list[float]
    hrv: HRVData
    arrhythmia_count: int
    final_blood_pressure: Optional[str] = None
    last_valid_reading: Optional[VitalsReadingResponse] = None
    calibration: CalibrationData


class StatusResponse(BaseModel):
    status: str
    message: str
