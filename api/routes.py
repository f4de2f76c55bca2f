"""
api/routes.py — FastAPI route definitions
==========================================
All HTTP endpoints are defined here and wired into the app via
`app.include_router(router)` in `api/app.py`.

Endpoint summary
----------------
    GET  /health                      — Liveness probe
    POST /samples                     — Stream a batch of raw PPG samples
    POST /calibration/start           — Enter the calibration phase
    POST /calibration/complete        — Force calibration completion
    GET  /calibration                 — Calibration state & per-metric progress
    POST /calibration/blood-pressure  — Reference cuff reading + raw window
    POST /calibration/glucose         — Reference glucometer reading + raw window
    POST /calibration/lipids          — Reference lab lipid values
    POST /measurement/finish          — Start delayed BP finalisation
    POST /reset                       — Soft reset (returns last valid reading)
    POST /reset/full                  — Hard reset
    GET  /summary                     — Session summary (final BPM, HRV, final BP)
    GET  /docs                        — Auto-generated Swagger UI (FastAPI built-in)

Refused calibrations raise `CalibrationError`; the handler registered in
`api/app.py` turns them into 422 responses.
"""

from fastapi import APIRouter
from api.schemas import (
    SampleBatch,
    CalibrationStartRequest,
    BloodPressureCalibrationRequest,
    GlucoseCalibrationRequest,
    LipidCalibrationRequest,
    MeasurementFinishRequest,
    CalibrationData,
    SamplesResponse,
    SummaryResponse,
    StatusResponse,
)
from api.session import MonitorSession

router = APIRouter()

# ── Global session instance ──────────────────────────────────────────────────
# One engine for the entire application lifetime.  A multi-user deployment
# would key sessions by user/token.
_session = MonitorSession()


# ── Health ────────────────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    """Simple liveness check."""
    return {"status": "ok", "service": "PPG Vital Signs Engine"}


# ── Streaming ─────────────────────────────────────────────────────────────────

@router.post("/samples")
async def post_samples(batch: SampleBatch) -> SamplesResponse:
    """
    Process raw samples in order and return the reading of the last one.

    Body (JSON):
        samples : [{"value": float, "timestamp_ms": float | null}, ...]
    """
    processed, peaks, latest = _session.process_samples(batch.samples)
    return SamplesResponse(processed=processed, peaks=peaks, latest=latest)


# ── Calibration ───────────────────────────────────────────────────────────────

@router.post("/calibration/start")
async def start_calibration(request: CalibrationStartRequest = CalibrationStartRequest()) -> CalibrationData:
    """Reset per-metric progress and start the calibration timer."""
    return CalibrationData(**_session.start_calibration(request.now_ms))


@router.post("/calibration/complete")
async def complete_calibration() -> CalibrationData:
    """Jump every metric to 100 % and switch to the active state."""
    return CalibrationData(**_session.complete_calibration())


@router.get("/calibration")
async def calibration_status() -> CalibrationData:
    return CalibrationData(**_session.calibration())


@router.post("/calibration/blood-pressure")
async def calibrate_blood_pressure(request: BloodPressureCalibrationRequest):
    """
    Learn BP offsets from a cuff reading.

    Returns 422 when the window is too short (< 90 samples), carries no
    usable pulse, or the reference is inconsistent.
    """
    sys_offset, dia_offset = _session.calibrate_blood_pressure(
        request.systolic, request.diastolic, request.samples
    )
    return {
        "status": "ok",
        "systolic_offset": round(sys_offset, 2),
        "diastolic_offset": round(dia_offset, 2),
    }


@router.post("/calibration/glucose")
async def calibrate_glucose(request: GlucoseCalibrationRequest):
    """Learn the glucose factor.  422 when fewer than 180 usable samples."""
    factor = _session.calibrate_glucose(request.reference_mgdl, request.samples)
    return {"status": "ok", "factor": round(factor, 4)}


@router.post("/calibration/lipids")
async def calibrate_lipids(request: LipidCalibrationRequest):
    """Learn lipid factors from the live window.  422 before any estimate exists."""
    chol_factor, trig_factor = _session.calibrate_lipids(request.cholesterol, request.triglycerides)
    return {
        "status": "ok",
        "cholesterol_factor": round(chol_factor, 4),
        "triglyceride_factor": round(trig_factor, 4),
    }


# ── Measurement lifecycle ─────────────────────────────────────────────────────

@router.post("/measurement/finish")
async def finish_measurement(request: MeasurementFinishRequest = MeasurementFinishRequest()) -> StatusResponse:
    """
    Start the delayed BP finalisation.  The final value appears in
    GET /summary once samples spanning the completion delay have been posted.
    """
    _session.finish_measurement(request.now_ms)
    return StatusResponse(
        status="finalising",
        message="Keep streaming samples; the final blood pressure appears in GET /summary.",
    )


@router.get("/summary")
async def summary() -> SummaryResponse:
    return SummaryResponse(**_session.summary())


@router.post("/reset")
async def reset():
    """Soft reset; the last fully valid reading is returned and retained."""
    retained = _session.reset()
    return {"status": "ok", "last_valid_reading": retained}


@router.post("/reset/full")
async def full_reset() -> StatusResponse:
    """Hard reset: calibrations and the retained reading are discarded."""
    _session.full_reset()
    return StatusResponse(status="ok", message="Engine fully reset.")
