"""
api/app.py — FastAPI application factory
==========================================
Builds the HTTP adapter around the single `VitalsEngine` session held by
`api/routes.py`.  `main.py` only calls `create_app()` and hands the
result to Uvicorn.

Error mapping
-------------
Signal problems never reach HTTP: the engine answers with placeholder
values.  A refused calibration (`CalibrationError`) is the one domain
failure and becomes a 422 carrying the metric and the reason, the same
status FastAPI uses for malformed request bodies.

CORS
----
Allowed origins come from ``VITALS_API_CORS_ORIGINS`` (comma-separated,
``*`` by default for local demos).  Restrict it to the frontend domain
in any shared deployment.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import router
from config import API_CORS_ORIGINS, API_TITLE, API_VERSION
from errors import CalibrationError
from utils.logger import get_logger

logger = get_logger("api.app")


async def calibration_error_handler(request: Request, exc: CalibrationError) -> JSONResponse:
    """Refused calibration → 422 with the metric and the reason."""
    logger.warning("Calibration rejected on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "metric": exc.metric, "reason": exc.reason},
    )


def create_app() -> FastAPI:
    """Construct and return the configured FastAPI application."""
    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        description=(
            "Streaming photoplethysmography (PPG) vital-signs engine: post raw "
            "brightness samples, read heart rate, rhythm, SpO2, blood pressure, "
            "glucose, lipids and hemoglobin.  "
            "⚠️ WELLNESS TOOL ONLY — not a medical device."
        ),
    )

    # ── CORS ────────────────────────────────────────────────────────────
    # Browsers reject credentials with a wildcard origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=API_CORS_ORIGINS,
        allow_credentials="*" not in API_CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ── Errors & routes ─────────────────────────────────────────────────
    app.add_exception_handler(CalibrationError, calibration_error_handler)
    app.include_router(router)

    logger.info("API %s ready (CORS origins: %s)", API_VERSION, ", ".join(API_CORS_ORIGINS))
    return app
