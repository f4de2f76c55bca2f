#!/usr/bin/env python3
"""
PPG Vital Signs Engine — Main Entry Point
==========================================
Launches the FastAPI adapter with Uvicorn.
Run with:  python main.py

Host and port come from VITALS_API_HOST / VITALS_API_PORT (see config.py).

⚠️  DISCLAIMER: This is a WELLNESS ESTIMATION tool, NOT a medical device.
    All readings (HR, SpO2, Blood Pressure, Glucose, Lipids, Hemoglobin) are ESTIMATES
    derived from photoplethysmography with placeholder calibration models.
    Do NOT use these readings for clinical diagnosis or treatment decisions.
    Consult a qualified healthcare professional for medical advice.
"""

import uvicorn
from api.app import create_app
from config import API_HOST, API_PORT

if __name__ == "__main__":
    app = create_app()
    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        reload=False,
        log_level="info",
    )
