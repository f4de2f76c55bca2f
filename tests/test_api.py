"""Tests for the FastAPI surface.

Run:
    pytest tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from config import API_TITLE, API_VERSION
from ppg.synthetic import synthetic_ppg


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def client():
    client = TestClient(create_app())
    # The router holds one session for the process lifetime
    client.post("/reset/full")
    return client


@pytest.fixture
def pulse_samples():
    timestamps, values = synthetic_ppg(bpm=72, seconds=15, morphology="pulse", dc=100.0, amplitude=5.0)
    return [{"value": float(v), "timestamp_ms": float(t)} for t, v in zip(timestamps, values)]


# =============================================================================
# STREAMING
# =============================================================================

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_samples_return_latest_reading(client, pulse_samples):
    resp = client.post("/samples", json={"samples": pulse_samples[:300]})
    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] == 300
    assert body["peaks"] >= 1
    latest = body["latest"]
    assert latest["timestamp_ms"] == pulse_samples[299]["timestamp_ms"]
    assert set(latest["lipids"]) == {"cholesterol", "triglycerides"}
    assert latest["hemoglobin"] == 0 or 8 <= latest["hemoglobin"] <= 18


def test_app_metadata_and_cors(client):
    schema = client.get("/openapi.json").json()
    assert schema["info"]["title"] == API_TITLE
    assert schema["info"]["version"] == API_VERSION
    assert "/samples" in schema["paths"]
    resp = client.get("/health", headers={"Origin": "http://localhost:3000"})
    assert resp.headers["access-control-allow-origin"] == "*"


def test_empty_batch_is_rejected(client):
    assert client.post("/samples", json={"samples": []}).status_code == 422


# =============================================================================
# CALIBRATION
# =============================================================================

def test_calibration_lifecycle(client, pulse_samples):
    started = client.post("/calibration/start", json={"now_ms": 0.0}).json()
    assert started["state"] == "calibrating"
    assert started["overall"] == 0

    latest = client.post("/samples", json={"samples": pulse_samples[:10]}).json()["latest"]
    assert latest["arrhythmia_status"].startswith("CALIBRATING...|")
    assert latest["blood_pressure"] == "--/--"

    done = client.post("/calibration/complete").json()
    assert done["state"] == "active"
    assert all(v == 100 for v in done["metrics"].values())
    assert client.get("/calibration").json()["state"] == "active"


def test_bp_calibration_needs_enough_samples(client, pulse_samples):
    raw = [s["value"] for s in pulse_samples]
    short = client.post("/calibration/blood-pressure", json={"systolic": 130, "diastolic": 85, "samples": raw[:10]})
    assert short.status_code == 422

    ok = client.post("/calibration/blood-pressure", json={"systolic": 130, "diastolic": 85, "samples": raw[:300]})
    assert ok.status_code == 200
    assert set(ok.json()) == {"status", "systolic_offset", "diastolic_offset"}


def test_bp_calibration_rejects_inverted_reference(client, pulse_samples):
    raw = [s["value"] for s in pulse_samples[:300]]
    resp = client.post("/calibration/blood-pressure", json={"systolic": 80, "diastolic": 120, "samples": raw})
    assert resp.status_code == 422
    assert resp.json()["metric"] == "blood_pressure"
    assert "diastolic < systolic" in resp.json()["reason"]


def test_glucose_calibration_short_window(client, pulse_samples):
    raw = [s["value"] for s in pulse_samples[:100]]
    resp = client.post("/calibration/glucose", json={"reference_mgdl": 110, "samples": raw})
    assert resp.status_code == 422
    assert resp.json()["metric"] == "glucose"
    assert resp.json()["detail"].startswith("glucose calibration rejected")


def test_lipid_calibration_before_any_estimate(client):
    resp = client.post("/calibration/lipids", json={"cholesterol": 200, "triglycerides": 150})
    assert resp.status_code == 422


# =============================================================================
# LIFECYCLE
# =============================================================================

def test_finish_and_summary(client, pulse_samples):
    client.post("/samples", json={"samples": pulse_samples[:300]})
    assert client.post("/measurement/finish", json={}).json()["status"] == "finalising"
    client.post("/samples", json={"samples": pulse_samples[300:]})

    summary = client.get("/summary").json()
    assert "NOT a medical device" in summary["disclaimer"]
    assert summary["final_bpm"] > 0
    assert summary["hrv"]["num_beats"] == len(summary["rr_intervals_ms"])
    assert summary["final_blood_pressure"] is not None


def test_soft_reset_returns_retained_reading(client, pulse_samples):
    client.post("/samples", json={"samples": pulse_samples})
    body = client.post("/reset").json()
    assert body["status"] == "ok"
    assert body["last_valid_reading"] is not None

    client.post("/reset/full")
    assert client.post("/reset").json()["last_valid_reading"] is None
