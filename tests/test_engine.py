"""Tests for the orchestration engine and its calibration controller.

Run:
    pytest tests/test_engine.py -v
"""

import numpy as np
import pytest

from config import CALIBRATION_REQUIRED_SAMPLES, CALIBRATION_WEIGHTS
from engine.calibration import CalibrationSession, CalibrationState
from engine.processor import VitalsEngine
from engine.readings import BP_PLACEHOLDER, VitalsReading
from errors import CalibrationDataInsufficient
from ppg.synthetic import synthetic_ppg


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def engine() -> VitalsEngine:
    return VitalsEngine()


@pytest.fixture
def pulse_trace():
    return synthetic_ppg(bpm=72, seconds=15, morphology="pulse", dc=100.0, amplitude=5.0)


def _run(engine: VitalsEngine, timestamps, values) -> list[VitalsReading]:
    return [engine.process(float(v), float(t)) for t, v in zip(timestamps, values)]


def _assert_within_bounds(out: dict) -> None:
    assert out["spo2"] == 0 or 70 <= out["spo2"] <= 100
    assert out["glucose"] == 0 or 70 <= out["glucose"] <= 400
    assert out["hemoglobin"] == 0 or 8 <= out["hemoglobin"] <= 18
    chol = out["lipids"]["cholesterol"]
    assert chol == 0 or 100 <= chol <= 300
    if out["blood_pressure"] != BP_PLACEHOLDER:
        systolic, diastolic = (int(p) for p in out["blood_pressure"].split("/"))
        assert 90 <= systolic <= 180
        assert 60 <= diastolic <= 110
        assert diastolic < systolic
        assert 25 <= systolic - diastolic <= 75


# =============================================================================
# CALIBRATION STATE MACHINE
# =============================================================================

def test_calibration_session_progress_is_weighted():
    session = CalibrationSession(required_samples=100, duration_ms=10_000)
    session.start(0.0)
    for i in range(50):
        session.on_sample(i * 100.0)
    snapshot = session.snapshot()
    assert snapshot.state is CalibrationState.CALIBRATING
    # time fraction 0.49 vs sample fraction 0.5 → the smaller wins
    assert snapshot.metrics["heart_rate"] == 49
    assert snapshot.metrics["lipids"] == round(49 * CALIBRATION_WEIGHTS["lipids"])


def test_calibration_times_out():
    session = CalibrationSession(required_samples=1000, duration_ms=1000)
    session.start(0.0)
    assert session.on_sample(500.0) is False
    assert session.on_sample(1000.0) is True
    assert session.state is CalibrationState.ACTIVE
    assert all(v == 100 for v in session.snapshot().metrics.values())


def test_calibration_timer_anchors_on_first_sample():
    session = CalibrationSession(required_samples=1000, duration_ms=1000)
    session.start()
    session.on_sample(50_000.0)
    assert session.is_calibrating
    session.on_sample(51_000.0)
    assert session.state is CalibrationState.ACTIVE


def test_cancel_only_stops_running_calibration():
    session = CalibrationSession()
    session.start(0.0)
    session.cancel()
    assert session.state is CalibrationState.IDLE
    session.complete()
    session.cancel()
    assert session.state is CalibrationState.ACTIVE


# =============================================================================
# ENGINE CALIBRATION
# =============================================================================

def test_calibration_completes_before_any_numeric_reading(engine, pulse_trace):
    timestamps, values = pulse_trace
    engine.start_calibration(now_ms=float(timestamps[0]))

    readings = _run(engine, timestamps[:CALIBRATION_REQUIRED_SAMPLES], values[:CALIBRATION_REQUIRED_SAMPLES])
    for reading in readings:
        out = reading.to_dict()
        assert out["arrhythmia_status"].startswith("CALIBRATING...|")
        assert out["heart_rate"] == 0
        assert out["spo2"] == 0
        assert out["blood_pressure"] == BP_PLACEHOLDER
        assert out["glucose"] == 0
        assert out["lipids"] == {"cholesterol": 0, "triglycerides": 0}
        assert out["hemoglobin"] == 0

    final = readings[-1].calibration
    assert final.state is CalibrationState.ACTIVE
    assert all(v == 100 for v in final.metrics.values())
    assert readings[-1].arrhythmia_status == "CALIBRATING...|100"

    after = engine.process(float(values[CALIBRATION_REQUIRED_SAMPLES]), float(timestamps[CALIBRATION_REQUIRED_SAMPLES]))
    assert after.calibration.state is CalibrationState.ACTIVE
    assert after.spo2 is not None


def test_forced_completion(engine):
    engine.start_calibration(0.0)
    engine.process(100.0, 0.0)
    engine.force_calibration_completion()
    progress = engine.calibration
    assert progress.state is CalibrationState.ACTIVE
    assert progress.overall == 100


def test_bp_calibration_with_raw_window(engine, pulse_trace):
    _, values = pulse_trace
    offsets = engine.set_blood_pressure_calibration(130, 85, values[:300])
    assert len(offsets) == 2


def test_bp_calibration_rejects_short_raw_window(engine, pulse_trace):
    _, values = pulse_trace
    with pytest.raises(CalibrationDataInsufficient):
        engine.set_blood_pressure_calibration(130, 85, values[:60])


def test_glucose_calibration_rejects_short_raw_window(engine, pulse_trace):
    _, values = pulse_trace
    with pytest.raises(CalibrationDataInsufficient):
        engine.set_glucose_calibration(110, values[:100])


def test_lipid_calibration_needs_live_signal(engine):
    with pytest.raises(CalibrationDataInsufficient):
        engine.set_lipid_calibration(200, 150)


def test_calibration_does_not_disturb_live_stream(pulse_trace):
    timestamps, values = pulse_trace
    plain, calibrated = VitalsEngine(), VitalsEngine()
    calibrated.set_glucose_calibration(110, values[:240])
    a = [r.heart_rate for r in _run(plain, timestamps, values)]
    b = [r.heart_rate for r in _run(calibrated, timestamps, values)]
    assert a == b


# =============================================================================
# STREAMING
# =============================================================================

def test_sinusoid_heart_rate(engine):
    timestamps, values = synthetic_ppg(bpm=75, seconds=13, dc=100.0, amplitude=5.0)
    readings = _run(engine, timestamps, values)
    assert readings[-1].to_dict()["heart_rate"] == pytest.approx(75, abs=3)
    assert engine.get_final_bpm() == pytest.approx(75, abs=3)
    assert np.allclose(engine.get_rr_intervals(), 800.0, atol=34.0)


def test_flat_run_after_pulse_resets_detection(engine):
    timestamps, values = synthetic_ppg(bpm=75, seconds=10, dc=100.0, amplitude=5.0)
    _run(engine, timestamps, values)
    before = engine.process(float(values[-1]), float(timestamps[-1]) + 1000.0 / 30.0).heart_rate
    assert before is not None and before > 0

    start = float(timestamps[-1]) + 2000.0 / 30.0
    flat_times = start + (1000.0 / 30.0) * np.arange(15)
    readings = _run(engine, flat_times, np.full(15, 100.0))

    # The tenth flat sample completes a flat window
    lost = readings[9:]
    assert all(not r.is_peak for r in lost)
    rates = [r.heart_rate for r in lost]
    assert all(b < a for a, b in zip(rates, rates[1:]))
    assert rates[-1] < before
    assert engine._hr.confirmation_buffer == []
    assert engine._hr.last_peak_ms is None


def test_full_reading_is_assembled(engine, pulse_trace):
    readings = _run(engine, *pulse_trace)
    out = readings[-1].to_dict()
    assert out["heart_rate"] > 0
    assert 70 <= out["spo2"] <= 100
    assert out["blood_pressure"] != BP_PLACEHOLDER
    assert 8 <= out["hemoglobin"] <= 18
    assert out["arrhythmia_status"].split("|")[0] in (
        "NORMAL RHYTHM", "WEAK SIGNAL", "ARRHYTHMIA DETECTED", "CALIBRATING...",
    )
    assert engine.last_valid_reading is not None


def test_bounds_hold_for_noisy_input(engine):
    timestamps, values = synthetic_ppg(bpm=95, seconds=15, dc=80.0, amplitude=6.0, noise=3.0, seed=4)
    for reading in _run(engine, timestamps, values):
        _assert_within_bounds(reading.to_dict())


def test_identical_input_gives_identical_output(pulse_trace):
    timestamps, _ = pulse_trace
    _, noisy = synthetic_ppg(bpm=72, seconds=15, morphology="pulse", noise=1.0, seed=8)
    first = [r.to_dict() for r in _run(VitalsEngine(), timestamps, noisy)]
    second = [r.to_dict() for r in _run(VitalsEngine(), timestamps, noisy)]
    assert first == second


def test_non_finite_samples_do_not_crash(engine, pulse_trace):
    timestamps, values = pulse_trace
    values = values.copy()
    values[::37] = np.nan
    for reading in _run(engine, timestamps, values):
        _assert_within_bounds(reading.to_dict())


# =============================================================================
# RESET & SESSION SUMMARY
# =============================================================================

def test_soft_reset_returns_and_keeps_last_valid_reading(engine, pulse_trace):
    _run(engine, *pulse_trace)
    retained = engine.last_valid_reading
    assert retained is not None
    assert engine.reset() is retained
    assert engine.last_valid_reading is retained


def test_full_reset_discards_retained_reading(engine, pulse_trace):
    _run(engine, *pulse_trace)
    engine.full_reset()
    assert engine.last_valid_reading is None
    assert engine.reset() is None


def test_flat_zero_input_after_full_reset_reports_no_rate(engine, pulse_trace):
    _run(engine, *pulse_trace)
    engine.full_reset()
    timestamps = 33.0 * np.arange(80)          # shorter than the warmup
    for reading in _run(engine, timestamps, np.zeros(80)):
        assert reading.to_dict()["heart_rate"] == 0


def test_reset_stops_running_calibration(engine):
    engine.start_calibration(0.0)
    engine.reset()
    assert engine.calibration.state is CalibrationState.IDLE


def test_final_blood_pressure_after_completion_delay(engine, pulse_trace):
    timestamps, values = pulse_trace
    split = 300
    _run(engine, timestamps[:split], values[:split])
    engine.finish_measurement()
    assert engine.get_final_blood_pressure() is None
    _run(engine, timestamps[split:], values[split:])      # 5 s > completion delay
    final = engine.get_final_blood_pressure()
    assert final is not None
    assert 25 <= final.pulse_pressure <= 75


def test_summary_contents(engine, pulse_trace):
    _run(engine, *pulse_trace)
    summary = engine.summary()
    assert summary["final_bpm"] == engine.get_final_bpm()
    assert summary["rr_intervals_ms"] == engine.get_rr_intervals()
    assert summary["hrv"]["num_beats"] == len(summary["rr_intervals_ms"])
    assert summary["calibration"]["state"] == "idle"
