"""Tests for the SpO2, blood-pressure, glucose, lipid and hemoglobin estimators.

Run:
    pytest tests/test_estimators.py -v
"""

import numpy as np
import pytest

from config import BP_COMPLETION_DELAY_MS
from errors import CalibrationDataInsufficient, InvalidCalibrationReference
from model.blood_pressure import BloodPressure, BloodPressureEstimator, to_reading
from model.glucose import GlucoseEstimator
from model.hemoglobin import HemoglobinEstimator, hemoglobin_from_ratio
from model.lipids import LipidEstimator, LipidProfile
from model.spo2 import SpO2Estimator
from ppg.filters import FilterChain
from ppg.synthetic import synthetic_ppg


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pulse_window() -> np.ndarray:
    """10 s of filtered pulse-shaped PPG, as the engine would hold it."""
    _, values = synthetic_ppg(bpm=72, seconds=10, morphology="pulse", dc=100.0, amplitude=5.0)
    return FilterChain().filter_many(values)


@pytest.fixture
def sine_window() -> np.ndarray:
    _, values = synthetic_ppg(bpm=75, seconds=10, dc=100.0, amplitude=5.0)
    return FilterChain().filter_many(values)


def _noisy_windows(count: int = 12):
    """Filtered windows of varied rate, amplitude and noise."""
    rng = np.random.default_rng(17)
    for i in range(count):
        _, values = synthetic_ppg(
            bpm=float(rng.uniform(45, 160)),
            seconds=10,
            dc=float(rng.uniform(20, 200)),
            amplitude=float(rng.uniform(0.5, 40)),
            noise=float(rng.uniform(0, 5)),
            morphology="pulse" if i % 2 else "sine",
            seed=i,
        )
        yield FilterChain().filter_many(values)


# =============================================================================
# SPO2
# =============================================================================

def test_spo2_short_window_is_unknown():
    assert SpO2Estimator().estimate(np.full(20, 100.0)) is None


def test_spo2_follows_calibration_curve():
    _, values = synthetic_ppg(bpm=75, seconds=3, dc=100.0, amplitude=30.0)
    # R = AC/DC ≈ 0.6 → 110 − 25·0.6 = 95
    assert SpO2Estimator().estimate(values) == pytest.approx(95, abs=1)


def test_spo2_weak_perfusion_keeps_last_value():
    est = SpO2Estimator()
    _, strong = synthetic_ppg(bpm=75, seconds=3, dc=100.0, amplitude=30.0)
    first = est.estimate(strong)
    _, weak = synthetic_ppg(bpm=75, seconds=3, dc=100.0, amplitude=0.5)
    assert est.estimate(weak) == first


def test_spo2_bounds():
    est = SpO2Estimator()
    for window in _noisy_windows():
        value = est.estimate(window)
        assert value is None or 70 <= value <= 100


# =============================================================================
# BLOOD PRESSURE
# =============================================================================

def test_bp_short_window_is_unknown(pulse_window):
    assert BloodPressureEstimator().estimate(pulse_window[:20]) is None


def test_bp_flat_window_is_unknown():
    assert BloodPressureEstimator().estimate(np.full(300, 100.0)) is None


def test_bp_estimate_within_physiological_limits(pulse_window):
    bp = BloodPressureEstimator().estimate(pulse_window)
    assert isinstance(bp, BloodPressure)
    assert 90 <= bp.systolic <= 180
    assert 60 <= bp.diastolic <= 110
    assert 25 <= bp.pulse_pressure <= 75


def test_bp_bounds_over_varied_signals():
    est = BloodPressureEstimator()
    for window in _noisy_windows():
        bp = est.estimate(window)
        if bp is None:
            continue
        assert 90 <= bp.systolic <= 180
        assert 60 <= bp.diastolic <= 110
        assert bp.diastolic < bp.systolic
        assert 25 <= bp.pulse_pressure <= 75


@pytest.mark.parametrize(
    "systolic, diastolic",
    [(300.0, 250.0), (50.0, 10.0), (120.0, 119.0), (180.0, 60.0), (95.0, 95.0)],
)
def test_rounding_keeps_constraints(systolic, diastolic):
    bp = to_reading(systolic, diastolic)
    assert 90 <= bp.systolic <= 180
    assert 60 <= bp.diastolic <= 110
    assert 25 <= bp.pulse_pressure <= 75


def test_bp_calibration_reports_reference(pulse_window):
    est = BloodPressureEstimator()
    raw = est.uncalibrated_estimate(pulse_window[-250:])
    assert raw is not None

    offsets = est.set_calibration(130, 85, pulse_window)
    assert offsets == pytest.approx((130 - raw[0], 85 - raw[1]))
    for _ in range(3):
        assert est.estimate(pulse_window) == BloodPressure(130, 85)


def test_bp_repeated_calibration_does_not_compound(pulse_window):
    est = BloodPressureEstimator()
    first = est.set_calibration(130, 85, pulse_window)
    second = est.set_calibration(130, 85, pulse_window)
    assert second == pytest.approx(first)
    assert est.estimate(pulse_window) == BloodPressure(130, 85)


def test_bp_calibration_rejects_short_window(pulse_window):
    with pytest.raises(CalibrationDataInsufficient):
        BloodPressureEstimator().set_calibration(130, 85, pulse_window[:60])


def test_bp_calibration_rejects_flat_window():
    with pytest.raises(CalibrationDataInsufficient):
        BloodPressureEstimator().set_calibration(130, 85, np.full(200, 100.0))


def test_bp_calibration_rejects_inverted_reference(pulse_window):
    with pytest.raises(InvalidCalibrationReference):
        BloodPressureEstimator().set_calibration(80, 120, pulse_window)


def test_bp_final_measurement_after_delay(pulse_window):
    est = BloodPressureEstimator()
    est.set_calibration(125, 80, pulse_window)
    est.start_final_measurement(0.0)
    for _ in range(5):
        est.estimate(pulse_window)
    assert est.poll_final_measurement(BP_COMPLETION_DELAY_MS - 1) is None
    final = est.poll_final_measurement(BP_COMPLETION_DELAY_MS)
    assert final == BloodPressure(125, 80)
    assert est.final_value == final


def test_bp_reset_keeps_calibration(pulse_window):
    est = BloodPressureEstimator()
    offsets = est.set_calibration(130, 85, pulse_window)
    est.reset()
    assert est.offsets == offsets
    est.reset(keep_calibration=False)
    assert est.offsets == (0.0, 0.0)
    assert not est.is_calibrated


# =============================================================================
# GLUCOSE
# =============================================================================

def test_glucose_short_window_is_unknown(pulse_window):
    assert GlucoseEstimator().estimate(pulse_window[:100]) is None


def test_glucose_calibration_rejects_short_window(pulse_window):
    with pytest.raises(CalibrationDataInsufficient):
        GlucoseEstimator().set_calibration(100, pulse_window[:120])


def test_glucose_calibration_rejects_flat_window():
    with pytest.raises(CalibrationDataInsufficient):
        GlucoseEstimator().set_calibration(100, np.full(240, 100.0))


def test_glucose_calibration_factor_applied(sine_window):
    est = GlucoseEstimator()
    raw = est.uncalibrated_estimate(sine_window[-240:])
    assert raw is not None and raw > 0

    reference = round(raw * 1.1)
    factor = est.set_calibration(reference, sine_window)
    assert factor == pytest.approx(reference / raw)
    assert est.estimate(sine_window) == reference


def test_glucose_factor_is_clamped(sine_window):
    est = GlucoseEstimator()
    raw = est.uncalibrated_estimate(sine_window[-240:])
    assert est.set_calibration(raw * 10, sine_window) == 2.0


def test_glucose_bounds():
    est = GlucoseEstimator()
    for window in _noisy_windows():
        value = est.estimate(window)
        assert value is None or 70 <= value <= 400


def test_glucose_coefficients_are_configurable(sine_window):
    default = GlucoseEstimator().uncalibrated_estimate(sine_window)
    doubled = GlucoseEstimator(extinction_coeffs=(0.0468, 0.0396, 0.0334, 0.0282, 0.0236))
    assert doubled.uncalibrated_estimate(sine_window) == pytest.approx(default / 2)


# =============================================================================
# LIPIDS
# =============================================================================

def test_lipids_short_window_is_unknown(sine_window):
    assert LipidEstimator().estimate(sine_window[:100]) is None


def test_lipids_estimate_within_ranges(sine_window):
    profile = LipidEstimator().estimate(sine_window)
    assert isinstance(profile, LipidProfile)
    assert 100 <= profile.cholesterol <= 300
    assert 50 <= profile.triglycerides <= 500
    assert profile.confidence >= 0.7


def test_lipid_calibration_without_estimate_fails():
    with pytest.raises(CalibrationDataInsufficient):
        LipidEstimator().set_calibration(200, 150)


def test_lipid_calibration_factors(sine_window):
    est = LipidEstimator()
    est.estimate(sine_window)
    raw = est.uncalibrated_estimate(sine_window)
    chol_factor, trig_factor = est.set_calibration(200, 150)
    assert 0.5 <= chol_factor <= 2.0
    assert 0.5 <= trig_factor <= 2.0

    profile = est.estimate(sine_window)
    assert profile.cholesterol == int(round(np.clip(raw[0] * chol_factor, 100, 300)))
    assert profile.triglycerides == int(round(np.clip(raw[1] * trig_factor, 50, 500)))


def test_lipid_bounds():
    est = LipidEstimator()
    for window in _noisy_windows():
        profile = est.estimate(window)
        if profile is not None:
            assert 100 <= profile.cholesterol <= 300
            assert 50 <= profile.triglycerides <= 500


# =============================================================================
# HEMOGLOBIN
# =============================================================================

def test_hemoglobin_curve_is_clamped():
    assert hemoglobin_from_ratio(0.1) == pytest.approx(10.25)
    assert hemoglobin_from_ratio(1.0) == pytest.approx(12.5)
    assert hemoglobin_from_ratio(-10.0) == 8.0
    assert hemoglobin_from_ratio(10.0) == 18.0


def test_hemoglobin_short_window_is_unknown(sine_window):
    assert HemoglobinEstimator().estimate(sine_window[:40]) is None


def test_hemoglobin_estimate_within_range(sine_window):
    estimator = HemoglobinEstimator()
    value = estimator.estimate(sine_window)
    assert 8.0 <= value <= 18.0
    assert value == round(value, 1)
    assert estimator.last_value == value


def test_flat_window_keeps_previous_hemoglobin(sine_window):
    estimator = HemoglobinEstimator()
    assert estimator.estimate(np.full(300, 100.0)) is None
    value = estimator.estimate(sine_window)
    assert estimator.estimate(np.full(300, 100.0)) == value


def test_hemoglobin_median_ignores_single_outlier(sine_window):
    estimator = HemoglobinEstimator()
    for _ in range(4):
        steady = estimator.estimate(sine_window)
    spiky = sine_window.copy()
    spiky[-1] += 200.0
    assert estimator.estimate(spiky) == steady
    estimator.reset()
    assert estimator.last_value is None
