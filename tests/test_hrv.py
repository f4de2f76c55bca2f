"""Tests for HRV metrics and the streaming arrhythmia analyzer.

Run:
    pytest tests/test_hrv.py -v
"""

import numpy as np
import pytest

from config import MIN_TIME_BETWEEN_ARRHYTHMIAS_MS
from features.hrv import (
    ArrhythmiaAnalyzer,
    STATUS_ARRHYTHMIA,
    STATUS_CALIBRATING,
    STATUS_NORMAL,
    compute_hrv,
    rmssd,
    sample_entropy,
    shannon_entropy,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def analyzer() -> ArrhythmiaAnalyzer:
    return ArrhythmiaAnalyzer()


def _feed(analyzer: ArrhythmiaAnalyzer, intervals):
    """Feed intervals with beat timestamps accumulated from the intervals."""
    results = []
    t = 0.0
    for rr in intervals:
        t += rr
        results.append(analyzer.process_rr(rr, t))
    return results


# =============================================================================
# HRV SUMMARY
# =============================================================================

def test_compute_hrv_needs_five_intervals():
    result = compute_hrv([800, 810, 790, 805])
    assert result["valid"] is False
    assert result["rmssd_ms"] is None
    assert result["num_beats"] == 4


def test_compute_hrv_regular_rhythm():
    result = compute_hrv([800.0] * 10)
    assert result["valid"] is True
    assert result["sdnn_ms"] == 0.0
    assert result["rmssd_ms"] == 0.0
    assert result["pnn50"] == 0.0
    assert result["mean_rr_ms"] == 800.0


def test_compute_hrv_alternating_rhythm():
    result = compute_hrv([700.0, 900.0] * 5)
    assert result["rmssd_ms"] == pytest.approx(200.0)
    assert result["pnn50"] == pytest.approx(100.0)
    assert result["mean_rr_ms"] == pytest.approx(800.0)


def test_rmssd_of_short_series_is_zero():
    assert rmssd([800.0]) == 0.0


def test_intervals_equal_up_to_rounding():
    rr = [1400.0000000000002, 1400.0, 1399.9999999999998, 1400.0, 1400.0000000000002]
    assert shannon_entropy(rr) == 0.0
    result = compute_hrv(rr)
    assert result["valid"] is True
    assert result["shannon_entropy"] == 0.0
    assert result["mean_rr_ms"] == pytest.approx(1400.0)


def test_analyzer_status_with_rounding_level_intervals(analyzer):
    t = 0.0
    for rr in [1400.0000000000002, 1400.0, 1399.9999999999998, 1400.0, 1400.0000000000002, 1400.0]:
        t += rr
        analyzer.process_rr(rr, t)
    assert analyzer.status(t + 10.0).status.startswith(STATUS_NORMAL)


def test_entropies():
    rng = np.random.default_rng(5)
    irregular = list(800 + rng.normal(0, 60, 40))
    repeating = [700.0, 800.0, 900.0] * 10
    assert shannon_entropy([800.0] * 10) == 0.0
    assert shannon_entropy(irregular) > 1.0
    assert sample_entropy([800.0] * 3) is None
    assert sample_entropy(repeating) == pytest.approx(0.0, abs=0.2)


# =============================================================================
# ANALYZER STATE MACHINE
# =============================================================================

def test_calibrating_status_reports_progress(analyzer):
    result = analyzer.process_rr(800, 800)
    assert result.status == f"{STATUS_CALIBRATING}|33"
    assert analyzer.is_calibrating


def test_baseline_learned_after_three_intervals(analyzer):
    _feed(analyzer, [800, 800, 800])
    assert not analyzer.is_calibrating
    assert analyzer.baseline["mean_rr_ms"] == pytest.approx(800.0)


def test_single_long_interval_detected_once(analyzer):
    results = _feed(analyzer, [800, 800, 800, 1400, 800, 800])
    assert analyzer.count == 1
    assert [r.is_arrhythmia for r in results].index(True) == 3
    assert results[3].status == f"{STATUS_ARRHYTHMIA}|1"
    assert results[3].last_event is not None
    assert results[3].last_event.rr_variation == pytest.approx(0.75)


def test_status_returns_to_normal_after_hold(analyzer):
    _feed(analyzer, [800, 800, 800, 1400, 800, 800])
    assert analyzer.status(100_000).status == f"{STATUS_NORMAL}|1"


def test_regular_rhythm_never_flags(analyzer):
    rng = np.random.default_rng(9)
    intervals = 800 + rng.integers(-33, 34, 60)
    results = _feed(analyzer, intervals)
    assert analyzer.count == 0
    assert results[-1].status.startswith(STATUS_NORMAL)


def test_detections_are_rate_limited(analyzer):
    _feed(analyzer, [800, 800, 800])
    analyzer.process_rr(1400, 5000)
    analyzer.process_rr(400, 5400)      # inside the rate-limit window
    assert analyzer.count == 1
    analyzer.process_rr(1400, 5000 + MIN_TIME_BETWEEN_ARRHYTHMIAS_MS)
    assert analyzer.count == 2


def test_counter_increments_at_most_once_per_window(analyzer):
    rng = np.random.default_rng(21)
    intervals = rng.choice([450.0, 800.0, 1300.0], size=80)
    t = 0.0
    increments = []
    previous = 0
    for rr in intervals:
        t += rr
        analyzer.process_rr(rr, t)
        if analyzer.count > previous:
            increments.append(t)
            previous = analyzer.count
    assert np.all(np.diff(increments) >= MIN_TIME_BETWEEN_ARRHYTHMIAS_MS)


def test_changed_rhythm_is_relearned(analyzer):
    _feed(analyzer, [800, 800, 800])
    t = 2400.0
    for _ in range(4):
        t += 500
        analyzer.process_rr(500, t)
    assert analyzer.baseline["mean_rr_ms"] == pytest.approx(500.0)
    count = analyzer.count
    for _ in range(10):
        t += 500
        analyzer.process_rr(500, t)
    assert analyzer.count == count


def test_reset_restarts_learning(analyzer):
    _feed(analyzer, [800, 800, 800, 1400])
    analyzer.reset()
    assert analyzer.count == 0
    assert analyzer.is_calibrating
