"""Tests for the shared feature-extraction routines.

Run:
    pytest tests/test_extraction.py -v
"""

import numpy as np
import pytest

from features.extraction import (
    ac_component,
    band_power,
    beats,
    dc_component,
    dicrotic_notch,
    find_peaks,
    find_valleys,
    perfusion_index,
    pulse_transit_time,
    pulse_width,
    signal_quality,
    spectrum,
)
from ppg.synthetic import synthetic_ppg


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sine_window() -> np.ndarray:
    _, values = synthetic_ppg(bpm=75, seconds=10, dc=100.0, amplitude=5.0)
    return values


@pytest.fixture
def noise_window() -> np.ndarray:
    rng = np.random.default_rng(3)
    return 100.0 + rng.normal(0.0, 1.0, 300)


DEGENERATE_WINDOWS = [
    pytest.param(np.array([]), id="empty"),
    pytest.param(np.array([1.0]), id="single"),
    pytest.param(np.array([1.0, 2.0]), id="two"),
    pytest.param(np.full(300, 100.0), id="flat"),
    pytest.param(np.zeros(300), id="zeros"),
]


# =============================================================================
# TOTALITY
# =============================================================================

@pytest.mark.parametrize("window", DEGENERATE_WINDOWS)
def test_extractors_never_raise_on_degenerate_windows(window):
    assert find_peaks(window).size == 0
    assert find_valleys(window).size == 0
    assert beats(window) == []
    assert pulse_transit_time(window) == 0.0
    assert pulse_width(window) == 0.0
    assert signal_quality(window) == 0.0
    assert dicrotic_notch(window, 0) is None
    assert perfusion_index(window) >= 0.0


def test_empty_window_components_are_zero():
    assert ac_component([]) == 0.0
    assert dc_component([]) == 0.0
    assert perfusion_index([]) == 0.0


def test_perfusion_zero_for_non_positive_dc():
    assert perfusion_index([-1.0, 1.0, -1.0, 1.0]) == 0.0


def test_spectrum_of_short_window_is_empty():
    freqs, power = spectrum([1.0])
    assert freqs.size == 0 and power.size == 0
    assert band_power(freqs, power, 0.5, 2.0) == 0.0


# =============================================================================
# EXTREMA
# =============================================================================

def test_sine_peaks_are_one_period_apart(sine_window):
    peaks = find_peaks(sine_window)
    assert peaks.size in (12, 13)
    assert np.all(np.diff(peaks) == 24)


def test_min_distance_keeps_higher_candidate():
    window = np.zeros(40)
    window[10] = 5.0
    window[14] = 8.0
    window[30] = 6.0
    peaks = find_peaks(window, min_distance=15)
    assert 14 in peaks
    assert 10 not in peaks


def test_valleys_alternate_with_peaks(sine_window):
    for before, peak, after in beats(sine_window):
        assert before < peak < after
        assert sine_window[before] < sine_window[peak] > sine_window[after]


# =============================================================================
# AMPLITUDE & TIMING
# =============================================================================

def test_perfusion_index_of_sine(sine_window):
    assert perfusion_index(sine_window) == pytest.approx(0.1, abs=0.005)


def test_pulse_transit_time_of_75_bpm(sine_window):
    assert pulse_transit_time(sine_window, fs=30.0) == pytest.approx(800.0, abs=1.0)


def test_dicrotic_notch_on_sine_is_at_inflection(sine_window):
    peak = int(find_peaks(sine_window)[0])
    notch = dicrotic_notch(sine_window, peak)
    assert notch is not None
    assert 5 <= notch - peak <= 7


def test_dicrotic_notch_on_pulse_follows_peak():
    _, values = synthetic_ppg(bpm=72, seconds=5, morphology="pulse")
    before, peak, after = beats(values)[0]
    notch = dicrotic_notch(values, peak, after)
    assert notch is not None
    assert peak < notch < after


def test_pulse_width_of_sine(sine_window):
    # Half-prominence width of a sinusoid is half its period (edge peaks are narrower)
    assert pulse_width(sine_window) == pytest.approx(12.0, abs=1.5)


# =============================================================================
# SPECTRUM
# =============================================================================

def test_spectrum_peak_at_heart_rate(sine_window):
    freqs, power = spectrum(sine_window, fs=30.0)
    assert freqs[np.argmax(power)] == pytest.approx(1.25, abs=0.06)


def test_spectrum_is_zero_padded_to_power_of_two(sine_window):
    freqs, _ = spectrum(sine_window, fs=30.0)
    assert freqs.size == 512 // 2 + 1


def test_band_power_concentrated_in_cardiac_band(sine_window):
    freqs, power = spectrum(sine_window, fs=30.0)
    cardiac = band_power(freqs, power, 1.0, 1.5)
    assert cardiac > 0.8 * band_power(freqs, power, 0.0, 15.0)


# =============================================================================
# SIGNAL QUALITY
# =============================================================================

def test_clean_pulse_has_high_quality(sine_window):
    assert signal_quality(sine_window) > 0.8


def test_noise_scores_below_clean_pulse(sine_window, noise_window):
    assert signal_quality(noise_window) < signal_quality(sine_window)


def test_quality_is_bounded(noise_window):
    assert 0.0 <= signal_quality(noise_window) <= 1.0
