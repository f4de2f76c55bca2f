"""
features/extraction.py — Shared PPG feature extraction
=======================================================
Stateless routines every estimator builds on:

    find_peaks / find_valleys   local extrema with a minimum spacing
    beats                       (valley, peak, valley) index triplets
    ac / dc / perfusion index   pulsatile vs. steady light level
    pulse_transit_time          inter-peak spacing in ms
    dicrotic_notch              second-derivative sign change after a peak
    pulse_width                 mean width at half height
    spectrum / band_power       FFT power (zero-padded to a power of two)
    signal_quality              composite 0–1 quality score

Totality
--------
All functions accept windows of any length, including empty or constant
ones, and return an empty array, 0.0 or None in that case.  They never
raise: a live stream must not crash because the first frames are short.

Peak detection
--------------
`scipy.signal.find_peaks` does the work.  An extremum counts only if it
rises above ``min + fraction × range``, and when two candidates are
closer than `min_distance` samples scipy keeps the higher one (the
lower one for valleys).
"""

import numpy as np
from scipy.signal import find_peaks as _scipy_find_peaks, peak_widths

from config import (
    SAMPLE_RATE_HZ,
    PEAK_MIN_DISTANCE,
    PEAK_HEIGHT_FRACTION,
    QUALITY_WEIGHT_PERIODICITY,
    QUALITY_WEIGHT_PERFUSION,
    QUALITY_WEIGHT_STABILITY,
    QUALITY_WEIGHT_SMOOTHNESS,
    QUALITY_PERFUSION_REFERENCE,
    QUALITY_MIN_LAG_S,
    QUALITY_MAX_LAG_S,
)

_EMPTY = np.empty(0, dtype=np.intp)


def _as_array(window) -> np.ndarray:
    x = np.asarray(window, dtype=np.float64).ravel()
    return x[np.isfinite(x)]


# ── Extrema ──────────────────────────────────────────────────────────────────

def find_peaks(
    window,
    min_distance: int = PEAK_MIN_DISTANCE,
    height_fraction: float = PEAK_HEIGHT_FRACTION,
) -> np.ndarray:
    """
    Indices of local maxima.

    Parameters
    ----------
    window          : array-like, shape (N,)
    min_distance    : int     Minimum samples between two peaks.
    height_fraction : float   Peaks must exceed min + fraction·range.

    Returns
    -------
    ndarray of int   Empty when the window is shorter than 3 samples or flat.
    """
    x = _as_array(window)
    if x.size < 3:
        return _EMPTY
    span = float(x.max() - x.min())
    if span <= 0:
        return _EMPTY
    peaks, _ = _scipy_find_peaks(
        x,
        height=float(x.min()) + height_fraction * span,
        distance=max(1, int(min_distance)),
    )
    return peaks


def find_valleys(
    window,
    min_distance: int = PEAK_MIN_DISTANCE,
    height_fraction: float = PEAK_HEIGHT_FRACTION,
) -> np.ndarray:
    """Indices of local minima (peaks of the inverted window)."""
    return find_peaks(-_as_array(window), min_distance, height_fraction)


def beats(window, min_distance: int = PEAK_MIN_DISTANCE) -> list[tuple[int, int, int]]:
    """
    Complete beats as ``(valley_before, peak, valley_after)`` index triplets.

    Peaks without a valley on both sides (window edges) are skipped.
    """
    peaks = find_peaks(window, min_distance)
    valleys = find_valleys(window, min_distance)
    triplets = []
    for p in peaks:
        before = valleys[valleys < p]
        after = valleys[valleys > p]
        if before.size and after.size:
            triplets.append((int(before[-1]), int(p), int(after[0])))
    return triplets


# ── Amplitude components ─────────────────────────────────────────────────────

def ac_component(window) -> float:
    """Pulsatile amplitude: max − min."""
    x = _as_array(window)
    return float(x.max() - x.min()) if x.size else 0.0


def dc_component(window) -> float:
    """Steady light level: mean."""
    x = _as_array(window)
    return float(x.mean()) if x.size else 0.0


def perfusion_index(window) -> float:
    """AC / DC.  0.0 when the DC level is not positive."""
    dc = dc_component(window)
    if dc <= 0:
        return 0.0
    return ac_component(window) / dc


# ── Timing & morphology ──────────────────────────────────────────────────────

def pulse_transit_time(window, fs: float = SAMPLE_RATE_HZ) -> float:
    """
    Mean inter-peak spacing converted to milliseconds.

    Returns 0.0 when fewer than two peaks are found.
    """
    peaks = find_peaks(window)
    if peaks.size < 2 or fs <= 0:
        return 0.0
    return float(np.mean(np.diff(peaks)) / fs * 1000.0)


def dicrotic_notch(window, peak_index: int, end_index: int | None = None) -> int | None:
    """
    Locate the dicrotic notch after a systolic peak.

    The descending limb just after the peak is concave (second derivative
    < 0).  The notch is where the curvature first turns convex.  The
    search stops at `end_index` (usually the following valley) or at the
    end of the window.

    Returns
    -------
    int | None   Sample index of the notch, or None if no sign change exists.
    """
    x = _as_array(window)
    if x.size < 4 or not 0 <= peak_index < x.size:
        return None
    stop = x.size - 1 if end_index is None else min(int(end_index), x.size - 1)

    # d2[i] is the curvature at sample i + 1
    d2 = np.diff(x, n=2)
    for i in range(peak_index, stop - 1):
        if i < 1 or i >= d2.size:
            continue
        if d2[i - 1] < 0 <= d2[i]:
            return i + 1
    return None


def pulse_width(window, peaks: np.ndarray | None = None) -> float:
    """Mean peak width (samples) at half prominence; 0.0 without peaks."""
    x = _as_array(window)
    if peaks is None:
        peaks = find_peaks(x)
    if x.size < 3 or len(peaks) == 0:
        return 0.0
    widths, *_ = peak_widths(x, peaks, rel_height=0.5)
    return float(np.mean(widths)) if widths.size else 0.0


# ── Spectrum ─────────────────────────────────────────────────────────────────

def spectrum(window, fs: float = SAMPLE_RATE_HZ) -> tuple[np.ndarray, np.ndarray]:
    """
    Power spectrum of the mean-removed window.

    The window is zero-padded to the next power of two (at least 256
    bins) for an efficient radix-2 FFT and finer frequency spacing.

    Returns
    -------
    freqs : ndarray   Frequency of each bin (Hz).
    power : ndarray   |FFT|² of each bin.
    """
    x = _as_array(window)
    if x.size < 2 or fs <= 0:
        return np.empty(0), np.empty(0)
    x = x - x.mean()
    n_fft = max(256, 1 << (x.size - 1).bit_length())   # next power of 2 ≥ len
    freqs = np.fft.rfftfreq(n_fft, d=1.0 / fs)
    power = np.abs(np.fft.rfft(x, n=n_fft)) ** 2
    return freqs, power


def band_power(freqs: np.ndarray, power: np.ndarray, low: float, high: float) -> float:
    """Summed power in [low, high) Hz."""
    if freqs.size == 0:
        return 0.0
    mask = (freqs >= low) & (freqs < high)
    return float(power[mask].sum())


# ── Quality ──────────────────────────────────────────────────────────────────

def _periodicity(x: np.ndarray, fs: float) -> float:
    """Highest normalised autocorrelation within the cardiac lag range."""
    min_lag = max(1, int(QUALITY_MIN_LAG_S * fs))
    max_lag = min(int(QUALITY_MAX_LAG_S * fs), x.size // 2)
    if max_lag < min_lag:
        return 0.0
    centred = x - x.mean()
    variance = float(np.dot(centred, centred)) / x.size
    if variance <= 0:
        return 0.0
    full = np.correlate(centred, centred, mode="full")[x.size - 1:]
    lags = np.arange(min_lag, max_lag + 1)
    # Unbiased estimate: divide each lag by the number of overlapping samples
    acf = full[lags] / ((x.size - lags) * variance)
    return float(np.clip(acf.max(), 0.0, 1.0))


def signal_quality(window, fs: float = SAMPLE_RATE_HZ) -> float:
    """
    Composite signal-quality score in [0, 1].

        0.4 × periodicity   (autocorrelation peak at a heartbeat lag)
      + 0.3 × perfusion     (AC/DC, saturating at QUALITY_PERFUSION_REFERENCE)
      + 0.2 × stability     (1 − drift of segment means relative to AC)
      + 0.1 × smoothness    (1 − mean |second difference| relative to AC)

    Returns 0.0 for windows too short to hold one cardiac lag, for flat
    windows and for a non-positive DC level.
    """
    x = _as_array(window)
    if x.size < 2 * max(1, int(QUALITY_MIN_LAG_S * fs)) or x.size < 8:
        return 0.0
    ac = float(x.max() - x.min())
    dc = float(x.mean())
    if ac <= 0 or dc <= 0:
        return 0.0

    periodicity = _periodicity(x, fs)
    perfusion = min(1.0, (ac / dc) / QUALITY_PERFUSION_REFERENCE)

    segment_means = [seg.mean() for seg in np.array_split(x, 4)]
    stability = 1.0 - min(1.0, (max(segment_means) - min(segment_means)) / ac)

    smoothness = 1.0 - min(1.0, 4.0 * float(np.mean(np.abs(np.diff(x, n=2)))) / ac)

    score = (
        QUALITY_WEIGHT_PERIODICITY * periodicity
        + QUALITY_WEIGHT_PERFUSION * perfusion
        + QUALITY_WEIGHT_STABILITY * stability
        + QUALITY_WEIGHT_SMOOTHNESS * smoothness
    )
    return float(np.clip(score, 0.0, 1.0))
