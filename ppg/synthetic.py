"""
ppg/synthetic.py — Deterministic synthetic PPG signals
=======================================================
Generates brightness traces that look like what the camera adapter
feeds into the engine: a DC level plus a cardiac pulse plus optional
Gaussian noise.  Used by the CLI demo (no camera needed) and by the
tests, which rely on identical seeds producing identical samples.

Two morphologies are available:

* ``"sine"``  — a pure sinusoid; ideal for checking rate estimation.
* ``"pulse"`` — raised-cosine systolic upstroke (30 % of the cycle)
  followed by an exponential diastolic run-off with a small reflected
  wave, which produces a visible dicrotic notch.
"""

import numpy as np

from config import SAMPLE_RATE_HZ

_MORPHOLOGIES = ("sine", "pulse")
_SYSTOLIC_FRACTION = 0.3


def _pulse_shape(phase: np.ndarray) -> np.ndarray:
    """Unit-height beat shape for phases in [0, 2π)."""
    systole = _SYSTOLIC_FRACTION * 2 * np.pi
    shape = np.empty_like(phase)

    rising = phase < systole
    shape[rising] = 0.5 * (1.0 - np.cos(np.pi * phase[rising] / systole))

    delta = phase[~rising] - systole
    reflected = 0.25 * np.exp(-(((delta - 1.2) / 0.35) ** 2))
    shape[~rising] = np.exp(-3.0 * delta) + reflected
    return shape


def synthetic_ppg(
    bpm: float = 75.0,
    seconds: float = 10.0,
    fs: float = SAMPLE_RATE_HZ,
    dc: float = 100.0,
    amplitude: float = 5.0,
    noise: float = 0.0,
    morphology: str = "sine",
    seed: int | None = None,
    start_ms: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Build a synthetic PPG trace.

    Parameters
    ----------
    bpm        : float   Heart rate of the simulated pulse.
    seconds    : float   Trace length.
    fs         : float   Sampling rate (Hz).
    dc         : float   Mean brightness level.
    amplitude  : float   Half peak-to-peak pulse amplitude.
    noise      : float   Std of additive Gaussian noise (0 → clean).
    morphology : str     'sine' or 'pulse'.
    seed       : int     Seed for the noise generator.
    start_ms   : float   Timestamp of the first sample.

    Returns
    -------
    timestamps_ms : ndarray, shape (N,)
    values        : ndarray, shape (N,)
    """
    if morphology not in _MORPHOLOGIES:
        raise ValueError(f"Unknown morphology '{morphology}'. Choose from {list(_MORPHOLOGIES)}.")

    n = int(round(seconds * fs))
    t = np.arange(n, dtype=np.float64) / fs
    timestamps_ms = start_ms + t * 1000.0

    phase = 2 * np.pi * (bpm / 60.0) * t
    if morphology == "sine":
        pulse = np.sin(phase)
    else:
        pulse = 2.0 * _pulse_shape(np.mod(phase, 2 * np.pi)) - 1.0

    values = dc + amplitude * pulse
    if noise > 0:
        rng = np.random.default_rng(seed)
        values = values + rng.normal(0.0, noise, n)

    return timestamps_ms, values
