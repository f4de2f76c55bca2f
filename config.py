"""
config.py — Centralised configuration & hyper-parameters
=========================================================
Every tunable constant in the project lives here so that the rest of the
codebase can import from a single source of truth.

The regression coefficient tables for glucose and lipids are empirical
placeholders, NOT validated medical constants.  They are kept here (and
can be overridden per estimator instance) so they can be re-tuned
against reference measurements without touching the algorithms.
"""

import os

# ─── Runtime ─────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.environ.get("VITALS_LOG_LEVEL", "INFO").upper()
API_HOST: str = os.environ.get("VITALS_API_HOST", "0.0.0.0")
API_PORT: int = int(os.environ.get("VITALS_API_PORT", "8000"))
# Comma-separated list of allowed browser origins
API_CORS_ORIGINS: list[str] = [
    o.strip() for o in os.environ.get("VITALS_API_CORS_ORIGINS", "*").split(",") if o.strip()
]

# ─── Sampling ────────────────────────────────────────────────────────────────
SAMPLE_RATE_HZ: float = 30.0      # Nominal camera frame rate feeding the engine
SIGNAL_WINDOW_SIZE: int = 300     # Filtered samples kept for the estimators (10 s)

# ─── Preprocessing Filter Chain ──────────────────────────────────────────────
MEDIAN_WINDOW: int = 5            # Raw samples in the median (outlier) stage
MOVING_AVERAGE_WINDOW: int = 3    # Median outputs averaged in the MA stage
EMA_ALPHA: float = 0.4            # y = α·x + (1-α)·y_prev
BASELINE_FACTOR: float = 0.95     # baseline = baseline·k + y·(1-k)
DENOISE_STD_WINDOW: int = 15      # Normalised samples used for the dynamic threshold
DENOISE_THRESHOLD_FACTOR: float = 0.3   # threshold = factor × short-window std
DENOISE_MIN_GAIN: float = 0.3     # Weak values are attenuated, never zeroed
SG_WINDOW: int = 9                # Savitzky-Golay taps
SG_POLYORDER: int = 2

# Signal loss: the last LOW_SIGNAL_FRAMES raw samples spanning less than
# LOW_SIGNAL_THRESHOLD (peak to peak) resets all per-peak detection state.
LOW_SIGNAL_THRESHOLD: float = 0.03
LOW_SIGNAL_FRAMES: int = 10

# ─── Heart Rate / Peak Detection ─────────────────────────────────────────────
HR_WINDOW_SIZE: int = 60          # Samples used to normalise amplitude (2 s)
HR_MIN_SAMPLES: int = 30          # No output before this many samples
HR_BASELINE_FACTOR: float = 0.97
WARMUP_MS: int = 3000             # No peak is confirmed during the first 3 s
MIN_PEAK_TIME_MS: int = 600       # Refractory period between confirmed peaks
MIN_BPM: int = 40
MAX_BPM: int = 200
BPM_HISTORY_SIZE: int = 12
BPM_EMA_ALPHA: float = 0.2
PEAK_CONFIRMATION_BUFFER: int = 5
PEAK_BASELINE_RATIO: float = 0.98   # last_value must stay above 0.98·baseline
AMPLITUDE_CONFIDENCE_SPAN: float = 1.8
DERIVATIVE_CONFIDENCE_SPAN: float = 0.8

# Peak validation: amplitude compared with the last confirmed amplitudes
PEAK_VALIDATION_WINDOW: int = 5
PEAK_VALIDATION_MIN_HISTORY: int = 3
PEAK_VALIDATION_RATIO: float = 1.15   # reject if amplitude·1.15 < recent mean
PEAK_SPIKE_RATIO: float = 2.5         # reject if amplitude > 2.5 × recent mean

FINAL_BPM_MIN_SAMPLES: int = 5
FINAL_BPM_TRIM: float = 0.2       # Fraction discarded at each end
RR_HISTORY_SIZE: int = 50

# Adaptive thresholds (amplitudes and derivatives are in units of the
# recent signal range, so they are independent of camera brightness).
DEFAULT_SIGNAL_THRESHOLD: float = 0.10
DEFAULT_MIN_CONFIDENCE: float = 0.50
DEFAULT_DERIVATIVE_THRESHOLD: float = -0.005
ADAPTIVE_TUNING_PEAK_WINDOW: int = 20
ADAPTIVE_LEARNING_RATE: float = 0.1
ADAPTIVE_AMPLITUDE_FACTOR: float = 0.6
ADAPTIVE_DERIVATIVE_FACTOR: float = 0.5
ADAPTIVE_CONFIDENCE_DRIFT: float = 0.02
MIN_ADAPTIVE_SIGNAL_THRESHOLD: float = 0.05
MAX_ADAPTIVE_SIGNAL_THRESHOLD: float = 0.35
MIN_ADAPTIVE_MIN_CONFIDENCE: float = 0.20
MAX_ADAPTIVE_MIN_CONFIDENCE: float = 0.80
MIN_ADAPTIVE_DERIVATIVE_THRESHOLD: float = -0.10
MAX_ADAPTIVE_DERIVATIVE_THRESHOLD: float = -0.001

# ─── HRV / Arrhythmia ────────────────────────────────────────────────────────
HRV_MIN_PEAKS: int = 5            # Intervals needed for the HRV summary
HRV_ENTROPY_BINS: int = 8
HRV_FLAT_SPREAD_MS: float = 1e-6   # Below this spread the histogram is a single bin
SAMPLE_ENTROPY_M: int = 2
SAMPLE_ENTROPY_R: float = 0.2     # Tolerance as a fraction of the RR std

ARRHYTHMIA_LEARNING_INTERVALS: int = 3
ARRHYTHMIA_WINDOW: int = 5
ARRHYTHMIA_MIN_BATCH: int = 3
ARRHYTHMIA_RMSSD_FACTOR: float = 1.5
ARRHYTHMIA_MEAN_SD_FACTOR: float = 2.0
ARRHYTHMIA_SD_FACTOR: float = 1.8
RR_OUTLIER_LOW: float = 0.6
RR_OUTLIER_HIGH: float = 1.4
# Floors keep a perfectly regular baseline from flagging frame-quantisation
# jitter (one frame at 30 fps is ~33 ms).
BASELINE_RMSSD_FLOOR_MS: float = 50.0
BASELINE_RR_SD_FLOOR_MS: float = 40.0
MIN_TIME_BETWEEN_ARRHYTHMIAS_MS: int = 1200
ARRHYTHMIA_HOLD_MS: int = 800     # "ARRHYTHMIA DETECTED" shown this long
ARRHYTHMIA_MIN_CONFIDENCE: float = 0.35
ARRHYTHMIA_RELEARN_RUN: int = 4   # Consecutive anomalies → learn a new baseline

# ─── Signal Quality ──────────────────────────────────────────────────────────
QUALITY_WEIGHT_PERIODICITY: float = 0.4
QUALITY_WEIGHT_PERFUSION: float = 0.3
QUALITY_WEIGHT_STABILITY: float = 0.2
QUALITY_WEIGHT_SMOOTHNESS: float = 0.1
QUALITY_PERFUSION_REFERENCE: float = 0.02   # PI at which the perfusion term saturates
QUALITY_MIN_LAG_S: float = 0.3              # Autocorrelation search range (200 BPM …
QUALITY_MAX_LAG_S: float = 1.5              # … 40 BPM)

# ─── Feature Extraction ──────────────────────────────────────────────────────
PEAK_MIN_DISTANCE: int = 15       # Samples between peaks (~0.5 s at 30 fps)
PEAK_HEIGHT_FRACTION: float = 0.3 # Peaks must rise above min + 0.3·range

# ─── SpO2 ────────────────────────────────────────────────────────────────────
SPO2_WINDOW: int = 90
SPO2_MIN_SAMPLES: int = 30
SPO2_MIN_PERFUSION: float = 0.02
SPO2_INTERCEPT: float = 110.0     # spo2 = 110 - 25·R
SPO2_SLOPE: float = 25.0
SPO2_MIN: int = 70
SPO2_MAX: int = 100
SPO2_AVERAGE_BUFFER: int = 10
SPO2_MEDIAN_BUFFER: int = 5

# ─── Blood Pressure ──────────────────────────────────────────────────────────
BP_WINDOW: int = 250
BP_MIN_SAMPLES: int = 30
BP_MIN_CALIBRATION_SAMPLES: int = 90
BP_MIN_PERFUSION: float = 0.01
BP_MIN_QUALITY: float = 0.4
BP_FULL_TRUST_QUALITY: float = 0.8   # Below this, estimates regress toward base
BP_BASE_SYSTOLIC: float = 120.0
BP_BASE_DIASTOLIC: float = 80.0
BP_TERM_LIMIT: float = 15.0          # Each feature moves BP by at most ±15 mmHg
BP_HAMPEL_WINDOW: int = 7
BP_HAMPEL_SIGMAS: float = 2.5
BP_MIN_BEAT_SAMPLES: int = 15        # 120 BPM at 30 fps
BP_MAX_BEAT_SAMPLES: int = 90        # 20 BPM at 30 fps
BP_MEASUREMENT_BUFFER: int = 25
BP_FINAL_BUFFER: int = 20
BP_COMPLETION_DELAY_MS: int = 2000
BP_FINAL_WEIGHT_DECAY: float = 1.4   # Weight grows ×1.4 per more-recent estimate

# feature → (reference, systolic coefficient, diastolic coefficient)
# term = (feature - reference) × coefficient, clipped to ±BP_TERM_LIMIT
BP_COEFFICIENTS: dict[str, tuple[float, float, float]] = {
    "heart_rate":         (70.0,   0.50,   0.30),
    "amplitude":          (0.0,    1.40,  -0.60),    # perfusion, percent
    "pulse_transit_time": (800.0, -0.03,  -0.02),    # ms
    "peak_valley_ratio":  (1.5,    3.00,   7.00),
    "waveform_width":     (25.0,  -0.24,  -0.16),    # samples at half height
    "notch_ratio":        (0.65, -10.00, -14.00),
}

SYSTOLIC_RANGE: tuple[int, int] = (90, 180)
DIASTOLIC_RANGE: tuple[int, int] = (60, 110)
PULSE_PRESSURE_RANGE: tuple[int, int] = (25, 75)

# ─── Glucose (NIR / Beer-Lambert placeholder model) ──────────────────────────
GLUCOSE_WINDOW: int = 240          # 8 s at 30 fps
GLUCOSE_MIN_CALIBRATION_SAMPLES: int = 180
GLUCOSE_MIN_PERFUSION: float = 0.045
GLUCOSE_MIN_QUALITY: float = 0.55
GLUCOSE_QUALITY_HISTORY: int = 10
GLUCOSE_MEDIAN_BUFFER: int = 5
GLUCOSE_WAVELENGTHS_NM: tuple[float, ...] = (660.0, 700.0, 760.0, 850.0, 940.0)
GLUCOSE_EXTINCTION_COEFFS: tuple[float, ...] = (0.0234, 0.0198, 0.0167, 0.0141, 0.0118)
GLUCOSE_WAVELENGTH_WEIGHTS: tuple[float, ...] = (0.15, 0.15, 0.20, 0.25, 0.25)
GLUCOSE_REFERENCE_WAVELENGTH_NM: float = 940.0
GLUCOSE_SCATTERING_EXPONENT: float = 1.2
GLUCOSE_PULSATILE_PATH_CM: float = 0.3
GLUCOSE_MG_PER_MMOL: float = 18.016
GLUCOSE_RANGE: tuple[int, int] = (70, 400)

# ─── Lipids ──────────────────────────────────────────────────────────────────
LIPID_WINDOW: int = 300
LIPID_MIN_SAMPLES: int = 150
LIPID_MIN_CONFIDENCE: float = 0.7
LIPID_MAX_CHANGE: float = 15.0     # mg/dL per accepted measurement
LIPID_MEDIAN_BUFFER: int = 5
# Spectral bands (Hz) used as relative band-power features
LIPID_BANDS: dict[str, tuple[float, float]] = {
    "very_low": (0.04, 0.15),
    "low":      (0.15, 0.40),
    "mid":      (0.40, 1.00),
    "high":     (1.00, 2.00),
}
LIPID_FEATURES: tuple[str, ...] = (
    "waveform_area", "systolic_slope", "diastolic_slope", "peak_interval",
    "inflection_area", "very_low", "low", "mid", "high",
)
# Typical feature values; the projection works on deviations from these
LIPID_FEATURE_REFERENCE: tuple[float, ...] = (0.5, 0.12, 0.06, 0.8, 0.8, 0.05, 0.05, 0.2, 0.5)
CHOLESTEROL_COEFFS: tuple[float, ...] = (12.5, -8.2, 6.5, -4.0, 15.2, 7.8, -5.2, 3.5, -9.8)
TRIGLYCERIDE_COEFFS: tuple[float, ...] = (8.5, -5.8, 4.2, -3.0, 12.5, 6.2, -4.5, 2.8, -7.2)
CHOLESTEROL_BASE: float = 180.0
CHOLESTEROL_SCALE: float = 60.0
TRIGLYCERIDE_BASE: float = 150.0
TRIGLYCERIDE_SCALE: float = 90.0
CHOLESTEROL_RANGE: tuple[int, int] = (100, 300)
TRIGLYCERIDE_RANGE: tuple[int, int] = (50, 500)

# ─── Hemoglobin (Beer-Lambert style AC/DC model) ────────────────────────────
HEMOGLOBIN_WINDOW: int = 300
HEMOGLOBIN_MIN_SAMPLES: int = 50
HEMOGLOBIN_MIN_PERFUSION: float = 0.005
HEMOGLOBIN_BASE: float = 12.5      # g/dL at AC/DC = 1
HEMOGLOBIN_SLOPE: float = 2.5      # g/dL per unit of AC/DC
HEMOGLOBIN_RANGE: tuple[float, float] = (8.0, 18.0)
HEMOGLOBIN_MEDIAN_BUFFER: int = 5

# ─── Calibration (shared) ────────────────────────────────────────────────────
CALIBRATION_FACTOR_RANGE: tuple[float, float] = (0.5, 2.0)
CALIBRATION_REQUIRED_SAMPLES: int = 100
CALIBRATION_DURATION_MS: int = 10000
# Per-metric progress weighting (progress = base fraction × weight)
CALIBRATION_WEIGHTS: dict[str, float] = {
    "heart_rate":     1.00,
    "spo2":           0.95,
    "blood_pressure": 0.90,
    "arrhythmia":     0.95,
    "glucose":        0.95,
    "lipids":         0.85,
}

# ─── API ─────────────────────────────────────────────────────────────────────
API_TITLE = "PPG Vital-Signs Engine API"
API_VERSION = "0.1.0"
