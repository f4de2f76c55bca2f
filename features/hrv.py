"""
features/hrv.py — Heart Rate Variability & arrhythmia screening
================================================================
Two layers live here:

1. `compute_hrv(rr_ms)` — a stateless summary of an RR-interval series:

       SDNN            — standard deviation of NN intervals
       RMSSD           — root mean square of successive differences
       pNN50           — % of successive differences > 50 ms
       Shannon entropy — spread of the interval histogram (8 bins)
       Sample entropy  — regularity of the sequence (m = 2, r = 0.2·SD)

2. `ArrhythmiaAnalyzer` — a streaming screener fed one RR interval per
   confirmed beat:

       Calibrating (learn baseline RMSSD / mean / SD)  →  Analyzing

   Each new interval is judged together with the last few *normal*
   intervals.  It is anomalous if the batch RMSSD, mean or SD departs
   from the baseline, or if the interval itself lies outside
   [0.6, 1.4] × the recent average.  Anomalous intervals never enter the
   normal history, so one ectopic beat is reported once rather than for
   as long as it stays inside the window.  A run of anomalies is taken
   as a genuine change of rhythm, and the baseline is relearned from it.

Rate limiting
-------------
At most one detection is counted per `MIN_TIME_BETWEEN_ARRHYTHMIAS_MS`.
The status reads "ARRHYTHMIA DETECTED|n" for `ARRHYTHMIA_HOLD_MS` after a
detection, then falls back to "NORMAL RHYTHM|n", or to "WEAK SIGNAL|n"
when the normal rhythm itself has drifted far from the baseline.

⚠️  Screening heuristic only.  Camera PPG at 30 fps quantises intervals
    to ~33 ms, which is far too coarse for clinical HRV or rhythm
    diagnosis.
"""

from dataclasses import dataclass, field

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from config import (
    HRV_MIN_PEAKS,
    HRV_ENTROPY_BINS,
    HRV_FLAT_SPREAD_MS,
    SAMPLE_ENTROPY_M,
    SAMPLE_ENTROPY_R,
    RR_HISTORY_SIZE,
    ARRHYTHMIA_LEARNING_INTERVALS,
    ARRHYTHMIA_WINDOW,
    ARRHYTHMIA_MIN_BATCH,
    ARRHYTHMIA_RMSSD_FACTOR,
    ARRHYTHMIA_MEAN_SD_FACTOR,
    ARRHYTHMIA_SD_FACTOR,
    RR_OUTLIER_LOW,
    RR_OUTLIER_HIGH,
    BASELINE_RMSSD_FLOOR_MS,
    BASELINE_RR_SD_FLOOR_MS,
    MIN_TIME_BETWEEN_ARRHYTHMIAS_MS,
    ARRHYTHMIA_HOLD_MS,
    ARRHYTHMIA_MIN_CONFIDENCE,
    ARRHYTHMIA_RELEARN_RUN,
)
from utils.buffers import SlidingWindow
from utils.logger import get_logger

logger = get_logger("features.hrv")

STATUS_CALIBRATING = "CALIBRATING..."
STATUS_ARRHYTHMIA = "ARRHYTHMIA DETECTED"
STATUS_NORMAL = "NORMAL RHYTHM"
STATUS_WEAK = "WEAK SIGNAL"


# ── Statistics ───────────────────────────────────────────────────────────────

def rmssd(rr_ms) -> float:
    """Root mean square of successive differences (0.0 for < 2 intervals)."""
    rr = np.asarray(rr_ms, dtype=np.float64)
    if rr.size < 2:
        return 0.0
    return float(np.sqrt(np.mean(np.diff(rr) ** 2)))


def rr_std(rr_ms) -> float:
    """Sample standard deviation (0.0 for < 2 intervals)."""
    rr = np.asarray(rr_ms, dtype=np.float64)
    if rr.size < 2:
        return 0.0
    return float(np.std(rr, ddof=1))


def shannon_entropy(rr_ms, bins: int = HRV_ENTROPY_BINS) -> float:
    """Entropy (bits) of the interval histogram."""
    rr = np.asarray(rr_ms, dtype=np.float64)
    if rr.size < 2 or np.ptp(rr) < HRV_FLAT_SPREAD_MS:
        # Intervals equal up to float rounding all fall in one bin
        return 0.0
    counts, _ = np.histogram(rr, bins=bins)
    p = counts[counts > 0] / counts.sum()
    return float(-np.sum(p * np.log2(p)))


def sample_entropy(rr_ms, m: int = SAMPLE_ENTROPY_M, r_factor: float = SAMPLE_ENTROPY_R) -> float | None:
    """
    Sample entropy of the interval sequence.

    Counts template pairs of length m and m+1 whose Chebyshev distance is
    within r = r_factor·SD (self-matches excluded).  None when either
    count is zero (entropy undefined) or the series is too short.
    """
    rr = np.asarray(rr_ms, dtype=np.float64)
    n = rr.size
    if n < m + 2:
        return None
    tolerance = r_factor * float(np.std(rr))

    def _pairs(length: int) -> int:
        templates = sliding_window_view(rr, length)[: n - m]
        distances = np.max(np.abs(templates[:, None, :] - templates[None, :, :]), axis=2)
        return int((np.count_nonzero(distances <= tolerance) - len(templates)) // 2)

    b = _pairs(m)
    a = _pairs(m + 1)
    if a == 0 or b == 0:
        return None
    return float(-np.log(a / b))


def compute_hrv(rr_intervals: list[float]) -> dict:
    """
    Compute HRV features from RR intervals.

    Parameters
    ----------
    rr_intervals : list[float]
        Successive RR intervals in **milliseconds**.

    Returns
    -------
    dict with keys:
        sdnn_ms, rmssd_ms, pnn50, mean_rr_ms, shannon_entropy,
        sample_entropy : float | None
        num_beats      : int
        valid          : bool   False (and all metrics None) with fewer
                                than HRV_MIN_PEAKS intervals.
    """
    num_beats = len(rr_intervals)
    if num_beats < HRV_MIN_PEAKS:
        return {
            "sdnn_ms": None,
            "rmssd_ms": None,
            "pnn50": None,
            "mean_rr_ms": None,
            "shannon_entropy": None,
            "sample_entropy": None,
            "num_beats": num_beats,
            "valid": False,
        }

    rr_ms = np.asarray(rr_intervals, dtype=np.float64)
    successive_diffs = np.diff(rr_ms)
    pnn50 = float(np.sum(np.abs(successive_diffs) > 50.0) / len(successive_diffs) * 100.0)
    samp_en = sample_entropy(rr_ms)

    return {
        "sdnn_ms": round(rr_std(rr_ms), 2),
        "rmssd_ms": round(rmssd(rr_ms), 2),
        "pnn50": round(pnn50, 2),
        "mean_rr_ms": round(float(np.mean(rr_ms)), 2),
        "shannon_entropy": round(shannon_entropy(rr_ms), 4),
        "sample_entropy": round(samp_en, 4) if samp_en is not None else None,
        "num_beats": num_beats,
        "valid": True,
    }


# ── Streaming analyzer ───────────────────────────────────────────────────────

@dataclass
class ArrhythmiaEvent:
    timestamp_ms: float
    rmssd: float
    rr_variation: float     # |last RR − recent mean| / recent mean


@dataclass
class ArrhythmiaResult:
    status: str                          # "<LABEL>|<count or progress>"
    count: int
    is_arrhythmia: bool
    confidence: float
    last_event: ArrhythmiaEvent | None = None
    metrics: dict = field(default_factory=dict)


class ArrhythmiaAnalyzer:
    """Learns a personal RR baseline, then screens every new interval."""

    def __init__(self):
        self._normal = SlidingWindow(RR_HISTORY_SIZE)
        self.reset()

    # ── Public API ───────────────────────────────────────────────────────────

    def process_rr(self, interval_ms: float, timestamp_ms: float) -> ArrhythmiaResult:
        """Feed the RR interval that ended at `timestamp_ms`."""
        interval_ms = float(interval_ms)

        if self._learning is not None:
            self._learning.append(interval_ms)
            self._normal.push(interval_ms)
            if len(self._learning) >= ARRHYTHMIA_LEARNING_INTERVALS:
                self._finish_learning()
            return self.status(timestamp_ms)

        previous = self._normal.values()[-(ARRHYTHMIA_WINDOW - 1):]
        if len(previous) + 1 < ARRHYTHMIA_MIN_BATCH:
            self._normal.push(interval_ms)
            return self.status(timestamp_ms)

        anomalous, batch_rmssd, variation = self._evaluate(previous, interval_ms)
        if anomalous:
            self._anomaly_run.append(interval_ms)
            self._register_detection(timestamp_ms, batch_rmssd, variation)
            if len(self._anomaly_run) >= ARRHYTHMIA_RELEARN_RUN:
                self._relearn()
        else:
            self._anomaly_run.clear()
            self._normal.push(interval_ms)

        self._update_confidence()
        return self.status(timestamp_ms)

    def status(self, now_ms: float) -> ArrhythmiaResult:
        """Current status; the detected flag decays after the hold time."""
        metrics = compute_hrv(self._normal.values())

        if self._learning is not None:
            progress = int(100 * len(self._learning) / ARRHYTHMIA_LEARNING_INTERVALS)
            return ArrhythmiaResult(
                status=f"{STATUS_CALIBRATING}|{progress}",
                count=self._count,
                is_arrhythmia=False,
                confidence=0.0,
                metrics=metrics,
            )

        active = self._last_detection_ms is not None and now_ms - self._last_detection_ms < ARRHYTHMIA_HOLD_MS
        if active:
            label = STATUS_ARRHYTHMIA
        elif self._confidence < ARRHYTHMIA_MIN_CONFIDENCE:
            label = STATUS_WEAK
        else:
            label = STATUS_NORMAL
        return ArrhythmiaResult(
            status=f"{label}|{self._count}",
            count=self._count,
            is_arrhythmia=active,
            confidence=self._confidence,
            last_event=self._last_event if active else None,
            metrics=metrics,
        )

    @property
    def count(self) -> int:
        return self._count

    @property
    def is_calibrating(self) -> bool:
        return self._learning is not None

    @property
    def baseline(self) -> dict[str, float]:
        return {
            "rmssd_ms": self._baseline_rmssd,
            "mean_rr_ms": self._baseline_mean,
            "sd_ms": self._baseline_sd,
        }

    def reset(self) -> None:
        self._learning: list[float] | None = []
        self._normal.clear()
        self._anomaly_run: list[float] = []
        self._baseline_rmssd = 0.0
        self._baseline_mean = 0.0
        self._baseline_sd = 0.0
        self._count = 0
        self._last_detection_ms: float | None = None
        self._last_event: ArrhythmiaEvent | None = None
        self._confidence = 0.0

    # ── Internals ────────────────────────────────────────────────────────────

    def _finish_learning(self) -> None:
        learned = np.asarray(self._learning, dtype=np.float64)
        self._baseline_rmssd = rmssd(learned)
        self._baseline_mean = float(learned.mean())
        self._baseline_sd = rr_std(learned)
        self._learning = None
        self._update_confidence()
        logger.info(
            "RR baseline learned: mean=%.0f ms  SD=%.1f ms  RMSSD=%.1f ms",
            self._baseline_mean, self._baseline_sd, self._baseline_rmssd,
        )

    def _relearn(self) -> None:
        logger.info("%d consecutive irregular intervals; relearning the RR baseline.", len(self._anomaly_run))
        self._learning = list(self._anomaly_run)
        self._normal.clear()
        self._normal.extend(self._anomaly_run)
        self._anomaly_run.clear()
        self._finish_learning()

    def _effective_baseline(self) -> tuple[float, float]:
        return (
            max(self._baseline_rmssd, BASELINE_RMSSD_FLOOR_MS),
            max(self._baseline_sd, BASELINE_RR_SD_FLOOR_MS),
        )

    def _evaluate(self, previous: list[float], last: float) -> tuple[bool, float, float]:
        batch = np.asarray(previous + [last], dtype=np.float64)
        batch_rmssd = rmssd(batch)
        batch_mean = float(batch.mean())
        batch_sd = rr_std(batch)
        recent_avg = float(np.mean(previous))
        base_rmssd, base_sd = self._effective_baseline()

        anomalous = (
            batch_rmssd > base_rmssd * ARRHYTHMIA_RMSSD_FACTOR
            or abs(batch_mean - self._baseline_mean) > base_sd * ARRHYTHMIA_MEAN_SD_FACTOR
            or batch_sd > base_sd * ARRHYTHMIA_SD_FACTOR
            or not RR_OUTLIER_LOW * recent_avg <= last <= RR_OUTLIER_HIGH * recent_avg
        )
        variation = abs(last - recent_avg) / recent_avg if recent_avg > 0 else 0.0
        return anomalous, batch_rmssd, variation

    def _register_detection(self, timestamp_ms: float, batch_rmssd: float, variation: float) -> None:
        if (
            self._last_detection_ms is not None
            and timestamp_ms - self._last_detection_ms < MIN_TIME_BETWEEN_ARRHYTHMIAS_MS
        ):
            logger.debug("Irregular interval at %.0f ms inside the rate-limit window.", timestamp_ms)
            return
        self._count += 1
        self._last_detection_ms = timestamp_ms
        self._last_event = ArrhythmiaEvent(
            timestamp_ms=timestamp_ms,
            rmssd=batch_rmssd,
            rr_variation=variation,
        )
        logger.info(
            "Arrhythmia #%d at %.0f ms (RMSSD=%.1f ms, variation=%.0f%%)",
            self._count, timestamp_ms, batch_rmssd, variation * 100,
        )

    def _update_confidence(self) -> None:
        window = self._normal.values()[-ARRHYTHMIA_WINDOW:]
        if len(window) < ARRHYTHMIA_MIN_BATCH:
            self._confidence = 0.0
            return
        base_rmssd, base_sd = self._effective_baseline()
        scores = [
            np.exp(-abs(rmssd(window) - self._baseline_rmssd) / (4 * base_rmssd)),
            np.exp(-abs(float(np.mean(window)) - self._baseline_mean) / (4 * base_sd)),
            np.exp(-abs(rr_std(window) - self._baseline_sd) / (4 * base_sd)),
        ]
        self._confidence = float(np.mean(scores))
