#!/usr/bin/env python3
"""
demo_cli.py — Standalone command-line demo
============================================
Replays a recorded or synthetic PPG trace through `VitalsEngine`
WITHOUT the FastAPI server.  Useful for quick testing, demos, and
debugging.

Usage:
    python demo_cli.py --bpm 72 --duration 30 --noise 0.2 --calibrate
    python demo_cli.py --csv recording.csv --every 30

CSV format: one ``timestamp_ms,value`` pair per line; a header line is
allowed.

⚠️  DISCLAIMER: See model/blood_pressure.py, model/glucose.py and model/hemoglobin.py for
    disclaimers.  This is a WELLNESS ESTIMATION tool — NOT a medical device.
"""

import argparse
import csv
import sys

import numpy as np

from engine.processor import VitalsEngine
from ppg.synthetic import synthetic_ppg
from utils.logger import get_logger

logger = get_logger("demo_cli")


def pretty_print(label: str, value, unit: str = "") -> None:
    """Colourised terminal output."""
    print(f"  \033[1;36m{label:<28}\033[0m \033[1;33m{value}\033[0m {unit}")


def load_csv(path: str) -> tuple[np.ndarray, np.ndarray]:
    """Read ``timestamp_ms,value`` rows; non-numeric rows (headers) are skipped."""
    timestamps, values = [], []
    with open(path, newline="") as fh:
        for row in csv.reader(fh):
            if len(row) < 2:
                continue
            try:
                timestamps.append(float(row[0]))
                values.append(float(row[1]))
            except ValueError:
                continue
    if not values:
        raise ValueError(f"No samples found in {path}.")
    return np.asarray(timestamps), np.asarray(values)


def main():
    parser = argparse.ArgumentParser(description="PPG Vital Signs CLI Demo")
    parser.add_argument("--csv", type=str, default=None, help="Replay a timestamp_ms,value CSV file")
    parser.add_argument("--bpm", type=float, default=72.0, help="Synthetic heart rate")
    parser.add_argument("--duration", type=float, default=30.0, help="Synthetic trace length (seconds)")
    parser.add_argument("--noise", type=float, default=0.1, help="Synthetic noise std")
    parser.add_argument("--seed", type=int, default=7, help="Noise seed")
    parser.add_argument("--morphology", type=str, default="pulse", choices=["sine", "pulse"])
    parser.add_argument("--calibrate", action="store_true", help="Run the calibration phase first")
    parser.add_argument("--every", type=int, default=60, help="Print a reading every N samples")
    args = parser.parse_args()

    print("\n" + "=" * 60)
    print("  PPG VITAL SIGNS ENGINE — CLI DEMO")
    print("=" * 60)
    print("  ⚠️  This is a WELLNESS ESTIMATION tool — NOT medical grade.")
    print("=" * 60 + "\n")

    # ── Load the trace ───────────────────────────────────────────────────
    if args.csv:
        try:
            timestamps, values = load_csv(args.csv)
        except (OSError, ValueError) as e:
            print(f"  ERROR: {e}")
            sys.exit(1)
        print(f"  Source       : {args.csv} ({values.size} samples)")
    else:
        timestamps, values = synthetic_ppg(
            bpm=args.bpm,
            seconds=args.duration,
            noise=args.noise,
            morphology=args.morphology,
            seed=args.seed,
        )
        print(f"  Source       : synthetic {args.morphology}, {args.bpm:.0f} BPM, "
              f"{args.duration:.0f} s, noise={args.noise}")
    print()

    # ── Replay ───────────────────────────────────────────────────────────
    logger.info("Replaying %d samples through the engine…", values.size)
    engine = VitalsEngine()
    if args.calibrate:
        engine.start_calibration()

    every = max(1, args.every)
    reading = None
    for i, (t, v) in enumerate(zip(timestamps, values), start=1):
        reading = engine.process(float(v), float(t))
        if i % every == 0:
            out = reading.to_dict()
            print(f"  t={t / 1000.0:6.1f}s  HR={out['heart_rate']:>3}  SpO2={out['spo2']:>3}  "
                  f"BP={out['blood_pressure']:>7}  GLU={out['glucose']:>3}  "
                  f"{out['arrhythmia_status']}")

    # Final BP needs the completion delay worth of samples after this call
    engine.finish_measurement(float(timestamps[-1]))
    period = float(np.median(np.diff(timestamps))) if timestamps.size > 1 else 1000.0 / 30.0
    tail_start = max(0, values.size - 90)
    for k, v in enumerate(values[tail_start:], start=1):
        engine.process(float(v), float(timestamps[-1]) + k * period)

    # ── Pretty-print results ─────────────────────────────────────────────
    summary = engine.summary()
    last = reading.to_dict() if reading else {}

    print("\n" + "=" * 60)
    print("  RESULTS")
    print("=" * 60)
    print("\n  ── Heart Rate ──")
    pretty_print("Final heart rate", summary["final_bpm"], "BPM")
    pretty_print("RR intervals", len(summary["rr_intervals_ms"]))
    pretty_print("Rhythm", last.get("arrhythmia_status", "--"))

    hrv = summary["hrv"]
    print("\n  ── Heart Rate Variability ──")
    if hrv["valid"]:
        pretty_print("SDNN", hrv["sdnn_ms"], "ms")
        pretty_print("RMSSD", hrv["rmssd_ms"], "ms")
        pretty_print("pNN50", hrv["pnn50"], "%")
        pretty_print("Sample entropy", hrv["sample_entropy"])
    else:
        print("    ⚠️  Insufficient beats for HRV calculation.")

    print("\n  ── Other Vitals (ESTIMATED) ──")
    pretty_print("SpO2", last.get("spo2", 0), "%")
    pretty_print("Blood pressure (final)", summary["final_blood_pressure"] or "--/--", "mmHg")
    pretty_print("Glucose", last.get("glucose", 0), "mg/dL")
    lipids = last.get("lipids", {})
    pretty_print("Cholesterol", lipids.get("cholesterol", 0), "mg/dL")
    pretty_print("Triglycerides", lipids.get("triglycerides", 0), "mg/dL")
    pretty_print("Hemoglobin", last.get("hemoglobin", 0), "g/dL")

    print("\n" + "=" * 60)
    print("  ⚠️  DISCLAIMER: All values above are ESTIMATES.")
    print("      Do NOT use for medical diagnosis or treatment.")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    main()
