"""Replay a recorded sensor stream through the heading pipeline.

Input is JSON Lines, one sample per line:

    {"sensor": "rotation_vector", "values": [0.0, 0.0, 0.38, 0.92]}
    {"sensor": "magnetic_field", "accuracy": 1}

Lines carrying "accuracy" are forwarded as accuracy changes.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional

from compasskit.core.config import SENSOR_VARIANTS, load_settings
from compasskit.navigation import SensorUnavailable, format_heading
from compasskit.runtime import CompassRuntime


def read_samples(path: str) -> Iterator[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{lineno}: invalid JSON ({exc.msg})") from exc
            if not isinstance(record, dict) or "sensor" not in record:
                raise ValueError(f"{path}:{lineno}: expected an object with a 'sensor' key")
            yield record


def replay(path: str, runtime: CompassRuntime, sensors: Optional[List[str]] = None) -> int:
    try:
        records = list(read_samples(path))
    except ValueError as exc:
        print(f"Invalid sample file: {exc}")
        return 1
    available = sensors or sorted({str(r["sensor"]) for r in records})
    try:
        runtime.start(available)
    except SensorUnavailable as exc:
        print(f"No usable compass sensors: {exc}")
        return 1
    for i, record in enumerate(records):
        try:
            if "accuracy" in record:
                runtime.on_accuracy_changed(str(record["sensor"]), int(record["accuracy"]))
                continue
            update = runtime.handle_sample(str(record["sensor"]), record.get("values") or [])
        except (TypeError, ValueError) as exc:
            print(f"Invalid sample {i}: {exc}")
            runtime.stop()
            return 1
        if update is not None:
            print({
                "sample": i,
                "heading": round(update.display_heading, 3),
                "text": format_heading(update.display_heading),
                "rotation": round(update.rotation_target, 3),
            })
    runtime.stop()
    s = runtime.snapshot()
    print({"samples": s.total_samples, "updates": s.total_updates, "rejected": s.rejected_samples})
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Replay recorded compass sensor samples")
    ap.add_argument("path", help="JSON Lines file of sensor samples")
    ap.add_argument("--alpha", type=float, default=None, help="Smoothing coefficient (0, 1]")
    ap.add_argument("--threshold", type=float, default=None, help="Emit threshold in degrees")
    ap.add_argument("--variant", choices=SENSOR_VARIANTS, default=None, help="Force the orientation source")
    ap.add_argument("--sensors", nargs="*", default=None, help="Sensors reported as available (default: those in the file)")
    args = ap.parse_args(argv)

    if not os.path.exists(args.path):
        print(f"Sample file not found: {args.path}")
        return 2

    settings = load_settings()
    overrides: Dict[str, Any] = {}
    if args.alpha is not None:
        overrides["alpha"] = args.alpha
    if args.threshold is not None:
        overrides["emit_threshold_deg"] = args.threshold
    if args.variant is not None:
        overrides["sensor_variant"] = args.variant
    if overrides:
        try:
            settings = replace(settings, **overrides)
        except ValueError as exc:
            ap.error(str(exc))

    return replay(args.path, CompassRuntime(settings), args.sensors)


if __name__ == "__main__":
    sys.exit(main())
