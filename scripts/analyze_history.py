#!/usr/bin/env python3
"""
scripts/analyze_history.py

Run the carryover, pattern and threshold-range analytics over a JSON export
and print the report as JSON. Useful for checking tuned constants against
recorded history.

Usage:
    python scripts/analyze_history.py export.json [--now 2026-03-01T09:00:00Z] [--batch BATCH_ID]

The export holds {"user": {...}, "doses": [...], "check_ins": [...], "batches": [...]}.
"""
import argparse
import json
import os
import sys

# Add parent directory to path to import dosecompass modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dosecompass.report import build_report, pick_batch
from shared.records import (
    batches_from_rows,
    check_ins_from_rows,
    doses_from_rows,
    parse_timestamp,
    user_from_row,
)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Dosing analytics over a JSON export.")
    parser.add_argument("path")
    parser.add_argument("--now", default=None, help="ISO timestamp used as 'now' (default: current time)")
    parser.add_argument("--batch", default=None, help="batch id (default: the active batch)")
    args = parser.parse_args(argv)

    try:
        with open(args.path, encoding="utf-8") as f:
            export = json.load(f)
    except (OSError, ValueError) as e:
        print(f"Failed to read export: {e}")
        return 1

    try:
        user = user_from_row(export.get("user") or {})
        now = parse_timestamp(args.now) if args.now else None
    except (KeyError, TypeError, ValueError) as e:
        print(f"Invalid user profile or --now: {e}")
        return 1

    doses = doses_from_rows(export.get("doses", []))
    check_ins = check_ins_from_rows(export.get("check_ins", []))

    batch_id = args.batch
    if batch_id is None:
        batch = pick_batch(batches_from_rows(export.get("batches", [])))
        batch_id = batch.id if batch else None

    print(f"Loaded {len(doses)} doses and {len(check_ins)} check-ins.", file=sys.stderr)
    report = build_report(user, doses, check_ins, batch_id=batch_id, now=now)
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
