#!/usr/bin/env python3
"""Camp daily activity schedule builder.

Generate a day:
    campsched [config.yaml] [--date YYYY-MM-DD] [--history FILE] [--seed N] [-o DIR]

    Builds the day's grid from the YAML config and the persisted history,
    saves it back to the history file, and writes:
      {DIR}/schedule.txt  - Per-division and per-bunk schedule
      {DIR}/stats.txt     - Validation report + statistics

Inspect a bunk's rotation instead of generating:
    campsched --date 2026-07-08 --rotation B1

Verify a persisted day (separate entry point):
    campsched-verify [config.yaml] --date YYYY-MM-DD [--history FILE]

Examples:
    campsched                                  # today, random seed
    campsched --date 2026-07-06 --seed 42      # reproducible
    campsched camp.yaml --history season.yaml  # alternate files
"""

import argparse
import sys
from datetime import date
from pathlib import Path

from campsched.config import load_config, parse_date
from campsched.constraints import format_validation_report, validate_schedule
from campsched.context import build_context
from campsched.history import FileHistoryStore
from campsched.output import format_schedule, write_schedule
from campsched.rotation import RotationEngine
from campsched.scheduler import schedule_day
from campsched.stats import compute_stats, format_stats_report


def main():
    parser = argparse.ArgumentParser(
        description="Camp daily activity schedule builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Output files:
  {dir}/schedule.txt   Human-readable schedule (division view + per-bunk)
  {dir}/stats.txt      Validation report + balance statistics

Exit codes:
  0  Schedule valid
  1  Constraint violations found, or missing input
""",
    )
    parser.add_argument(
        "config", nargs="?", default="config.yaml",
        help="Path to config YAML file (default: config.yaml)"
    )
    parser.add_argument(
        "--date", default=None,
        help="Day to schedule, YYYY-MM-DD (default: today)"
    )
    parser.add_argument(
        "--history", default="history.yaml",
        help="History YAML file read and updated by the run (default: history.yaml)"
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for reproducible schedules"
    )
    parser.add_argument(
        "--output-prefix", "-o", default="output",
        help="Output directory for generated files (default: output/)"
    )
    parser.add_argument(
        "--rotation", metavar="BUNK",
        help="Print a bunk's rotation history and scores instead of generating"
    )
    args = parser.parse_args()

    config_path = args.config
    if not Path(config_path).exists():
        print(f"Error: config file {config_path} not found")
        sys.exit(1)

    print(f"Loading config from {config_path}...")
    config = load_config(config_path)
    schedule_date = parse_date(args.date) if args.date else date.today()
    store = FileHistoryStore(args.history)

    if args.rotation:
        ctx = build_context(config, schedule_date, seed=args.seed)
        if ctx.division_of(args.rotation) is None:
            print(f"Error: unknown bunk {args.rotation}")
            sys.exit(1)
        engine = RotationEngine(store, schedule_date, rng=ctx.rng)
        engine.attach(ctx)
        print(engine.format_bunk_rotation(args.rotation))
        print("\n" + engine.format_rotation_config())
        return

    print(f"Scheduling {schedule_date.isoformat()} (seed={args.seed})...")
    ctx = schedule_day(config, store, schedule_date, seed=args.seed)
    print(f"Saved history to {args.history}")

    print("\nValidating...")
    result = validate_schedule(ctx)
    report = format_validation_report(result)
    print(report)

    stats = compute_stats(ctx)
    stats_text = format_stats_report(stats, ctx)
    print("\n" + stats_text)
    print("\n" + format_schedule(ctx))

    print("\nWriting output files...")
    write_schedule(ctx, output_prefix=args.output_prefix)
    stats_path = Path(args.output_prefix) / "stats.txt"
    stats_path.write_text(report + "\n\n" + stats_text)
    print(f"Written: {stats_path}")

    if result["valid"]:
        print("\nSchedule generated successfully!")
    else:
        print(f"\nSchedule has {len(result['errors'])} constraint violations.")
        sys.exit(1)


if __name__ == "__main__":
    main()
