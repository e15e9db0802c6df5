"""Standalone verifier for persisted days.

Rebuilds a day's grid from the history file and checks it against the
config's catalog.
Usage: campsched-verify [config.yaml] --date YYYY-MM-DD [--history FILE]
"""

import argparse
import sys
from pathlib import Path

from campsched.config import load_config, parse_date
from campsched.constraints import format_validation_report, validate_schedule
from campsched.context import SchedulingContext, build_context
from campsched.history import FileHistoryStore
from campsched.models import Entry, LeagueBooking
from campsched.stats import compute_stats, format_stats_report


def restore_day(ctx: SchedulingContext, day: dict) -> int:
    """Load a persisted day into ctx; returns the number of bunks restored.

    Unknown bunks are skipped, rows are padded or cut to the grid length,
    and malformed cells load as empty.
    """
    ctx.reset()
    n = len(ctx.slots)
    grid = day.get("scheduleAssignments") if isinstance(day, dict) else None
    restored = 0
    if isinstance(grid, dict):
        for bunk, row in grid.items():
            if bunk not in ctx.assignments or not isinstance(row, list):
                continue
            cells = [Entry.from_dict(c) for c in row[:n]]
            cells += [None] * (n - len(cells))
            ctx.assignments[bunk] = cells
            restored += 1

    leagues = day.get("leagueAssignments") if isinstance(day, dict) else None
    if isinstance(leagues, dict):
        for div, bookings in leagues.items():
            if div not in ctx.league_assignments or not isinstance(bookings, dict):
                continue
            for slot, raw in bookings.items():
                booking = LeagueBooking.from_dict(raw)
                if booking is not None:
                    ctx.league_assignments[div][int(slot)] = booking

    return restored


def main():
    parser = argparse.ArgumentParser(description="Verify a persisted camp day")
    parser.add_argument("config", nargs="?", default="config.yaml")
    parser.add_argument("--date", required=True, help="Day to verify, YYYY-MM-DD")
    parser.add_argument("--history", default="history.yaml")
    args = parser.parse_args()

    for path in (args.config, args.history):
        if not Path(path).exists():
            print(f"Error: {path} not found")
            sys.exit(1)

    print(f"Loading config from {args.config}...")
    config = load_config(args.config)

    store = FileHistoryStore(args.history)
    schedule_date = parse_date(args.date)
    day = store.load_daily_data(schedule_date)
    if not day:
        print(f"No schedule saved for {schedule_date.isoformat()}")
        sys.exit(1)

    ctx = build_context(config, schedule_date)
    restored = restore_day(ctx, day)
    print(f"Restored {restored} bunks")

    result = validate_schedule(ctx)
    print(format_validation_report(result))
    print("\n" + format_stats_report(compute_stats(ctx), ctx))
    sys.exit(0 if result["valid"] else 1)


if __name__ == "__main__":
    main()
