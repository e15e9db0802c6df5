"""Output formatters for the camp activity scheduler."""

from pathlib import Path

from campsched.context import SchedulingContext
from campsched.models import EntryKind


def fmt_time(t) -> str:
    h = t.hour
    m = t.minute
    suffix = "am" if h < 12 else "pm"
    if h == 0:
        h = 12
    elif h > 12:
        h -= 12
    if m == 0:
        return f"{h}{suffix}"
    return f"{h}:{m:02d}{suffix}"


def _cell(entry) -> str:
    if entry is None:
        return "-"
    if entry.continuation:
        return "  ..."
    text = entry.label
    if entry.repeat:
        text += " (repeat)"
    elif entry.fallback:
        text += " *"
    return text


def format_schedule(ctx: SchedulingContext) -> str:
    """Format the day as one block per division, one line per slot."""
    lines = []
    lines.append("=" * 80)
    lines.append(f"DAILY SCHEDULE {ctx.schedule_date.strftime('%A %m/%d/%Y')}")
    lines.append("=" * 80)

    for div_name, div in ctx.divisions.items():
        bunks = ctx.bunks(div_name)
        if not bunks:
            continue
        lines.append(f"\n--- {div_name.upper()} ---")
        for slot in ctx.slots:
            if not div.is_active(slot.index):
                continue
            when = f"{fmt_time(slot.start)}-{fmt_time(slot.end)}"
            lines.append(f"\n  {when}")
            booking = ctx.league_assignments.get(div_name, {}).get(slot.index)
            if booking:
                for g in booking.games:
                    lines.append(f"    [L] {g.team_a} vs {g.team_b}: {g.sport} @ {g.field}")
            for bunk in bunks:
                entry = ctx.assignments[bunk][slot.index]
                if entry is not None and entry.kind == EntryKind.LEAGUE and booking:
                    continue
                lines.append(f"    {bunk:<10} {_cell(entry)}")

    # Per-bunk view
    lines.append("\n" + "=" * 80)
    lines.append("PER-BUNK SCHEDULES")
    lines.append("=" * 80)
    for div_name in ctx.divisions:
        for bunk in ctx.bunks(div_name):
            lines.append(f"\n{bunk} ({div_name}):")
            for slot in ctx.slots:
                entry = ctx.assignments[bunk][slot.index]
                if entry is None or entry.continuation:
                    continue
                lines.append(f"  {fmt_time(slot.start):>7}  {_cell(entry)}")

    if ctx.warnings:
        lines.append(f"\n{'=' * 80}")
        lines.append(f"WARNINGS ({len(ctx.warnings)})")
        lines.append("=" * 80)
        for w in ctx.warnings:
            lines.append(f"  {w}")

    return "\n".join(lines)


def write_schedule(ctx: SchedulingContext, output_prefix: str = "output") -> Path:
    out_dir = Path(output_prefix)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / "schedule.txt"
    path.write_text(format_schedule(ctx))
    print(f"Written: {path}")
    return path
