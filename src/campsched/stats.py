"""Statistics and balance reporting for a day's grid."""

from collections import defaultdict

from campsched.context import SchedulingContext
from campsched.models import EntryKind


def compute_stats(ctx: SchedulingContext) -> dict:
    """Compute per-bunk and per-activity counts for a day.

    Returns dict with:
    - kind_counts: bunk -> kind -> slots
    - activity_bunks: activity -> number of bunks doing it
    - unique: bunk -> distinct activities
    - fallback: bunk -> fallback placements
    - h2h: bunk -> head-to-head games
    - empty: number of empty active cells
    - filled_pct: share of active cells filled
    """
    kind_counts = defaultdict(lambda: defaultdict(int))
    activity_bunks = defaultdict(set)
    unique = {}
    fallback = defaultdict(int)
    h2h = defaultdict(int)
    active_cells = 0
    empty = 0

    for div_name, div in ctx.divisions.items():
        for bunk in ctx.bunks(div_name):
            row = ctx.assignments.get(bunk, [])
            names = set()
            for s, e in enumerate(row):
                if not div.is_active(s):
                    continue
                active_cells += 1
                if e is None:
                    empty += 1
                    continue
                kind_counts[bunk][e.kind.value] += 1
                if e.continuation:
                    continue
                if e.kind in (EntryKind.GENERAL, EntryKind.H2H):
                    names.add(e.name)
                    activity_bunks[e.name].add(bunk)
                if e.fallback:
                    fallback[bunk] += 1
                if e.kind == EntryKind.H2H:
                    h2h[bunk] += 1
            unique[bunk] = len(names)

    filled_pct = 100.0 * (active_cells - empty) / active_cells if active_cells else 0.0
    return {
        "kind_counts": {b: dict(k) for b, k in kind_counts.items()},
        "activity_bunks": {a: len(b) for a, b in activity_bunks.items()},
        "unique": unique,
        "fallback": dict(fallback),
        "h2h": dict(h2h),
        "empty": empty,
        "filled_pct": filled_pct,
        "warnings": len(ctx.warnings),
    }


def _z(v: int) -> str:
    """Right-aligned count, blank for zero."""
    return f"{v:>4}" if v else "   ."


def format_stats_report(stats: dict, ctx: SchedulingContext) -> str:
    lines = []
    lines.append("=" * 60)
    lines.append(f"SCHEDULE STATISTICS ({ctx.schedule_date.isoformat()})")
    lines.append("=" * 60)
    lines.append(f"Filled: {stats['filled_pct']:.1f}%   Empty cells: {stats['empty']}   "
                 f"Warnings: {stats['warnings']}")

    kinds = [k.value for k in EntryKind]
    lines.append("\n--- SLOTS PER BUNK ---")
    header = f"{'Bunk':<10}" + "".join(f" {k[:4]:>4}" for k in kinds) + "  Uniq  H2H  Fb"
    lines.append(header)
    lines.append("-" * len(header))
    for div_name in ctx.divisions:
        for bunk in ctx.bunks(div_name):
            counts = stats["kind_counts"].get(bunk, {})
            row = f"{bunk:<10}" + "".join(f" {_z(counts.get(k, 0))}" for k in kinds)
            row += (f"  {stats['unique'].get(bunk, 0):>4} {stats['h2h'].get(bunk, 0):>4}"
                    f" {stats['fallback'].get(bunk, 0):>3}")
            lines.append(row)

    lines.append("\n--- BUNKS PER ACTIVITY ---")
    for name, n in sorted(stats["activity_bunks"].items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"  {name:<24} {n:>3}")

    return "\n".join(lines)
