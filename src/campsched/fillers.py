"""Fallback passes that absorb every cell the main fill left empty.

Each pass relaxes a little more than the one before:
1. Forced H2H      - ignore the daily cap and previous-day rematch rule
2. Doubling        - join a same-division group on a sharable location
3. Fallback special - any special that fits, best rotation score first
4. Last resort     - any activity that fits, even a repeat; else Free Play

Capacity is never exceeded in any pass.
"""

from campsched.context import SchedulingContext
from campsched.general import ranked_candidates, try_general, try_h2h
from campsched.models import Entry, EntryKind, Special
from campsched.rotation import FORBIDDEN, RotationEngine


PLACEHOLDER = "Free Play"


def _capped(engine: RotationEngine, bunk: str, activity) -> bool:
    return engine.limit_score(bunk, activity.name) == FORBIDDEN


def _open_cells(ctx: SchedulingContext):
    """Yield cells that are still empty when visited."""
    for division, bunk, slot in ctx.empty_cells():
        if ctx.assignments[bunk][slot] is None:
            yield division, bunk, slot


def fill_forced_h2h(ctx: SchedulingContext, engine: RotationEngine) -> int:
    placed = 0
    for division, bunk, slot in _open_cells(ctx):
        span = ctx.free_run(bunk, slot, ctx.span_len)
        candidates = ranked_candidates(ctx, engine, division, bunk, slot)
        if try_h2h(ctx, division, bunk, slot, span, candidates, forced=True):
            placed += 1
    return placed


def fill_doubling(ctx: SchedulingContext, engine: RotationEngine) -> int:
    """Share a sharable location with the one group already there."""
    placed = 0
    sharable = [loc for loc in ctx.locations.values()
                if loc.sharable and ctx.is_usable(loc)]
    for division, bunk, slot in _open_cells(ctx):
        for loc in sharable:
            claims = ctx.usage.claims(slot, loc.name)
            if len(claims) != 1:
                continue
            claim = claims[0]
            if claim.exclusive or claim.division != division:
                continue
            host = ctx.assignments.get(claim.owners[0])
            host_entry = host[slot] if host else None
            if host_entry is None:
                continue
            activity = host_entry.activity
            if ctx.done_today(bunk, activity.name) or _capped(engine, bunk, activity):
                continue
            if try_general(ctx, division, bunk, slot, 1, [activity], fallback=True):
                placed += 1
                break
    return placed


def fill_fallback_specials(ctx: SchedulingContext, engine: RotationEngine) -> int:
    placed = 0
    specials = [Special(loc.name) for loc in ctx.locations.values()
                if loc.is_special and ctx.is_usable(loc)]
    for division, bunk, slot in _open_cells(ctx):
        ranked = engine.get_ranked_activities(bunk, specials, division, before_slot=slot)
        candidates = [a for a, score in ranked
                      if score != FORBIDDEN and not ctx.done_today(bunk, a.name)]
        span = ctx.free_run(bunk, slot, ctx.span_len)
        if try_general(ctx, division, bunk, slot, span, candidates, fallback=True) \
                or (span > 1 and try_general(ctx, division, bunk, slot, 1, candidates,
                                             fallback=True)):
            placed += 1
    return placed


def fill_last_resort(ctx: SchedulingContext, engine: RotationEngine) -> int:
    """Take anything with room, repeating if unavoidable, else Free Play.

    Usage caps still hold here.
    """
    placed = 0
    for division, bunk, slot in _open_cells(ctx):
        options = sorted((a for a in ctx.catalog() if not _capped(engine, bunk, a)),
                         key=lambda a: ctx.done_today(bunk, a.name))
        for a in options:
            if not ctx.fits(bunk, division, a, slot, 1):
                continue
            repeat = ctx.done_today(bunk, a.name)
            ctx.place(bunk, division, slot, 1, Entry(
                activity=a, kind=EntryKind.GENERAL, location=a.location,
                fallback=True, repeat=repeat))
            if repeat:
                ctx.warn(f"{bunk} repeats {a.name} at slot {slot + 1}")
            break
        else:
            ctx.write_span(bunk, slot, 1, Entry(
                activity=Special(PLACEHOLDER), kind=EntryKind.GENERAL, fallback=True))
            ctx.warn(f"{bunk} has nothing available at slot {slot + 1}; "
                     f"marked {PLACEHOLDER}")
        placed += 1
    return placed


def run_fallbacks(ctx: SchedulingContext, engine: RotationEngine) -> dict[str, int]:
    counts = {}
    counts["forced_h2h"] = fill_forced_h2h(ctx, engine)
    counts["doubling"] = fill_doubling(ctx, engine)
    counts["specials"] = fill_fallback_specials(ctx, engine)
    counts["last_resort"] = fill_last_resort(ctx, engine)
    for name, n in counts.items():
        if n:
            print(f"  Fallback {name}: {n} cells")
    return counts
