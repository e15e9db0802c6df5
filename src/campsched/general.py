"""General and head-to-head placement, visited per (division, bunk, slot)."""

from campsched.context import SchedulingContext
from campsched.models import Activity, Entry, EntryKind, FieldSport
from campsched.rotation import FORBIDDEN, RotationEngine


def ranked_candidates(ctx: SchedulingContext, engine: RotationEngine,
                      division: str, bunk: str, slot: int) -> list[Activity]:
    """Allowed activities for a cell, best rotation score first."""
    ranked = engine.get_ranked_activities(bunk, ctx.catalog(), division, before_slot=slot)
    return [a for a, score in ranked
            if score != FORBIDDEN and not ctx.done_today(bunk, a.name)]


def try_h2h(ctx: SchedulingContext, division: str, bunk: str, slot: int,
            span: int, candidates: list[Activity], forced: bool = False) -> int:
    """Pair the bunk with a same-division opponent on an exclusive field.

    Returns the number of slots placed (0 on failure). Forced mode skips the
    daily cap and the previous-day rematch rule but never repeats today's
    opponent.
    """
    if not forced and ctx.h2h_counts[bunk] >= ctx.max_h2h_per_day:
        return 0
    opponents = [o for o in ctx.bunks(division)
                 if o != bunk and ctx.assignments[o][slot] is None]
    ctx.rng.shuffle(opponents)
    opponents.sort(key=lambda o: ctx.h2h_counts[o])
    sports = [a for a in candidates if isinstance(a, FieldSport)]

    for opp in opponents:
        if opp in ctx.h2h_opponents[bunk]:
            continue
        if not forced:
            if ctx.h2h_counts[opp] >= ctx.max_h2h_per_day:
                continue
            if opp in ctx.previous_opponents.get(bunk, set()):
                continue
        run = min(span, ctx.free_run(opp, slot, span))
        if run == 0:
            continue
        for a in sports:
            if ctx.done_today(opp, a.name):
                continue
            if (ctx.fits(bunk, division, a, slot, run, exclusive=True)
                    and ctx.fits(opp, division, a, slot, run, exclusive=True)):
                ctx.place_h2h(bunk, opp, division, slot, run, a, fallback=forced)
                return run
    return 0


def try_general(ctx: SchedulingContext, division: str, bunk: str, slot: int,
                span: int, candidates: list[Activity], fallback: bool = False) -> int:
    for a in candidates:
        if ctx.fits(bunk, division, a, slot, span):
            ctx.place(bunk, division, slot, span, Entry(
                activity=a, kind=EntryKind.GENERAL, location=a.location,
                fallback=fallback))
            return span
    return 0


def fill_cell(ctx: SchedulingContext, engine: RotationEngine, division: str,
              bunk: str, slot: int, span: int) -> int:
    """Try (a) H2H by chance, (b) preferred, (c) H2H again, (d) the rest.

    Preferred activities are the ones the bunk did not do on the previous
    camp day.
    """
    candidates = ranked_candidates(ctx, engine, division, bunk, slot)
    recent = ctx.previous_activities.get(bunk, set())
    preferred = [a for a in candidates if a.name not in recent]
    non_preferred = [a for a in candidates if a.name in recent]

    if ctx.rng.random() < ctx.h2h_probability:
        used = try_h2h(ctx, division, bunk, slot, span, candidates)
        if used:
            return used
    used = try_general(ctx, division, bunk, slot, span, preferred)
    if used:
        return used
    used = try_h2h(ctx, division, bunk, slot, span, candidates)
    if used:
        return used
    return try_general(ctx, division, bunk, slot, span, non_preferred)


def fill_general(ctx: SchedulingContext, engine: RotationEngine) -> int:
    """Walk every bunk's row, placing spans into empty active slots."""
    placed = 0
    n = len(ctx.slots)
    for div_name, div in ctx.divisions.items():
        for bunk in ctx.bunks(div_name):
            slot = 0
            while slot < n:
                if ctx.assignments[bunk][slot] is not None or not div.is_active(slot):
                    slot += 1
                    continue
                span = ctx.free_run(bunk, slot, ctx.span_len)
                used = fill_cell(ctx, engine, div_name, bunk, slot, span)
                if used:
                    placed += 1
                slot += used or 1
    return placed
