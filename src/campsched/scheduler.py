"""Main scheduling engine for the camp activity scheduler.

Five phases, in strict priority order:
1. Fixed placement - trips, then global fixed blocks, then pinned activities
2. Specialty leagues - one sport, explicit fields, multi-division rosters
3. Regular leagues - rotated sports, eviction rescue when fields are taken
4. General and head-to-head fill per (division, bunk, slot)
5. Fallback passes until no active cell is empty

The finished grid is persisted once, after which the refresh hook runs.
"""

from datetime import date

from campsched.context import Claim, SchedulingContext, build_context
from campsched.fillers import run_fallbacks
from campsched.general import fill_general
from campsched.leagues import (
    LeagueHistory, book_regular_leagues, book_specialty_leagues,
)
from campsched.models import (
    Entry, EntryKind, EVICTABLE_KINDS, FixedBlock, Special, TimeSlot,
)
from campsched.rotation import RotationEngine, add_counts, day_counts


def slots_for_range(slots: list[TimeSlot], start, end) -> list[int]:
    """Slots fully inside [start, end); if none, any slot overlapping it."""
    inside = [s.index for s in slots if s.within(start, end)]
    if inside:
        return inside
    return [s.index for s in slots if s.overlaps(start, end)]


# ---------------------------------------------------------------------------
# Phase 1: Fixed placement
# ---------------------------------------------------------------------------

def _block_targets(ctx: SchedulingContext, block: FixedBlock) -> list[tuple[str, str]]:
    targets = []
    seen = set()
    for b in block.bunks:
        div = ctx.division_of(b)
        if div is not None and b in ctx.assignments and b not in seen:
            targets.append((div, b))
            seen.add(b)
    divisions = block.divisions
    if not divisions and not block.bunks:
        divisions = list(ctx.divisions)
    for d in divisions:
        if d not in ctx.divisions:
            continue
        for b in ctx.bunks(d):
            if b not in seen:
                targets.append((d, b))
                seen.add(b)
    return targets


def _is_fixed(entry: Entry | None) -> bool:
    return entry is not None and entry.kind in (EntryKind.FIXED, EntryKind.TRIP)


def place_fixed_block(ctx: SchedulingContext, block: FixedBlock) -> int:
    """Stamp a block into every target bunk; never overwrite a filled cell."""
    indices = slots_for_range(ctx.slots, block.start, block.end)
    if not indices:
        ctx.warn(f"{block.name} ({block.start}-{block.end}) matches no time slot")
        return 0
    kind = EntryKind.TRIP if block.is_trip else EntryKind.FIXED
    location = block.location if block.location in ctx.locations else None
    entry = Entry(activity=Special(block.name), kind=kind, location=location)

    stamped = 0
    holders: dict[int, list[str]] = {}
    divisions: dict[int, str] = {}
    for div, bunk in _block_targets(ctx, block):
        row = ctx.assignments[bunk]
        first = True
        for s in indices:
            if row[s] is not None:
                first = True
                continue
            row[s] = entry if first else entry.as_continuation()
            first = False
            holders.setdefault(s, []).append(bunk)
            divisions.setdefault(s, div)
        stamped += 1

    # A slot is blocked for a division only when none of its bunks is free.
    for div in {d for d, _ in _block_targets(ctx, block)}:
        for s in indices:
            if all(_is_fixed(ctx.assignments[b][s]) for b in ctx.bunks(div)):
                ctx.blocked_slots[div].add(s)

    # The block holds its location outright for the time it runs.
    if location:
        for s, bunks in holders.items():
            ctx.usage.reserve(s, location, Claim(
                tuple(bunks), divisions[s], kind, exclusive=True))
    return stamped


def place_pinned(ctx: SchedulingContext) -> int:
    placed = 0
    for pin in ctx.overrides.pinned:
        div = ctx.division_of(pin.bunk)
        if div is None or pin.bunk not in ctx.assignments:
            continue
        indices = slots_for_range(ctx.slots, pin.start, pin.end)
        if not indices:
            continue
        start, span = indices[0], len(indices)
        if not ctx.fits(pin.bunk, div, pin.activity, start, span):
            ctx.warn(f"Pinned {pin.activity.label} for {pin.bunk} does not fit; dropped")
            continue
        ctx.place(pin.bunk, div, start, span, Entry(
            activity=pin.activity, kind=EntryKind.GENERAL,
            location=pin.activity.location))
        placed += 1
    return placed


def place_fixed(ctx: SchedulingContext) -> None:
    trips = ctx.overrides.trips
    for block in trips:
        n = place_fixed_block(ctx, block)
        print(f"  Trip {block.name}: {n} bunks")
    for block in ctx.fixed_blocks:
        place_fixed_block(ctx, block)
    pinned = place_pinned(ctx)
    print(f"  Fixed blocks: {len(ctx.fixed_blocks)}, trips: {len(trips)}, "
          f"pinned: {pinned}")


# ---------------------------------------------------------------------------
# History in and out
# ---------------------------------------------------------------------------

def load_previous_day(ctx: SchedulingContext, store) -> None:
    """Yesterday's own choices become non-preferred; yesterday's opponents
    are not rematched."""
    ctx.previous_activities = {}
    ctx.previous_opponents = {}
    if store is None:
        return
    prev = store.load_previous_daily_data(ctx.schedule_date)
    grid = prev.get("scheduleAssignments") if isinstance(prev, dict) else None
    if not isinstance(grid, dict):
        return
    for bunk, row in grid.items():
        if not isinstance(row, list):
            continue
        for cell in row:
            entry = Entry.from_dict(cell)
            if entry is None or entry.continuation or entry.kind not in EVICTABLE_KINDS:
                continue
            ctx.previous_activities.setdefault(bunk, set()).add(entry.name)
            if entry.kind == EntryKind.H2H and entry.opponent:
                ctx.previous_opponents.setdefault(bunk, set()).add(entry.opponent)


def update_historical_counts(store, schedule_date: date, grid: dict) -> dict:
    """Fold a day's grid into the lifetime ``historicalCounts``.

    Dates already counted are listed in ``historicalCountedDates``; a re-run
    of such a day swaps the old grid's counts for the new ones. Must run
    before the new grid is saved over the old one.
    """
    settings = store.load_global_settings()
    settings = settings if isinstance(settings, dict) else {}
    lifetime = RotationEngine(store, schedule_date).lifetime_counts()
    counted = settings.get("historicalCountedDates", [])
    counted = [str(d) for d in counted] if isinstance(counted, list) else []
    today = schedule_date.isoformat()
    if today not in counted:
        counted.append(today)
    add_counts(lifetime, day_counts(grid))
    store.save_global_settings("historicalCounts", lifetime)
    store.save_global_settings("historicalCountedDates", sorted(counted))
    return lifetime


def persist_day(ctx: SchedulingContext, store, league_history: LeagueHistory) -> None:
    """Save the grid, bookings and histories, then write the store once."""
    grid = {bunk: [e.to_dict() if e else None for e in row]
            for bunk, row in ctx.assignments.items()}
    leagues = {div: {str(slot): booking.to_dict() for slot, booking in bookings.items()}
               for div, bookings in ctx.league_assignments.items()}
    update_historical_counts(store, ctx.schedule_date, grid)
    store.save_current_daily_data(ctx.schedule_date, "scheduleAssignments", grid)
    store.save_current_daily_data(ctx.schedule_date, "leagueAssignments", leagues)
    store.save_global_settings("leagueHistory", league_history.to_dict())
    store.flush()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def assign_fields_to_bunks(ctx: SchedulingContext, store=None,
                           engine: RotationEngine | None = None,
                           refresh=None) -> SchedulingContext:
    """Build the full grid for ctx.schedule_date.

    Resets the context's grids, runs every phase, persists to store once,
    then calls refresh(ctx). A missing time grid or empty catalog aborts
    with a warning and leaves the grid untouched.
    """
    if not ctx.slots:
        ctx.warn("No time grid defined; nothing scheduled")
        return ctx
    if not ctx.catalog():
        ctx.warn("No fields or specials available; nothing scheduled")
        return ctx

    ctx.reset()
    settings = store.load_global_settings() if store is not None else {}
    league_history = LeagueHistory(settings.get("leagueHistory")
                                   if isinstance(settings, dict) else None)
    if engine is None:
        engine = RotationEngine(store, ctx.schedule_date, rng=ctx.rng)
    engine.attach(ctx)
    load_previous_day(ctx, store)

    print("  Placing fixed blocks...")
    place_fixed(ctx)

    if ctx.specialty_leagues:
        print("  Booking specialty leagues...")
        book_specialty_leagues(ctx, league_history)
    if ctx.leagues:
        print("  Booking leagues...")
        book_regular_leagues(ctx, league_history)

    print("  Filling general and head-to-head activities...")
    placed = fill_general(ctx, engine)
    print(f"  Placed {placed} activities, "
          f"{sum(ctx.h2h_counts.values()) // 2} head-to-head games")

    empty = len(ctx.empty_cells())
    if empty:
        print(f"  {empty} empty cells, running fallback passes...")
        run_fallbacks(ctx, engine)

    if store is not None:
        persist_day(ctx, store, league_history)
    if refresh is not None:
        refresh(ctx)
    return ctx


def schedule_day(config: dict, store, schedule_date: date,
                 seed: int | None = None, refresh=None) -> SchedulingContext:
    """Build a context for schedule_date from config and fill it."""
    ctx = build_context(config, schedule_date, seed=seed)
    print(f"  {len(ctx.slots)} slots, {len(ctx.assignments)} bunks, "
          f"{len(ctx.catalog())} activities")
    return assign_fields_to_bunks(ctx, store, refresh=refresh)
