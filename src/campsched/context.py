"""Run state for one scheduling pass.

SchedulingContext owns the grids, the field ownership index and the league
bookings for a single generation run. Trial is a copy-on-write overlay used
by league booking: placements and evictions land in the overlay and reach
the context only on commit.
"""

import random
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Optional

from campsched.models import (
    Activity, DailyOverrides, Division, Entry, EntryKind, EVICTABLE_KINDS,
    FieldSport, FixedBlock, League, LeagueBooking, Location, Special,
    SpecialtyLeague, TimeRule, TimeSlot,
)


@dataclass
class Claim:
    """One occupant group holding a location during a slot."""
    owners: tuple[str, ...]  # bunks, or the league name
    division: str
    kind: EntryKind
    exclusive: bool = False


class FieldUsage:
    """Ownership index: (slot, location) -> claims."""

    def __init__(self):
        self._claims: dict[tuple[int, str], list[Claim]] = defaultdict(list)

    def claims(self, slot: int, location: str) -> list[Claim]:
        return self._claims.get((slot, location), [])

    def can_host(self, slot: int, location: Location, division: str,
                 exclusive: bool = False) -> bool:
        """Exclusive use needs an empty location. Otherwise an unsharable
        location holds one group and a sharable one holds two groups from
        the same division."""
        claims = self.claims(slot, location.name)
        if not claims:
            return True
        if exclusive or any(c.exclusive for c in claims):
            return False
        if len(claims) >= location.capacity:
            return False
        return all(c.division == division for c in claims)

    def reserve(self, slot: int, location: str, claim: Claim) -> None:
        self._claims[(slot, location)].append(claim)

    def release(self, slot: int, location: str, owner: str) -> list[Claim]:
        key = (slot, location)
        removed = [c for c in self._claims.get(key, []) if owner in c.owners]
        if removed:
            self._claims[key] = [c for c in self._claims[key] if owner not in c.owners]
        return removed

    def owners(self, location: str, slots) -> set[str]:
        found = set()
        for s in slots:
            for c in self.claims(s, location):
                found.update(c.owners)
        return found

    def items(self):
        return ((k, v) for k, v in self._claims.items() if v)

    def copy(self) -> "FieldUsage":
        other = FieldUsage()
        for key, claims in self._claims.items():
            if claims:
                other._claims[key] = list(claims)
        return other


@dataclass
class SchedulingContext:
    schedule_date: date
    slots: list[TimeSlot]
    divisions: dict[str, Division]
    locations: dict[str, Location]
    leagues: dict[str, League] = field(default_factory=dict)
    specialty_leagues: dict[str, SpecialtyLeague] = field(default_factory=dict)
    fixed_blocks: list[FixedBlock] = field(default_factory=list)
    overrides: DailyOverrides = field(default_factory=DailyOverrides)
    span_len: int = 1
    rng: random.Random = field(default_factory=random.Random)
    h2h_probability: float = 0.6
    max_h2h_per_day: int = 2

    assignments: dict[str, list[Optional[Entry]]] = field(default_factory=dict)
    league_assignments: dict[str, dict[int, LeagueBooking]] = field(default_factory=dict)
    usage: FieldUsage = field(default_factory=FieldUsage)
    blocked_slots: dict[str, set[int]] = field(default_factory=dict)
    league_slots: dict[str, set[int]] = field(default_factory=dict)
    h2h_counts: dict[str, int] = field(default_factory=dict)
    h2h_opponents: dict[str, set[str]] = field(default_factory=dict)
    previous_activities: dict[str, set[str]] = field(default_factory=dict)
    previous_opponents: dict[str, set[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self):
        self._bunk_division = {}
        for div in self.divisions.values():
            for b in div.bunks:
                self._bunk_division[b] = div.name
        if not self.assignments:
            self.reset()

    def reset(self) -> None:
        """Drop all placements and rebuild empty rows for every active bunk."""
        n = len(self.slots)
        self.assignments = {b: [None] * n for div in self.divisions.values()
                            for b in self.bunks(div.name)}
        self.league_assignments = {d: {} for d in self.divisions}
        self.usage = FieldUsage()
        self.blocked_slots = {d: set() for d in self.divisions}
        self.league_slots = {d: set() for d in self.divisions}
        self.h2h_counts = defaultdict(int)
        self.h2h_opponents = defaultdict(set)
        self.warnings = []

    # -- lookups -------------------------------------------------------------

    def bunks(self, division: str) -> list[str]:
        div = self.divisions[division]
        disabled = self.overrides.disabled_bunks
        if division in disabled:
            return []
        return [b for b in div.bunks if b not in disabled]

    def division_of(self, bunk: str) -> Optional[str]:
        return self._bunk_division.get(bunk)

    def division_bunks(self) -> dict[str, list[str]]:
        return {d: self.bunks(d) for d in self.divisions}

    def is_usable(self, location: Optional[Location]) -> bool:
        return (location is not None and location.available
                and location.name not in self.overrides.disabled_locations)

    def rules_for(self, location: Location) -> list[TimeRule]:
        return self.overrides.time_rules.get(location.name, location.time_rules)

    def catalog(self) -> list[Activity]:
        """Every schedulable activity available today."""
        activities: list[Activity] = []
        for loc in self.locations.values():
            if not self.is_usable(loc):
                continue
            if loc.is_special:
                activities.append(Special(loc.name))
            else:
                activities.extend(FieldSport(loc.name, s) for s in loc.sports)
        return activities

    def catalog_names(self) -> list[str]:
        return sorted({a.name for a in self.catalog()})

    def special_names(self) -> set[str]:
        return {loc.name for loc in self.locations.values() if loc.is_special}

    def usage_limits(self) -> dict[str, int]:
        return {loc.name: loc.max_usage for loc in self.locations.values()
                if loc.is_special and loc.max_usage}

    def view(self) -> MappingProxyType:
        """Read-only view of today's grid for the scoring engine."""
        return MappingProxyType(self.assignments)

    # -- grid state ----------------------------------------------------------

    def free_run(self, bunk: str, start: int, limit: int,
                 rows: Optional[dict] = None) -> int:
        """Count consecutive empty, active slots from start (at most limit)."""
        row = (rows or self.assignments)[bunk]
        div = self.divisions[self.division_of(bunk)]
        n = 0
        s = start
        while n < limit and s < len(row) and row[s] is None and div.is_active(s):
            n += 1
            s += 1
        return n

    def done_today(self, bunk: str, name: str) -> bool:
        return any(e is not None and not e.continuation and e.name == name
                   for e in self.assignments[bunk])

    def empty_cells(self) -> list[tuple[str, str, int]]:
        cells = []
        for div_name, div in self.divisions.items():
            for b in self.bunks(div_name):
                row = self.assignments[b]
                for s in range(len(row)):
                    if row[s] is None and div.is_active(s):
                        cells.append((div_name, b, s))
        return cells

    def fits(self, bunk: str, division: str, activity: Activity, start: int,
             span: int, exclusive: bool = False,
             usage: Optional[FieldUsage] = None) -> bool:
        """Every slot of the span must be free for the bunk, open by time
        rules, and within the location's capacity."""
        loc = self.locations.get(activity.location)
        if not self.is_usable(loc) or not loc.allows(division, bunk):
            return False
        if isinstance(activity, FieldSport) and activity.sport not in loc.sports:
            return False
        usage = usage or self.usage
        row = self.assignments[bunk]
        div = self.divisions[division]
        rules = self.rules_for(loc)
        for s in range(start, start + span):
            if s >= len(row) or row[s] is not None or not div.is_active(s):
                return False
            if not loc.is_time_available(self.slots[s], rules):
                return False
            if not usage.can_host(s, loc, division, exclusive):
                return False
        return True

    def write_span(self, bunk: str, start: int, span: int, entry: Entry) -> None:
        row = self.assignments[bunk]
        for i, s in enumerate(range(start, start + span)):
            row[s] = entry if i == 0 else entry.as_continuation()

    def place(self, bunk: str, division: str, start: int, span: int,
              entry: Entry) -> None:
        """Write a single-bunk entry and claim its location."""
        self.write_span(bunk, start, span, entry)
        loc = self.locations.get(entry.location) if entry.location else None
        if loc is not None:
            for s in range(start, start + span):
                self.usage.reserve(s, loc.name, Claim(
                    (bunk,), division, entry.kind, exclusive=not loc.sharable))

    def place_h2h(self, bunk: str, opponent: str, division: str, start: int,
                  span: int, activity: FieldSport, fallback: bool = False) -> None:
        """Write a matchup for both bunks; the pair holds the field alone."""
        for b, o in ((bunk, opponent), (opponent, bunk)):
            self.write_span(b, start, span, Entry(
                activity=activity, kind=EntryKind.H2H, location=activity.field,
                opponent=o, fallback=fallback))
            self.h2h_counts[b] += 1
            self.h2h_opponents[b].add(o)
        for s in range(start, start + span):
            self.usage.reserve(s, activity.field, Claim(
                (bunk, opponent), division, EntryKind.H2H, exclusive=True))

    def warn(self, message: str) -> None:
        print(f"  Warning: {message}")
        self.warnings.append(message)


class Trial:
    """Copy-on-write overlay over a context's rows and field usage."""

    def __init__(self, ctx: SchedulingContext):
        self.ctx = ctx
        self.usage = ctx.usage.copy()
        self._rows: dict[str, list[Optional[Entry]]] = {}
        self.evicted: list[tuple[str, int, Entry]] = []

    def row(self, bunk: str) -> list[Optional[Entry]]:
        return self._rows.get(bunk, self.ctx.assignments[bunk])

    def _writable(self, bunk: str) -> list[Optional[Entry]]:
        if bunk not in self._rows:
            self._rows[bunk] = list(self.ctx.assignments[bunk])
        return self._rows[bunk]

    def is_free(self, bunk: str, start: int, span: int) -> bool:
        row = self.row(bunk)
        return all(s < len(row) and row[s] is None for s in range(start, start + span))

    def write(self, bunk: str, start: int, span: int, entry: Entry) -> None:
        row = self._writable(bunk)
        for i, s in enumerate(range(start, start + span)):
            row[s] = entry if i == 0 else entry.as_continuation()

    def evict(self, bunk: str, slot: int) -> bool:
        """Clear the evictable span covering slot (and an H2H opponent's).

        Returns False when the cell holds something that cannot be reclaimed.
        """
        row = self.row(bunk)
        entry = row[slot]
        if entry is None:
            return True
        if entry.kind not in EVICTABLE_KINDS:
            return False
        start = slot
        while start > 0 and row[start] is not None and row[start].continuation:
            start -= 1
        head = row[start]
        end = start + 1
        while end < len(row) and row[end] is not None and row[end].continuation \
                and row[end].name == head.name:
            end += 1

        targets = [bunk]
        if head.kind == EntryKind.H2H and head.opponent in self.ctx.assignments:
            targets.append(head.opponent)
        for b in targets:
            writable = self._writable(b)
            for s in range(start, end):
                writable[s] = None
        if head.location:
            for s in range(start, end):
                self.usage.release(s, head.location, bunk)
        self.evicted.append((bunk, start, head))
        return True

    def can_reclaim(self, location: str, slots) -> bool:
        return all(c.kind in EVICTABLE_KINDS
                   for s in slots for c in self.usage.claims(s, location))

    def reclaim(self, location: str, slots) -> bool:
        """Evict every reclaimable claim on a location across slots."""
        for s in slots:
            for claim in list(self.usage.claims(s, location)):
                if claim.kind not in EVICTABLE_KINDS:
                    return False
                for owner in claim.owners:
                    if owner in self.ctx.assignments and self.row(owner)[s] is not None:
                        self.evict(owner, s)
                # A claim without a matching row cell is stale; drop it.
                for owner in claim.owners:
                    self.usage.release(s, location, owner)
        return True

    def commit(self) -> None:
        self.ctx.assignments.update(self._rows)
        self.ctx.usage = self.usage
        for bunk, slot, entry in self.evicted:
            if entry.kind == EntryKind.H2H:
                for b in (bunk, entry.opponent):
                    self.ctx.h2h_counts[b] = max(0, self.ctx.h2h_counts[b] - 1)
                    self.ctx.h2h_opponents[b].discard(entry.opponent if b == bunk else bunk)
            print(f"    Evicted {entry.label} for {bunk} at slot {slot}")


def build_context(config: dict, schedule_date: date,
                  seed: int | None = None) -> SchedulingContext:
    """Build a fresh context for one day from a loaded config."""
    camp = config["camp"]
    overrides = config.get("overrides", {}).get(schedule_date, DailyOverrides())
    leagues = {k: v for k, v in config.get("leagues", {}).items()
               if v.enabled and k not in overrides.disabled_leagues}
    specialty = {k: v for k, v in config.get("specialty_leagues", {}).items()
                 if v.enabled and k not in overrides.disabled_leagues}
    return SchedulingContext(
        schedule_date=schedule_date,
        slots=list(config["slots"]),
        divisions=config["divisions"],
        locations=config["locations"],
        leagues=leagues,
        specialty_leagues=specialty,
        fixed_blocks=list(config.get("fixed", [])),
        overrides=overrides,
        span_len=camp.get("span_len", 1),
        rng=random.Random(seed),
        h2h_probability=camp.get("h2h_probability", 0.6),
        max_h2h_per_day=camp.get("max_h2h_per_day", 2),
    )
