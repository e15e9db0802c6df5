"""Config loading and validation for the camp activity scheduler."""

import math
from datetime import date, time
from pathlib import Path

import yaml

from campsched.models import (
    DailyOverrides, Division, FieldSport, FixedBlock, League, Location,
    PinnedActivity, Special, SpecialtyLeague, TimeRule, TimeSlot,
)


def parse_time(s: str) -> time:
    """Parse time strings like '5:30pm', '10am', '17:00'."""
    s_lower = str(s).strip().lower()

    is_pm = s_lower.endswith("pm")
    is_am = s_lower.endswith("am")

    s_clean = s_lower
    if is_pm or is_am:
        s_clean = s_clean[:-2].strip()

    if ":" in s_clean:
        parts = s_clean.split(":")
        h = int(parts[0])
        m = int(parts[1])
    else:
        h = int(s_clean)
        m = 0

    if is_pm and h < 12:
        h += 12
    elif is_am and h == 12:
        h = 0

    return time(h, m)


def parse_date(s) -> date:
    """Parse date string YYYY-MM-DD (YAML may already hand us a date)."""
    if isinstance(s, date):
        return s
    parts = str(s).strip().split("-")
    return date(int(parts[0]), int(parts[1]), int(parts[2]))


def parse_time_range(s: str) -> tuple[time, time]:
    """Parse '9am-10:30am' into (start, end) times."""
    start, end = str(s).split("-", 1)
    return parse_time(start), parse_time(end)


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _from_minutes(m: int) -> time:
    return time(m // 60, m % 60)


def build_time_slots(raw_times: dict) -> list[TimeSlot]:
    """Build the daily grid from explicit ranges or start/end/increment."""
    if raw_times.get("slots"):
        slots = []
        for i, s in enumerate(raw_times["slots"]):
            start, end = parse_time_range(s)
            slots.append(TimeSlot(i, start, end))
        return slots

    start = _minutes(parse_time(raw_times["start"]))
    end = _minutes(parse_time(raw_times["end"]))
    increment = int(raw_times.get("increment", 45))
    slots = []
    t = start
    while t + increment <= end:
        slots.append(TimeSlot(len(slots), _from_minutes(t), _from_minutes(t + increment)))
        t += increment
    return slots


def compute_span_len(activity_minutes: int, increment: int) -> int:
    """Number of consecutive slots one activity occupies."""
    if increment <= 0:
        return 1
    return max(1, math.ceil(activity_minutes / increment))


def _parse_rules(ldata: dict, errors: list[str], owner: str) -> list[TimeRule]:
    rules = []
    for kind in ("available", "unavailable"):
        for r in ldata.get(kind, []) or []:
            try:
                start, end = parse_time_range(r)
            except (ValueError, IndexError):
                errors.append(f"{owner}: bad {kind} time range {r!r}")
                continue
            if end <= start:
                errors.append(f"{owner}: {kind} range {r} ends before it starts")
                continue
            rules.append(TimeRule(kind, start, end))
    return rules


def _parse_block(bdata: dict, is_trip: bool) -> FixedBlock:
    start, end = parse_time_range(bdata["time"])
    return FixedBlock(
        name=bdata["name"],
        start=start,
        end=end,
        divisions=list(bdata.get("divisions", []) or []),
        bunks=list(bdata.get("bunks", []) or []),
        location=bdata.get("location"),
        is_trip=is_trip,
    )


def _parse_overrides(odata: dict, locations: dict[str, Location],
                     errors: list[str], owner: str) -> DailyOverrides:
    time_rules = {}
    for loc_name, rdata in (odata.get("time_rules") or {}).items():
        if loc_name not in locations:
            errors.append(f"{owner}: time rules for unknown location {loc_name}")
        time_rules[loc_name] = _parse_rules(rdata or {}, errors, f"{owner} {loc_name}")

    pinned = []
    for pdata in odata.get("pinned", []) or []:
        start, end = parse_time_range(pdata["time"])
        if pdata.get("sport"):
            activity = FieldSport(pdata["field"], pdata["sport"])
        else:
            activity = Special(pdata["special"])
        pinned.append(PinnedActivity(pdata["bunk"], start, end, activity))

    return DailyOverrides(
        disabled_locations=set(odata.get("disabled_locations", []) or []),
        disabled_bunks=set(odata.get("disabled_bunks", []) or []),
        disabled_leagues=set(odata.get("disabled_leagues", []) or []),
        time_rules=time_rules,
        trips=[_parse_block(t, True) for t in odata.get("trips", []) or []],
        pinned=pinned,
    )


def load_config(path: str | Path) -> dict:
    """Load and validate config YAML, returning structured data.

    Returns dict with:
    - camp: {name, activity_minutes, increment, span_len, h2h_probability,
      max_h2h_per_day}
    - slots: list[TimeSlot]
    - divisions: dict[name -> Division]
    - locations: dict[name -> Location] (fields and specials)
    - fixed: list[FixedBlock]
    - leagues: dict[name -> League]
    - specialty_leagues: dict[name -> SpecialtyLeague]
    - overrides: dict[date -> DailyOverrides]
    - errors: list of validation messages (also printed)
    """
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    errors: list[str] = []

    # Time grid
    slots = build_time_slots(raw.get("times", {})) if raw.get("times") else []
    increment = slots[0].minutes if slots else 0

    camp_raw = raw.get("camp", {}) or {}
    activity_minutes = int(camp_raw.get("activity_minutes", increment or 45))
    camp = {
        "name": camp_raw.get("name", ""),
        "activity_minutes": activity_minutes,
        "increment": increment,
        "span_len": compute_span_len(activity_minutes, increment),
        "h2h_probability": float(camp_raw.get("h2h_probability", 0.6)),
        "max_h2h_per_day": int(camp_raw.get("max_h2h_per_day", 2)),
    }

    # Divisions
    divisions: dict[str, Division] = {}
    bunk_to_division: dict[str, str] = {}
    for name, ddata in (raw.get("divisions") or {}).items():
        bunks = [str(b) for b in ddata.get("bunks", [])]
        for b in bunks:
            if b in bunk_to_division:
                errors.append(f"Bunk {b} is in both {bunk_to_division[b]} and {name}")
            bunk_to_division[b] = name
        active = None
        if ddata.get("active"):
            start, end = parse_time_range(ddata["active"])
            active = {s.index for s in slots if s.within(start, end)}
        divisions[name] = Division(name=name, bunks=bunks, active_slots=active)

    # Fields and specials
    locations: dict[str, Location] = {}
    for section, is_special in (("fields", False), ("specials", True)):
        for name, ldata in (raw.get(section) or {}).items():
            ldata = ldata or {}
            if name in locations:
                errors.append(f"Location {name} defined twice")
            allowed_divs = list(ldata.get("divisions", []) or [])
            for d in allowed_divs:
                if d not in divisions:
                    errors.append(f"{name}: unknown division {d}")
            allowed_bunks = {
                d: [str(b) for b in (bl or [])]
                for d, bl in (ldata.get("bunks") or {}).items()
            }
            sports = [] if is_special else list(ldata.get("sports", []) or [])
            if not is_special and not sports:
                errors.append(f"Field {name} offers no sports")
            locations[name] = Location(
                name=name,
                sports=sports,
                is_special=is_special,
                sharable=bool(ldata.get("sharable", False)),
                allowed_divisions=allowed_divs,
                allowed_bunks=allowed_bunks,
                time_rules=_parse_rules(ldata, errors, name),
                max_usage=ldata.get("max_usage") if is_special else None,
                available=bool(ldata.get("available", True)),
            )

    # Fixed blocks
    fixed = [_parse_block(b, False) for b in raw.get("fixed", []) or []]
    for block in fixed:
        for d in block.divisions:
            if d not in divisions:
                errors.append(f"Fixed block {block.name}: unknown division {d}")

    # Leagues
    leagues: dict[str, League] = {}
    for name, ldata in (raw.get("leagues") or {}).items():
        league = League(
            name=name,
            teams=[str(t) for t in ldata.get("teams", [])],
            divisions=list(ldata.get("divisions", [])),
            sports=list(ldata.get("sports", [])),
            fields=list(ldata.get("fields", []) or []),
            enabled=bool(ldata.get("enabled", True)),
        )
        for d in league.divisions:
            if d not in divisions:
                errors.append(f"League {name}: unknown division {d}")
        for fname in league.fields:
            if fname not in locations:
                errors.append(f"League {name}: unknown field {fname}")
        if len(league.teams) < 2:
            errors.append(f"League {name}: needs at least 2 teams")
        leagues[name] = league

    specialty_leagues: dict[str, SpecialtyLeague] = {}
    for name, ldata in (raw.get("specialty_leagues") or {}).items():
        league = SpecialtyLeague(
            name=name,
            teams=[str(t) for t in ldata.get("teams", [])],
            divisions=list(ldata.get("divisions", [])),
            sport=ldata.get("sport", ""),
            fields=list(ldata.get("fields", []) or []),
            games_per_field=int(ldata.get("games_per_field", 3)),
            enabled=bool(ldata.get("enabled", True)),
        )
        for d in league.divisions:
            if d not in divisions:
                errors.append(f"Specialty league {name}: unknown division {d}")
        for fname in league.fields:
            if fname not in locations:
                errors.append(f"Specialty league {name}: unknown field {fname}")
        if not league.fields:
            errors.append(f"Specialty league {name}: no fields listed")
        specialty_leagues[name] = league

    # Daily overrides keyed by date
    overrides: dict[date, DailyOverrides] = {}
    for key, odata in (raw.get("overrides") or {}).items():
        day = parse_date(key)
        ovr = _parse_overrides(odata or {}, locations, errors, f"Overrides {day}")
        for trip in ovr.trips:
            for b in trip.bunks:
                if b not in bunk_to_division:
                    errors.append(f"Trip {trip.name} on {day}: unknown bunk {b}")
        for p in ovr.pinned:
            if p.bunk not in bunk_to_division:
                errors.append(f"Pinned activity on {day}: unknown bunk {p.bunk}")
        overrides[day] = ovr

    if not slots:
        errors.append("No time slots defined")
    if not locations:
        errors.append("No fields or specials defined")

    if errors:
        print("Config validation errors:")
        for e in errors:
            print(f"  {e}")

    return {
        "camp": camp,
        "slots": slots,
        "divisions": divisions,
        "locations": locations,
        "fixed": fixed,
        "leagues": leagues,
        "specialty_leagues": specialty_leagues,
        "overrides": overrides,
        "errors": errors,
    }
