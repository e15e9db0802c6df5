"""Constraint validation for a day's grid.

Works on a live SchedulingContext or one restored from persisted data.
"""

from collections import defaultdict

from campsched.context import SchedulingContext
from campsched.models import EntryKind, is_ignored_name


def _occupant_groups(ctx: SchedulingContext) -> dict[tuple[int, str], dict]:
    """Rebuild (slot, location) -> group -> {division, exclusive} from the grid."""
    groups: dict[tuple[int, str], dict] = defaultdict(dict)
    for bunk, row in ctx.assignments.items():
        division = ctx.division_of(bunk)
        for s, e in enumerate(row):
            if e is None or not e.location or e.location not in ctx.locations:
                continue
            loc = ctx.locations[e.location]
            if e.kind == EntryKind.H2H:
                key = ("h2h",) + tuple(sorted([bunk, e.opponent or ""]))
                exclusive = True
            elif e.kind in (EntryKind.FIXED, EntryKind.TRIP):
                key = ("fixed", e.name)
                exclusive = True
            else:
                key = ("bunk", bunk)
                exclusive = not loc.sharable
            groups[(s, e.location)][key] = {"division": division, "exclusive": exclusive}

    for div, bookings in ctx.league_assignments.items():
        for booking in bookings.values():
            for s in booking.slots:
                for g in booking.games:
                    groups[(s, g.field)][("league", booking.league)] = {
                        "division": booking.divisions[0] if booking.divisions else div,
                        "exclusive": True,
                    }
    return groups


def validate_schedule(ctx: SchedulingContext) -> dict:
    """Validate a grid against the scheduling invariants.

    Returns dict with:
    - valid: bool (True if no hard constraint violations)
    - errors: list of hard constraint violations
    - warnings: list of relaxed rules (fallback repeats, placeholders)
    """
    errors = []
    warnings = []

    for div_name, div in ctx.divisions.items():
        for bunk in ctx.bunks(div_name):
            row = ctx.assignments.get(bunk)
            if row is None:
                errors.append(f"{bunk}: no schedule row")
                continue
            seen: dict[str, int] = {}
            for s, e in enumerate(row):
                if e is None:
                    if div.is_active(s):
                        errors.append(f"{bunk} slot {s + 1}: empty")
                    continue

                # Continuations trail a head of the same activity
                if e.continuation:
                    prev = row[s - 1] if s > 0 else None
                    if prev is None or prev.name != e.name:
                        errors.append(f"{bunk} slot {s + 1}: orphan continuation of {e.name}")
                    continue

                if e.kind in (EntryKind.GENERAL, EntryKind.H2H) and not is_ignored_name(e.name):
                    if e.name in seen:
                        msg = (f"{bunk} does {e.name} twice "
                               f"(slots {seen[e.name] + 1} and {s + 1})")
                        if e.repeat:
                            warnings.append(msg)
                        else:
                            errors.append(msg)
                    seen.setdefault(e.name, s)

                if e.fallback and not e.location and e.kind == EntryKind.GENERAL:
                    warnings.append(f"{bunk} slot {s + 1}: placeholder {e.name}")

                if e.kind == EntryKind.H2H:
                    opp_row = ctx.assignments.get(e.opponent or "")
                    opp = opp_row[s] if opp_row else None
                    if opp is None or opp.kind != EntryKind.H2H or opp.opponent != bunk:
                        errors.append(f"{bunk} slot {s + 1}: H2H vs {e.opponent} "
                                      f"not mirrored")
                    elif ctx.division_of(e.opponent) != div_name:
                        errors.append(f"{bunk} slot {s + 1}: H2H opponent "
                                      f"{e.opponent} is in another division")

    # Capacity per slot and location
    for (s, location), groups in sorted(_occupant_groups(ctx).items()):
        loc = ctx.locations.get(location)
        if loc is None:
            continue
        n = len(groups)
        if n <= 1:
            continue
        where = f"slot {s + 1} {location}"
        if any(g["exclusive"] for g in groups.values()):
            errors.append(f"{where}: {n} groups on an exclusive booking")
        elif n > loc.capacity:
            errors.append(f"{where}: {n} groups exceed capacity {loc.capacity}")
        elif len({g["division"] for g in groups.values()}) > 1:
            errors.append(f"{where}: shared by different divisions")

    # Concurrent league games need their own fields
    for div, bookings in ctx.league_assignments.items():
        for booking in bookings.values():
            if booking.specialty:
                continue
            fields = [g.field for g in booking.games]
            for f in sorted(set(fields)):
                if fields.count(f) > 1:
                    errors.append(f"{booking.league} slot {booking.slot + 1}: "
                                  f"{fields.count(f)} games on {f}")
            if any(not g.field for g in booking.games):
                errors.append(f"{booking.league} slot {booking.slot + 1}: game without a field")

    for w in ctx.warnings:
        if w not in warnings:
            warnings.append(w)

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }


def format_validation_report(result: dict) -> str:
    """Format validation results as text."""
    lines = []
    lines.append("=" * 60)
    lines.append("SCHEDULE VALIDATION REPORT")
    lines.append("=" * 60)

    if result["valid"]:
        lines.append("\nRESULT: VALID (no hard constraint violations)")
    else:
        lines.append(f"\nRESULT: INVALID ({len(result['errors'])} violations)")

    if result["errors"]:
        lines.append(f"\n--- ERRORS ({len(result['errors'])}) ---")
        for e in result["errors"]:
            lines.append(f"  ERROR: {e}")

    if result["warnings"]:
        lines.append(f"\n--- WARNINGS ({len(result['warnings'])}) ---")
        for w in result["warnings"]:
            lines.append(f"  WARN: {w}")

    return "\n".join(lines)
