"""Data models for the camp activity scheduler."""

from dataclasses import dataclass, field, replace
from datetime import time
from enum import Enum
from typing import Optional


IGNORED_NAMES = {"free", "free play", "no field"}


def is_ignored_name(name: str) -> bool:
    """Placeholder activities never count toward rotation history."""
    key = (name or "").strip().lower()
    return key in IGNORED_NAMES or "transition" in key


@dataclass(frozen=True)
class TimeSlot:
    """One interval of the daily grid, shared by every bunk."""
    index: int
    start: time
    end: time

    @property
    def minutes(self) -> int:
        return (self.end.hour * 60 + self.end.minute) - (self.start.hour * 60 + self.start.minute)

    def overlaps(self, start: time, end: time) -> bool:
        return self.start < end and self.end > start

    def within(self, start: time, end: time) -> bool:
        return self.start >= start and self.end <= end


@dataclass
class Division:
    """A named group of bunks sharing the time grid."""
    name: str
    bunks: list[str]
    active_slots: Optional[set[int]] = None  # None means every slot

    def is_active(self, slot: int) -> bool:
        return self.active_slots is None or slot in self.active_slots


@dataclass
class TimeRule:
    kind: str  # "available" or "unavailable"
    start: time
    end: time


@dataclass
class Location:
    """A field (offers sports) or a special activity venue."""
    name: str
    sports: list[str] = field(default_factory=list)
    is_special: bool = False
    sharable: bool = False
    allowed_divisions: list[str] = field(default_factory=list)  # empty = all
    allowed_bunks: dict[str, list[str]] = field(default_factory=dict)
    time_rules: list[TimeRule] = field(default_factory=list)
    max_usage: Optional[int] = None
    available: bool = True

    @property
    def capacity(self) -> int:
        return 2 if self.sharable else 1

    def allows(self, division: str, bunk: str) -> bool:
        """Check division eligibility and per-division bunk limits.

        A division listed in allowed_bunks with an empty list admits all of
        its bunks; a division missing from a non-empty allowed_bunks map is
        excluded.
        """
        if self.allowed_divisions and division not in self.allowed_divisions:
            return False
        if self.allowed_bunks:
            if division not in self.allowed_bunks:
                return False
            limited = self.allowed_bunks[division]
            if limited and bunk not in limited:
                return False
        return True

    def is_time_available(self, slot: TimeSlot,
                          rules: Optional[list[TimeRule]] = None) -> bool:
        """Any "available" rule makes the default unavailable; "unavailable"
        rules win on any overlap."""
        rules = self.time_rules if rules is None else rules
        if not rules:
            return True
        available_rules = [r for r in rules if r.kind == "available"]
        ok = not available_rules
        for r in available_rules:
            if slot.within(r.start, r.end):
                ok = True
                break
        for r in rules:
            if r.kind == "unavailable" and slot.overlaps(r.start, r.end):
                return False
        return ok


@dataclass(frozen=True)
class FieldSport:
    """A sport played on a specific field."""
    field: str
    sport: str

    @property
    def name(self) -> str:
        return self.sport

    @property
    def location(self) -> str:
        return self.field

    @property
    def is_special(self) -> bool:
        return False

    @property
    def label(self) -> str:
        return f"{self.sport} @ {self.field}"


@dataclass(frozen=True)
class Special:
    """A special activity; the venue shares the activity's name."""
    name: str

    @property
    def location(self) -> str:
        return self.name

    @property
    def is_special(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return self.name


Activity = FieldSport | Special


class EntryKind(Enum):
    FIXED = "fixed"
    TRIP = "trip"
    H2H = "h2h"
    LEAGUE = "league"
    GENERAL = "general"

    @classmethod
    def from_str(cls, s: str) -> "EntryKind":
        try:
            return cls(str(s).lower())
        except ValueError:
            return cls.GENERAL


# Entries a league may reclaim from the grid.
EVICTABLE_KINDS = {EntryKind.GENERAL, EntryKind.H2H}


@dataclass
class Entry:
    """One cell of a bunk's schedule row."""
    activity: Activity
    kind: EntryKind = EntryKind.GENERAL
    location: Optional[str] = None
    opponent: Optional[str] = None
    league: Optional[str] = None
    continuation: bool = False
    fallback: bool = False
    repeat: bool = False

    @property
    def name(self) -> str:
        return self.activity.name

    @property
    def label(self) -> str:
        if self.kind == EntryKind.LEAGUE:
            return f"League: {self.league or self.name}"
        if self.kind == EntryKind.H2H:
            return f"{self.activity.label} vs {self.opponent}"
        return self.activity.label

    def as_continuation(self) -> "Entry":
        return replace(self, continuation=True)

    def to_dict(self) -> dict:
        return {
            "activity": self.name,
            "sport": self.activity.sport if isinstance(self.activity, FieldSport) else None,
            "field": self.location,
            "special": self.activity.is_special,
            "kind": self.kind.value,
            "opponent": self.opponent,
            "league": self.league,
            "continuation": self.continuation,
            "fallback": self.fallback,
            "repeat": self.repeat,
        }

    @classmethod
    def from_dict(cls, d) -> Optional["Entry"]:
        """Rebuild an entry from persisted data; malformed data yields None."""
        if not isinstance(d, dict):
            return None
        name = d.get("activity")
        if not isinstance(name, str) or not name:
            return None
        sport = d.get("sport")
        location = d.get("field")
        if isinstance(sport, str) and isinstance(location, str) and not d.get("special"):
            activity: Activity = FieldSport(location, sport)
        else:
            activity = Special(name)
        return cls(
            activity=activity,
            kind=EntryKind.from_str(d.get("kind", "general")),
            location=location if isinstance(location, str) else None,
            opponent=d.get("opponent") if isinstance(d.get("opponent"), str) else None,
            league=d.get("league") if isinstance(d.get("league"), str) else None,
            continuation=bool(d.get("continuation", False)),
            fallback=bool(d.get("fallback", False)),
            repeat=bool(d.get("repeat", False)),
        )


@dataclass
class FixedBlock:
    """A fixed placement (meal, assembly) or a trip for specific bunks."""
    name: str
    start: time
    end: time
    divisions: list[str] = field(default_factory=list)  # empty = all
    bunks: list[str] = field(default_factory=list)
    location: Optional[str] = None
    is_trip: bool = False


@dataclass
class PinnedActivity:
    """A manual placement for one bunk; leagues may reclaim it."""
    bunk: str
    start: time
    end: time
    activity: Activity


@dataclass
class League:
    """A regular division league with rotated sports."""
    name: str
    teams: list[str]
    divisions: list[str]
    sports: list[str]
    fields: list[str] = field(default_factory=list)  # empty = any field with the sport
    enabled: bool = True


@dataclass
class SpecialtyLeague:
    """A league with one fixed sport and an explicit field list."""
    name: str
    teams: list[str]
    divisions: list[str]
    sport: str
    fields: list[str]
    games_per_field: int = 3
    enabled: bool = True


@dataclass
class Matchup:
    """A pairing of two teams."""
    team_a: str
    team_b: str

    def involves(self, team: str) -> bool:
        return team in (self.team_a, self.team_b)

    def opponent(self, team: str) -> str:
        if team == self.team_a:
            return self.team_b
        return self.team_a


@dataclass
class Round:
    """A set of matchups where each team plays at most once."""
    number: int
    matchups: list[Matchup]
    bye_teams: list[str] = field(default_factory=list)


@dataclass
class LeagueGame:
    team_a: str
    team_b: str
    sport: str
    field: str
    order: int = 1  # position on its field, specialty leagues only

    def to_dict(self) -> dict:
        return {"teams": [self.team_a, self.team_b], "sport": self.sport,
                "field": self.field, "order": self.order}


@dataclass
class LeagueBooking:
    """A league booked into a slot span for its divisions."""
    league: str
    slot: int
    span: int
    divisions: list[str]
    games: list[LeagueGame] = field(default_factory=list)
    specialty: bool = False
    round_number: int = 0

    @property
    def slots(self) -> range:
        return range(self.slot, self.slot + self.span)

    def to_dict(self) -> dict:
        return {
            "league": self.league,
            "slot": self.slot,
            "span": self.span,
            "divisions": list(self.divisions),
            "specialty": self.specialty,
            "round": self.round_number,
            "games": [g.to_dict() for g in self.games],
        }

    @classmethod
    def from_dict(cls, d) -> Optional["LeagueBooking"]:
        if not isinstance(d, dict) or not isinstance(d.get("league"), str):
            return None
        games = []
        for g in d.get("games") or []:
            if not isinstance(g, dict):
                continue
            teams = g.get("teams") or []
            if len(teams) != 2:
                continue
            order = g.get("order", 1)
            games.append(LeagueGame(teams[0], teams[1], g.get("sport", ""),
                                    g.get("field", ""),
                                    order if isinstance(order, int) else 1))
        return cls(
            league=d["league"],
            slot=int(d.get("slot", 0)),
            span=int(d.get("span", 1)),
            divisions=list(d.get("divisions") or []),
            games=games,
            specialty=bool(d.get("specialty", False)),
            round_number=int(d.get("round", 0)),
        )


@dataclass
class DailyOverrides:
    """Per-day changes layered over the catalog."""
    disabled_locations: set[str] = field(default_factory=set)
    disabled_bunks: set[str] = field(default_factory=set)  # bunk or division names
    disabled_leagues: set[str] = field(default_factory=set)
    time_rules: dict[str, list[TimeRule]] = field(default_factory=dict)
    trips: list[FixedBlock] = field(default_factory=list)
    pinned: list[PinnedActivity] = field(default_factory=list)
