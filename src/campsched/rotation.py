"""Rotation fairness scoring for bunk activities.

Scores a (bunk, activity) pair from the bunk's recent history and today's
grid. Lower is better; FORBIDDEN marks an illegal pairing (already done
today, or the bunk's usage cap is reached).

Seven factors are weighted and summed:
1. Recency    - days since the bunk last did the activity
2. Streak     - consecutive days ending yesterday, plus scattered weekly use
3. Frequency  - this activity's count against the bunk's own average
4. Variety    - sport/special balance and variety within today
5. Distribution - the bunk's count against the rest of its division
6. Coverage   - reward activities the bunk has never tried
7. Limits     - per-bunk usage caps

History comes from scanning the last ``history_days`` persisted camp days
and is cached per schedule date.
"""

import math
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from campsched.models import Activity, Entry, EntryKind, is_ignored_name


FORBIDDEN = math.inf

# Entries that never count as a bunk's own activity choice.
NON_ROTATION_KINDS = {EntryKind.FIXED, EntryKind.TRIP, EntryKind.LEAGUE}


@dataclass
class RotationConfig:
    history_days: int = 14

    # Recency
    yesterday_penalty: float = 12000
    recency_decay: float = 0.65
    recency_window: int = 8
    recency_residual: float = 200
    never_done_bonus: float = -5000
    done_once_bonus: float = -3000
    done_twice_bonus: float = -1500
    novelty_min_days: int = 4

    # Streak
    streak_multipliers: tuple[float, float, float] = (2, 4, 8)
    week_days: int = 7

    # Frequency
    under_utilized_bonus: float = -2000
    slightly_under_bonus: float = -800
    slightly_above_penalty: float = 500
    above_average_penalty: float = 1200
    high_frequency_penalty: float = 3000
    high_frequency_step: float = 500

    # Variety
    good_variety_bonus: float = -400
    variety_fade: float = 0.8
    balance_bonus: float = -800

    # Distribution
    most_in_division_penalty: float = 2500
    severe_imbalance_penalty: float = 5000
    above_division_avg_penalty: float = 1000
    least_in_division_bonus: float = -1500
    below_division_avg_bonus: float = -600

    # Coverage
    missing_activity_bonus: float = -3500
    low_coverage_bonus: float = -1500

    # Limits
    limited_activity_penalty: float = 800
    near_limit_penalty: float = 2000

    weights: dict[str, float] = field(default_factory=lambda: {
        "recency": 1.0,
        "streak": 1.5,
        "frequency": 1.0,
        "variety": 1.2,
        "distribution": 1.0,
        "coverage": 0.8,
        "limits": 1.0,
    })

    tie_breaker_range: float = 500
    tie_breaker_randomness: float = 300


@dataclass
class ActivityRecord:
    count: int = 0
    days_ago: list[int] = field(default_factory=list)  # one per day, ascending

    @property
    def days_since_last(self) -> Optional[int]:
        return self.days_ago[0] if self.days_ago else None


@dataclass
class BunkHistory:
    """What a bunk did over the scanned window."""
    bunk: str
    activities: dict[str, ActivityRecord] = field(default_factory=dict)
    recent_week: dict[str, int] = field(default_factory=dict)
    streaks: dict[str, int] = field(default_factory=dict)
    days_scanned: int = 0
    total: int = 0

    @property
    def unique(self) -> set[str]:
        return set(self.activities)

    def record(self, name: str) -> ActivityRecord:
        return self.activities.get(name) or ActivityRecord()


def _entries_of(row) -> list[Entry]:
    """Parse a persisted row defensively, skipping anything malformed."""
    if not isinstance(row, (list, tuple)):
        return []
    entries = []
    for cell in row:
        entry = cell if isinstance(cell, Entry) else Entry.from_dict(cell)
        if entry is not None:
            entries.append(entry)
    return entries


def _counts_as_rotation(entry: Entry) -> bool:
    return (not entry.continuation
            and entry.kind not in NON_ROTATION_KINDS
            and not is_ignored_name(entry.name))


def day_counts(grid) -> dict[str, dict[str, int]]:
    """Per-bunk activity counts for one day's grid (bunk -> row)."""
    counts: dict[str, dict[str, int]] = {}
    if not isinstance(grid, Mapping):
        return counts
    for bunk, row in grid.items():
        for entry in _entries_of(row):
            if _counts_as_rotation(entry):
                per_bunk = counts.setdefault(str(bunk), {})
                per_bunk[entry.name] = per_bunk.get(entry.name, 0) + 1
    return counts


def add_counts(totals: dict[str, dict[str, int]],
               counts: dict[str, dict[str, int]], sign: int = 1) -> None:
    """Add (or with sign=-1 remove) counts in place; never below zero."""
    for bunk, per_bunk in counts.items():
        into = totals.setdefault(bunk, {})
        for name, n in per_bunk.items():
            value = max(0, into.get(name, 0) + sign * n)
            if value:
                into[name] = value
            else:
                into.pop(name, None)
        if not into:
            del totals[bunk]


class RotationEngine:
    """Scores activities for bunks from history and today's grid."""

    def __init__(self, store=None, schedule_date: date | None = None,
                 config: RotationConfig | None = None,
                 rng: random.Random | None = None):
        self.store = store
        self.config = config or RotationConfig()
        self.rng = rng or random.Random()
        self._schedule_date = schedule_date or date.today()
        self._cache: dict[str, BunkHistory] = {}
        self._settings: Optional[dict] = None
        self._lifetime: Optional[dict[str, dict[str, int]]] = None

        self._today: Mapping[str, Sequence] = {}
        self._divisions: dict[str, list[str]] = {}
        self._catalog: list[str] = []
        self._specials: set[str] = set()
        self._limits: dict[str, int] = {}

    # -- wiring --------------------------------------------------------------

    def attach(self, ctx) -> None:
        """Read today's grid and the catalog from a scheduling context."""
        self.set_schedule_date(ctx.schedule_date)
        self._today = ctx.view()
        self._divisions = ctx.division_bunks()
        self._catalog = ctx.catalog_names()
        self._specials = ctx.special_names()
        self._limits = ctx.usage_limits()

    def set_schedule_date(self, schedule_date: date) -> None:
        if schedule_date != self._schedule_date:
            self._schedule_date = schedule_date
            self.clear_history_cache()

    def clear_history_cache(self) -> None:
        self._cache.clear()
        self._settings = None
        self._lifetime = None

    def rebuild_all_history(self, bunks: list[str] | None = None) -> int:
        """Clear the cache and pre-warm every known bunk."""
        self.clear_history_cache()
        if bunks is None:
            bunks = [b for div in self._divisions.values() for b in div]
        for b in bunks:
            self.get_bunk_history(b)
        return len(bunks)

    # -- history -------------------------------------------------------------

    def _global_settings(self) -> dict:
        if self._settings is None:
            settings = self.store.load_global_settings() if self.store else {}
            self._settings = settings if isinstance(settings, dict) else {}
        return self._settings

    def _persisted_days(self) -> list[dict]:
        """Camp days before the schedule date, most recent first."""
        if self.store is None:
            return []
        all_days = self.store.load_all_daily_data()
        if not isinstance(all_days, dict):
            return []
        today = self._schedule_date.isoformat()
        keys = []
        for k in all_days:
            key = k.isoformat() if isinstance(k, date) else str(k)
            try:
                date.fromisoformat(key)
            except ValueError:
                continue
            if key < today:
                keys.append((key, k))
        keys.sort(reverse=True)
        days = []
        for _, k in keys[:self.config.history_days]:
            day = all_days[k]
            days.append(day if isinstance(day, dict) else {})
        return days

    def get_bunk_history(self, bunk: str) -> BunkHistory:
        """Scan persisted days for one bunk; cached until the date changes."""
        if bunk in self._cache:
            return self._cache[bunk]

        history = BunkHistory(bunk=bunk)
        days = self._persisted_days()
        history.days_scanned = len(days)
        for days_ago, day in enumerate(days, start=1):
            grid = day.get("scheduleAssignments")
            if not isinstance(grid, dict):
                continue
            for entry in _entries_of(grid.get(bunk)):
                if not _counts_as_rotation(entry):
                    continue
                rec = history.activities.setdefault(entry.name, ActivityRecord())
                rec.count += 1
                if days_ago not in rec.days_ago:
                    rec.days_ago.append(days_ago)
                history.total += 1

        week = self.config.week_days
        for name, rec in history.activities.items():
            rec.days_ago.sort()
            history.recent_week[name] = sum(1 for d in rec.days_ago if d <= week)
            streak = 0
            while streak + 1 in rec.days_ago:
                streak += 1
            if streak:
                history.streaks[name] = streak

        self._cache[bunk] = history
        return history

    def lifetime_counts(self) -> dict[str, dict[str, int]]:
        """Stored ``historicalCounts`` without the schedule date's own run.

        Re-running a counted day must not charge the bunk for the grid it
        is about to replace.
        """
        if self._lifetime is not None:
            return self._lifetime
        settings = self._global_settings()
        stored = settings.get("historicalCounts", {})
        lifetime: dict[str, dict[str, int]] = {}
        if isinstance(stored, dict):
            for bunk, per_bunk in stored.items():
                if not isinstance(per_bunk, dict):
                    continue
                lifetime[str(bunk)] = {str(n): int(v) for n, v in per_bunk.items()
                                       if isinstance(v, (int, float))}
        counted = settings.get("historicalCountedDates", [])
        if (self.store is not None and isinstance(counted, list)
                and self._schedule_date.isoformat() in counted):
            day = self.store.load_daily_data(self._schedule_date)
            if isinstance(day, dict):
                add_counts(lifetime, day_counts(day.get("scheduleAssignments")), sign=-1)
        self._lifetime = lifetime
        return lifetime

    def activity_count(self, bunk: str, name: str) -> int:
        """Scanned count (or the larger lifetime count) plus any manual
        offset, never below zero."""
        count = self.get_bunk_history(bunk).record(name).count
        count = max(count, self.lifetime_counts().get(bunk, {}).get(name, 0))
        settings = self._global_settings()
        offsets = settings.get("manualUsageOffsets", {})
        if isinstance(offsets, dict) and isinstance(offsets.get(bunk), dict):
            value = offsets[bunk].get(name, 0)
            if isinstance(value, (int, float)):
                count += int(value)
        return max(0, count)

    def _today_entries(self, bunk: str, before_slot: Optional[int]) -> list[Entry]:
        row = self._today.get(bunk) or []
        if before_slot is not None:
            row = row[:before_slot]
        return [e for e in row if e is not None and not e.continuation]

    def _today_names(self, bunk: str, before_slot: Optional[int]) -> set[str]:
        return {e.name for e in self._today_entries(bunk, before_slot)}

    # -- components ----------------------------------------------------------

    def recency_score(self, bunk: str, name: str,
                      before_slot: Optional[int] = None) -> float:
        cfg = self.config
        if name in self._today_names(bunk, before_slot):
            return FORBIDDEN
        count = self.activity_count(bunk, name)
        days = self.get_bunk_history(bunk).record(name).days_since_last
        if count == 0:
            return cfg.never_done_bonus
        if days is None:
            days = cfg.history_days

        # Novelty only once the activity has had time to cool off.
        if days >= cfg.novelty_min_days:
            if count == 1:
                return cfg.done_once_bonus
            if count == 2:
                return cfg.done_twice_bonus

        if days <= cfg.recency_window:
            return cfg.yesterday_penalty * cfg.recency_decay ** (days - 1)
        return cfg.recency_residual

    def streak_score(self, bunk: str, name: str) -> float:
        cfg = self.config
        history = self.get_bunk_history(bunk)
        streak = history.streaks.get(name, 0)
        if streak >= 2:
            mult = cfg.streak_multipliers[min(streak, 4) - 2]
            return cfg.yesterday_penalty * mult
        week = [d for d in history.record(name).days_ago if d <= cfg.week_days]
        if len(week) >= 2:
            return cfg.yesterday_penalty * sum(cfg.recency_decay ** (d - 1) for d in week)
        return 0.0

    def frequency_score(self, bunk: str, name: str,
                        catalog: Optional[list[str]] = None) -> float:
        cfg = self.config
        catalog = catalog or self._catalog
        if not catalog:
            return 0.0
        avg = sum(self.activity_count(bunk, a) for a in catalog) / len(catalog)
        dev = self.activity_count(bunk, name) - avg
        if dev <= -3:
            return cfg.under_utilized_bonus
        if dev <= -1:
            return cfg.slightly_under_bonus
        if dev < 0:
            return cfg.slightly_under_bonus * abs(dev)
        if dev == 0:
            return 0.0
        if dev <= 1:
            return cfg.slightly_above_penalty
        if dev <= 2:
            return cfg.above_average_penalty
        return cfg.high_frequency_penalty + (dev - 2) * cfg.high_frequency_step

    def variety_score(self, bunk: str, name: str,
                      before_slot: Optional[int] = None) -> float:
        cfg = self.config
        entries = self._today_entries(bunk, before_slot)
        if name in {e.name for e in entries}:
            return FORBIDDEN
        chosen = [e for e in entries if _counts_as_rotation(e)]
        specials = sum(1 for e in chosen if e.activity.is_special)
        sports = len(chosen) - specials
        gap = sports - specials

        balance = 0.0
        is_special = name in self._specials
        if (is_special and gap > 0) or (not is_special and gap < 0):
            balance = cfg.balance_bonus * (2 if abs(gap) > 1 else 1)

        unique_today = len({e.name for e in chosen})
        general = cfg.good_variety_bonus * cfg.variety_fade ** unique_today
        return balance + general

    def distribution_score(self, bunk: str, name: str,
                           division: Optional[str] = None) -> float:
        cfg = self.config
        bunks = self._divisions.get(division or self._division_of(bunk), [])
        if len(bunks) < 2:
            return 0.0
        counts = {b: self.activity_count(b, name) for b in bunks}
        mine = counts.get(bunk, self.activity_count(bunk, name))
        lo = min(counts.values())
        hi = max(counts.values())
        spread = hi - lo
        if spread == 0:
            return 0.0
        avg = sum(counts.values()) / len(counts)
        if mine >= lo + 3:
            return cfg.severe_imbalance_penalty
        if mine == hi:
            return cfg.most_in_division_penalty + 300 * spread
        if mine == lo:
            return cfg.least_in_division_bonus - 200 * spread
        if mine > avg + 0.5:
            return cfg.above_division_avg_penalty
        if mine < avg - 0.5:
            return cfg.below_division_avg_bonus
        return 0.0

    def coverage_score(self, bunk: str, name: str,
                       catalog: Optional[list[str]] = None) -> float:
        cfg = self.config
        catalog = catalog or self._catalog
        if not catalog:
            return 0.0
        tried = sum(1 for a in catalog if self.activity_count(bunk, a) > 0)
        ratio = tried / len(catalog)
        count = self.activity_count(bunk, name)
        if count == 0:
            return cfg.missing_activity_bonus * (1 - ratio)
        if ratio < 0.5 and count <= 1:
            return cfg.low_coverage_bonus * (1 - ratio)
        return 0.0

    def uses_today(self, bunk: str, name: str) -> int:
        return sum(1 for e in self._today_entries(bunk, None)
                   if e.name == name and _counts_as_rotation(e))

    def limit_score(self, bunk: str, name: str) -> float:
        """Uses so far, today's grid included, against the bunk's cap."""
        cfg = self.config
        cap = self._limits.get(name)
        if not cap:
            return 0.0
        count = self.activity_count(bunk, name) + self.uses_today(bunk, name)
        if count >= cap:
            return FORBIDDEN
        if count == cap - 1:
            return cfg.near_limit_penalty
        if count == cap - 2:
            return cfg.limited_activity_penalty
        return 0.0

    def _division_of(self, bunk: str) -> Optional[str]:
        for div, bunks in self._divisions.items():
            if bunk in bunks:
                return div
        return None

    # -- scoring -------------------------------------------------------------

    def score_components(self, bunk: str, activity_name: str,
                         division: Optional[str] = None,
                         before_slot: Optional[int] = None,
                         all_activities: Optional[list[str]] = None) -> dict[str, float]:
        return {
            "recency": self.recency_score(bunk, activity_name, before_slot),
            "streak": self.streak_score(bunk, activity_name),
            "frequency": self.frequency_score(bunk, activity_name, all_activities),
            "variety": self.variety_score(bunk, activity_name, before_slot),
            "distribution": self.distribution_score(bunk, activity_name, division),
            "coverage": self.coverage_score(bunk, activity_name, all_activities),
            "limits": self.limit_score(bunk, activity_name),
        }

    def calculate_rotation_score(self, bunk: str, activity_name: str,
                                 division: Optional[str] = None,
                                 before_slot: Optional[int] = None,
                                 all_activities: Optional[list[str]] = None) -> float:
        """Weighted sum of all factors; any FORBIDDEN factor wins."""
        if is_ignored_name(activity_name):
            return 0.0
        parts = self.score_components(bunk, activity_name, division,
                                      before_slot, all_activities)
        total = 0.0
        for key, value in parts.items():
            if value == FORBIDDEN:
                return FORBIDDEN
            total += value * self.config.weights.get(key, 1.0)
        return total

    def get_ranked_activities(self, bunk: str, activities: list[Activity],
                              division: Optional[str] = None,
                              before_slot: Optional[int] = None) -> list[tuple[Activity, float]]:
        """Score and sort candidates, best first, FORBIDDEN last.

        Allowed candidates within tie_breaker_range of the best get a small
        random bump so near-ties do not always resolve the same way.
        """
        cfg = self.config
        names = sorted({a.name for a in activities}) or None
        scores: dict[str, float] = {}
        for a in activities:
            if a.name not in scores:
                scores[a.name] = self.calculate_rotation_score(
                    bunk, a.name, division, before_slot, names)

        allowed = [s for s in scores.values() if s != FORBIDDEN]
        if allowed:
            best = min(allowed)
            for name, s in scores.items():
                if s != FORBIDDEN and s <= best + cfg.tie_breaker_range:
                    scores[name] = s + self.rng.uniform(0, cfg.tie_breaker_randomness)

        ranked = [(a, scores[a.name]) for a in activities]
        ranked.sort(key=lambda pair: pair[1])
        return ranked

    # -- introspection -------------------------------------------------------

    def verify_rotation_scores(self, bunk: str, activities: list[str],
                               division: Optional[str] = None,
                               before_slot: Optional[int] = None) -> dict:
        """Check scores against the rules they must honor.

        Returns dict with:
        - valid: bool
        - errors: list of rule violations
        - scores: dict of name -> {total, components}
        """
        cfg = self.config
        errors = []
        scores = {}
        today = self._today_names(bunk, before_slot)
        history = self.get_bunk_history(bunk)
        for name in activities:
            parts = self.score_components(bunk, name, division, before_slot, activities)
            total = self.calculate_rotation_score(bunk, name, division, before_slot, activities)
            scores[name] = {"total": total, "components": parts}
            if is_ignored_name(name):
                continue
            if name in today and total != FORBIDDEN:
                errors.append(f"{name}: done today but not forbidden")
            count = self.activity_count(bunk, name)
            days = history.record(name).days_since_last
            if count == 0 and name not in today and parts["recency"] != cfg.never_done_bonus:
                errors.append(f"{name}: never done but recency is {parts['recency']:.0f}")
            if days is not None and days < cfg.novelty_min_days and parts["recency"] < 0:
                errors.append(f"{name}: done {days} day(s) ago but rewarded")
        return {
            "valid": len(errors) == 0,
            "errors": errors,
            "scores": scores,
        }

    def format_bunk_rotation(self, bunk: str, before_slot: Optional[int] = None) -> str:
        """Text report of a bunk's history and current scores."""
        history = self.get_bunk_history(bunk)
        lines = []
        lines.append("=" * 60)
        lines.append(f"ROTATION: {bunk} ({self._schedule_date.isoformat()})")
        lines.append("=" * 60)
        lines.append(f"Days scanned: {history.days_scanned}  "
                     f"Entries: {history.total}  Unique: {len(history.unique)}")
        today = sorted(self._today_names(bunk, before_slot))
        lines.append(f"Today so far: {', '.join(today) if today else '-'}")

        lines.append(f"\n{'Activity':<20} {'Cnt':>4} {'Last':>5} {'Wk':>3} {'Stk':>4} {'Score':>9}")
        lines.append("-" * 50)
        names = sorted(set(self._catalog) | history.unique)
        for name in names:
            rec = history.record(name)
            last = rec.days_since_last
            score = self.calculate_rotation_score(bunk, name, before_slot=before_slot)
            score_s = "FORBID" if score == FORBIDDEN else f"{score:.0f}"
            lines.append(
                f"{name:<20} {self.activity_count(bunk, name):>4} "
                f"{last if last is not None else '-':>5} "
                f"{history.recent_week.get(name, 0):>3} "
                f"{history.streaks.get(name, 0):>4} {score_s:>9}"
            )
        return "\n".join(lines)

    def format_rotation_config(self) -> str:
        cfg = self.config
        lines = ["Rotation config:"]
        for key, value in vars(cfg).items():
            if key == "weights":
                continue
            lines.append(f"  {key}: {value}")
        lines.append("  weights: " + ", ".join(
            f"{k}={v}" for k, v in cfg.weights.items()))
        return "\n".join(lines)
