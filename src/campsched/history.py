"""Persisted day schedules and global settings.

Days are keyed by ISO date string. Each day holds named values such as
``scheduleAssignments`` (bunk -> list of entry dicts) and
``leagueAssignments`` (division -> slot -> booking dict). Global settings
hold ``leagueHistory``, ``historicalCounts`` (with ``historicalCountedDates``)
and ``manualUsageOffsets``.

Saves are buffered; ``flush()`` writes them out, once per scheduled day.
"""

import copy
from datetime import date
from pathlib import Path

import yaml


def date_key(d: date | str) -> str:
    if isinstance(d, date):
        return d.isoformat()
    return str(d)


def _is_date_key(key: str) -> bool:
    try:
        date.fromisoformat(key)
    except ValueError:
        return False
    return True


class HistoryStore:
    """In-memory store implementing the load/save accessors."""

    def __init__(self, days: dict | None = None, settings: dict | None = None):
        self._days: dict[str, dict] = {}
        for k, v in (days or {}).items():
            if isinstance(v, dict):
                self._days[date_key(k)] = v
        self._settings: dict = dict(settings or {})

    def load_all_daily_data(self) -> dict[str, dict]:
        return self._days

    def load_daily_data(self, schedule_date: date | str) -> dict:
        return self._days.get(date_key(schedule_date), {})

    def load_previous_daily_data(self, schedule_date: date | str) -> dict:
        """Return the most recent persisted day before schedule_date."""
        today = date_key(schedule_date)
        earlier = sorted(k for k in self._days if _is_date_key(k) and k < today)
        if not earlier:
            return {}
        return self._days[earlier[-1]]

    def load_global_settings(self) -> dict:
        return self._settings

    def save_current_daily_data(self, schedule_date: date | str, key: str, value) -> None:
        self._days.setdefault(date_key(schedule_date), {})[key] = copy.deepcopy(value)

    def save_global_settings(self, key: str, value) -> None:
        self._settings[key] = copy.deepcopy(value)

    def flush(self) -> None:
        """Write pending saves out; nothing to do in memory."""


class FileHistoryStore(HistoryStore):
    """Store backed by a single YAML file with ``days`` and ``settings``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        raw = {}
        if self.path.exists():
            with open(self.path) as f:
                loaded = yaml.safe_load(f)
            if isinstance(loaded, dict):
                raw = loaded
            else:
                print(f"  Warning: {self.path} is not a mapping, starting empty")
        days = raw.get("days") if isinstance(raw.get("days"), dict) else {}
        settings = raw.get("settings") if isinstance(raw.get("settings"), dict) else {}
        super().__init__(days, settings)

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump({"days": self._days, "settings": self._settings}, f,
                           sort_keys=True)
