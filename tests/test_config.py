"""Tests for config.py — parsing and loading."""

from datetime import date, time
from pathlib import Path

from campsched.config import (
    build_time_slots, compute_span_len, load_config, parse_date, parse_time,
    parse_time_range,
)
from campsched.models import FieldSport, Special

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"


def _write(tmp_path, text):
    path = tmp_path / "camp.yaml"
    path.write_text(text)
    return path


MINIMAL = """\
times:
  start: "9am"
  end: "11am"
  increment: 60
divisions:
  Juniors:
    bunks: [B1, B2]
fields:
  Court:
    sports: [Basketball]
    sharable: true
"""


class TestParseTime:
    def test_am(self):
        assert parse_time("10am") == time(10, 0)
        assert parse_time("9am") == time(9, 0)

    def test_pm(self):
        assert parse_time("5pm") == time(17, 0)
        assert parse_time("12pm") == time(12, 0)
        assert parse_time("1pm") == time(13, 0)

    def test_with_minutes(self):
        assert parse_time("5:30pm") == time(17, 30)
        assert parse_time("10:15am") == time(10, 15)

    def test_24hour(self):
        assert parse_time("17:00") == time(17, 0)
        assert parse_time("9:30") == time(9, 30)

    def test_midnight(self):
        assert parse_time("12am") == time(0, 0)

    def test_case_and_whitespace(self):
        assert parse_time("  5:30PM  ") == time(17, 30)


class TestParseDate:
    def test_basic(self):
        assert parse_date("2026-07-06") == date(2026, 7, 6)

    def test_date_passthrough(self):
        assert parse_date(date(2026, 7, 6)) == date(2026, 7, 6)


class TestTimeRange:
    def test_range(self):
        assert parse_time_range("9am-10:30am") == (time(9), time(10, 30))

    def test_24hour_range(self):
        assert parse_time_range("13:00-14:15") == (time(13), time(14, 15))


class TestTimeSlots:
    def test_increment(self):
        slots = build_time_slots({"start": "9am", "end": "12pm", "increment": 45})
        assert [s.start for s in slots] == [time(9), time(9, 45), time(10, 30), time(11, 15)]
        assert slots[-1].end == time(12)
        assert [s.index for s in slots] == [0, 1, 2, 3]

    def test_partial_tail_dropped(self):
        slots = build_time_slots({"start": "9am", "end": "10:30am", "increment": 60})
        assert len(slots) == 1

    def test_explicit(self):
        slots = build_time_slots({"slots": ["9am-10am", "10am-11:30am"]})
        assert len(slots) == 2
        assert slots[1].minutes == 90


class TestSpanLen:
    def test_span(self):
        assert compute_span_len(45, 45) == 1
        assert compute_span_len(60, 45) == 2
        assert compute_span_len(90, 45) == 2
        assert compute_span_len(30, 45) == 1

    def test_zero_increment(self):
        assert compute_span_len(45, 0) == 1


class TestLoadConfig:
    def test_minimal(self, tmp_path):
        config = load_config(_write(tmp_path, MINIMAL))
        assert len(config["slots"]) == 2
        assert config["divisions"]["Juniors"].bunks == ["B1", "B2"]
        assert config["locations"]["Court"].sharable
        assert config["camp"]["span_len"] == 1
        assert config["camp"]["h2h_probability"] == 0.6
        assert config["errors"] == []

    def test_sample_config(self):
        config = load_config(CONFIG_PATH)
        assert config["errors"] == []
        assert len(config["slots"]) == 9
        seniors = config["divisions"]["Seniors"]
        assert seniors.active_slots == set(range(8))
        tennis = config["locations"]["Tennis Courts"]
        assert tennis.time_rules[0].kind == "unavailable"
        assert config["locations"]["Canteen"].max_usage == 3
        assert config["locations"]["Woodshop"].allowed_bunks == {"Seniors": [], "Juniors": ["J3", "J4"]}
        assert set(config["leagues"]) == {"Junior League", "Senior League"}
        ovr = config["overrides"][date(2026, 7, 8)]
        assert ovr.disabled_locations == {"Hockey Rink"}
        assert ovr.trips[0].bunks == ["S1", "S2"]
        assert ovr.trips[0].is_trip

    def test_validation_errors(self, tmp_path, capsys):
        text = MINIMAL + """\
leagues:
  Bad League:
    teams: [Red]
    divisions: [Nowhere]
    sports: [Basketball]
    fields: [Moon]
overrides:
  2026-07-06:
    trips:
      - name: Zoo
        time: "9am-10am"
        bunks: [Z9]
"""
        config = load_config(_write(tmp_path, text))
        errors = config["errors"]
        assert any("unknown division Nowhere" in e for e in errors)
        assert any("unknown field Moon" in e for e in errors)
        assert any("at least 2 teams" in e for e in errors)
        assert any("unknown bunk Z9" in e for e in errors)
        assert "Config validation errors:" in capsys.readouterr().out

    def test_bad_time_rule(self, tmp_path):
        text = MINIMAL + """\
specials:
  Drama:
    available: ["3pm-1pm"]
"""
        config = load_config(_write(tmp_path, text))
        assert any("ends before it starts" in e for e in config["errors"])
        assert config["locations"]["Drama"].time_rules == []

    def test_pinned_override(self, tmp_path):
        text = MINIMAL + """\
overrides:
  "2026-07-06":
    pinned:
      - bunk: B1
        time: "9am-10am"
        field: Court
        sport: Basketball
      - bunk: B2
        time: "10am-11am"
        special: Arts
"""
        config = load_config(_write(tmp_path, text))
        pinned = config["overrides"][date(2026, 7, 6)].pinned
        assert pinned[0].activity == FieldSport("Court", "Basketball")
        assert pinned[1].activity == Special("Arts")

    def test_missing_grid_reported(self, tmp_path):
        config = load_config(_write(tmp_path, "divisions: {}\n"))
        assert "No time slots defined" in config["errors"]
        assert config["slots"] == []
