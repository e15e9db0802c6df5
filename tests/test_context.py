"""Tests for context.py — ownership index, grid helpers and trials."""

import random
from datetime import date, time

import pytest

from campsched.context import Claim, FieldUsage, SchedulingContext, Trial, build_context
from campsched.models import (
    DailyOverrides, Division, Entry, EntryKind, FieldSport, Location, Special,
    TimeRule, TimeSlot,
)


def _make_ctx(overrides=None, divisions=None):
    slots = [TimeSlot(i, time(9 + i), time(10 + i)) for i in range(4)]
    divisions = divisions or {
        "Juniors": Division("Juniors", ["J1", "J2", "J3"]),
        "Seniors": Division("Seniors", ["S1"], active_slots={0, 1, 2}),
    }
    locations = {
        "Court": Location("Court", sports=["Basketball"], sharable=True),
        "Field": Location("Field", sports=["Soccer", "Kickball"]),
        "Arts": Location("Arts", is_special=True, max_usage=2),
        "Drama": Location("Drama", is_special=True,
                          time_rules=[TimeRule("available", time(11), time(13))]),
    }
    return SchedulingContext(date(2026, 7, 6), slots, divisions, locations,
                             overrides=overrides or DailyOverrides(),
                             rng=random.Random(3))


COURT = Location("Court", sports=["Basketball"], sharable=True)
RINK = Location("Rink", sports=["Hockey"])


class TestFieldUsage:
    def test_empty_hosts_anything(self):
        usage = FieldUsage()
        assert usage.can_host(0, RINK, "Juniors", exclusive=True)

    def test_unsharable_one_group(self):
        usage = FieldUsage()
        usage.reserve(0, "Rink", Claim(("J1",), "Juniors", EntryKind.GENERAL, exclusive=True))
        assert not usage.can_host(0, RINK, "Juniors")
        assert usage.can_host(1, RINK, "Juniors")

    def test_sharable_two_groups_same_division(self):
        usage = FieldUsage()
        usage.reserve(0, "Court", Claim(("J1",), "Juniors", EntryKind.GENERAL))
        assert usage.can_host(0, COURT, "Juniors")
        assert not usage.can_host(0, COURT, "Seniors")
        assert not usage.can_host(0, COURT, "Juniors", exclusive=True)
        usage.reserve(0, "Court", Claim(("J2",), "Juniors", EntryKind.GENERAL))
        assert not usage.can_host(0, COURT, "Juniors")

    def test_exclusive_claim_blocks_sharing(self):
        usage = FieldUsage()
        usage.reserve(0, "Court", Claim(("J1", "J2"), "Juniors", EntryKind.H2H, exclusive=True))
        assert not usage.can_host(0, COURT, "Juniors")

    def test_release_and_owners(self):
        usage = FieldUsage()
        usage.reserve(0, "Court", Claim(("J1", "J2"), "Juniors", EntryKind.H2H, exclusive=True))
        usage.reserve(1, "Court", Claim(("J3",), "Juniors", EntryKind.GENERAL))
        assert usage.owners("Court", [0, 1]) == {"J1", "J2", "J3"}
        removed = usage.release(0, "Court", "J2")
        assert len(removed) == 1
        assert usage.claims(0, "Court") == []

    def test_copy_is_independent(self):
        usage = FieldUsage()
        usage.reserve(0, "Court", Claim(("J1",), "Juniors", EntryKind.GENERAL))
        other = usage.copy()
        other.reserve(0, "Court", Claim(("J2",), "Juniors", EntryKind.GENERAL))
        assert len(usage.claims(0, "Court")) == 1
        assert len(other.claims(0, "Court")) == 2


class TestContext:
    def test_rows_built_for_active_bunks(self):
        ctx = _make_ctx(overrides=DailyOverrides(disabled_bunks={"J3"}))
        assert set(ctx.assignments) == {"J1", "J2", "S1"}
        assert all(len(r) == 4 for r in ctx.assignments.values())

    def test_disabled_division(self):
        ctx = _make_ctx(overrides=DailyOverrides(disabled_bunks={"Seniors"}))
        assert ctx.bunks("Seniors") == []
        assert "S1" not in ctx.assignments

    def test_catalog_skips_disabled(self):
        ctx = _make_ctx(overrides=DailyOverrides(disabled_locations={"Field"}))
        names = {a.name for a in ctx.catalog()}
        assert names == {"Basketball", "Arts", "Drama"}
        assert ctx.usage_limits() == {"Arts": 2}
        assert ctx.special_names() == {"Arts", "Drama"}

    def test_view_is_read_only(self):
        ctx = _make_ctx()
        view = ctx.view()
        assert view["J1"] is ctx.assignments["J1"]
        with pytest.raises(TypeError):
            view["J1"] = []
        assert ctx.assignments["J1"] == [None] * 4

    def test_free_run_stops_at_entries_and_inactive(self):
        ctx = _make_ctx()
        ctx.assignments["J1"][2] = Entry(Special("Lunch"), kind=EntryKind.FIXED)
        assert ctx.free_run("J1", 0, 5) == 2
        assert ctx.free_run("J1", 0, 1) == 1
        assert ctx.free_run("S1", 1, 5) == 2

    def test_fits_checks_time_rules(self):
        ctx = _make_ctx()
        assert not ctx.fits("J1", "Juniors", Special("Drama"), 0, 1)
        assert ctx.fits("J1", "Juniors", Special("Drama"), 2, 1)
        assert not ctx.fits("J1", "Juniors", Special("Drama"), 1, 2)

    def test_fits_daily_rules_replace_global(self):
        ovr = DailyOverrides(time_rules={"Drama": []})
        ctx = _make_ctx(overrides=ovr)
        assert ctx.fits("J1", "Juniors", Special("Drama"), 0, 1)

    def test_fits_rejects_unknown_sport(self):
        ctx = _make_ctx()
        assert not ctx.fits("J1", "Juniors", FieldSport("Court", "Soccer"), 0, 1)

    def test_place_claims_location(self):
        ctx = _make_ctx()
        ctx.place("J1", "Juniors", 0, 2, Entry(FieldSport("Field", "Soccer"), location="Field"))
        assert ctx.assignments["J1"][1].continuation
        assert not ctx.fits("J2", "Juniors", FieldSport("Field", "Kickball"), 1, 1)
        assert ctx.done_today("J1", "Soccer")

    def test_sharing_limited_to_division(self):
        ctx = _make_ctx()
        ctx.place("J1", "Juniors", 0, 1, Entry(FieldSport("Court", "Basketball"), location="Court"))
        assert ctx.fits("J2", "Juniors", FieldSport("Court", "Basketball"), 0, 1)
        assert not ctx.fits("S1", "Seniors", FieldSport("Court", "Basketball"), 0, 1)

    def test_place_h2h(self):
        ctx = _make_ctx()
        ctx.place_h2h("J1", "J2", "Juniors", 0, 1, FieldSport("Court", "Basketball"))
        assert ctx.assignments["J1"][0].opponent == "J2"
        assert ctx.assignments["J2"][0].opponent == "J1"
        assert ctx.h2h_counts["J1"] == 1
        assert "J2" in ctx.h2h_opponents["J1"]
        # The pair holds the sharable court alone
        assert not ctx.fits("J3", "Juniors", FieldSport("Court", "Basketball"), 0, 1)

    def test_empty_cells_skip_inactive(self):
        ctx = _make_ctx()
        cells = ctx.empty_cells()
        assert ("Seniors", "S1", 3) not in cells
        assert len(cells) == 3 * 4 + 3

    def test_warn_records(self, capsys):
        ctx = _make_ctx()
        ctx.warn("something odd")
        assert ctx.warnings == ["something odd"]
        assert "Warning: something odd" in capsys.readouterr().out


class TestTrial:
    def test_copy_on_write(self):
        ctx = _make_ctx()
        trial = Trial(ctx)
        trial.write("J1", 0, 1, Entry(Special("Arts"), location="Arts"))
        assert trial.row("J1")[0] is not None
        assert ctx.assignments["J1"][0] is None
        assert trial.row("J2") is ctx.assignments["J2"]
        trial.commit()
        assert ctx.assignments["J1"][0].name == "Arts"

    def test_discarded_trial_leaves_context(self):
        ctx = _make_ctx()
        ctx.place("J1", "Juniors", 0, 1, Entry(FieldSport("Field", "Soccer"), location="Field"))
        trial = Trial(ctx)
        assert trial.reclaim("Field", [0])
        assert trial.row("J1")[0] is None
        assert ctx.assignments["J1"][0] is not None
        assert ctx.usage.claims(0, "Field")

    def test_evict_span_and_h2h_opponent(self):
        ctx = _make_ctx()
        ctx.place_h2h("J1", "J2", "Juniors", 0, 2, FieldSport("Field", "Soccer"))
        trial = Trial(ctx)
        assert trial.evict("J1", 1)
        assert trial.row("J1")[:2] == [None, None]
        assert trial.row("J2")[:2] == [None, None]
        assert trial.usage.claims(0, "Field") == []
        trial.commit()
        assert ctx.h2h_counts["J1"] == 0
        assert "J1" not in ctx.h2h_opponents["J2"]

    def test_fixed_not_evictable(self):
        ctx = _make_ctx()
        ctx.assignments["J1"][0] = Entry(Special("Lunch"), kind=EntryKind.FIXED)
        trial = Trial(ctx)
        assert not trial.evict("J1", 0)

    def test_league_claim_not_reclaimable(self):
        ctx = _make_ctx()
        ctx.usage.reserve(0, "Field", Claim(("Junior League",), "Juniors",
                                            EntryKind.LEAGUE, exclusive=True))
        trial = Trial(ctx)
        assert not trial.can_reclaim("Field", [0])
        assert not trial.reclaim("Field", [0])


class TestBuildContext:
    def test_from_config(self):
        config = {
            "camp": {"span_len": 2, "h2h_probability": 0.5, "max_h2h_per_day": 1},
            "slots": [TimeSlot(0, time(9), time(10)), TimeSlot(1, time(10), time(11))],
            "divisions": {"Juniors": Division("Juniors", ["J1"])},
            "locations": {"Court": COURT},
            "fixed": [],
            "leagues": {},
            "specialty_leagues": {},
            "overrides": {date(2026, 7, 6): DailyOverrides(disabled_bunks={"J1"})},
        }
        ctx = build_context(config, date(2026, 7, 6), seed=1)
        assert ctx.span_len == 2
        assert ctx.h2h_probability == 0.5
        assert ctx.assignments == {}
        other = build_context(config, date(2026, 7, 7), seed=1)
        assert set(other.assignments) == {"J1"}
