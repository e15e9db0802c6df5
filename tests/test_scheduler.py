"""Tests for scheduler.py — fixed placement, history and the full day fill."""

import random
from datetime import date, time, timedelta

from campsched.constraints import validate_schedule
from campsched.context import SchedulingContext
from campsched.fillers import PLACEHOLDER
from campsched.history import HistoryStore
from campsched.leagues import LeagueHistory
from campsched.models import (
    DailyOverrides, Division, Entry, EntryKind, FieldSport, FixedBlock,
    League, Location, PinnedActivity, Special, TimeSlot,
)
from campsched.rotation import FORBIDDEN, RotationEngine
from campsched.scheduler import (
    assign_fields_to_bunks, load_previous_day, persist_day, place_fixed,
    place_fixed_block, place_pinned, slots_for_range, update_historical_counts,
)

DAY = date(2026, 7, 6)


def _slots(n):
    return [TimeSlot(i, time(9 + i), time(10 + i)) for i in range(n)]


def _make_ctx(n_slots=3, locations=None, bunks=("B1", "B2"), **kwargs):
    divisions = {"Juniors": Division("Juniors", list(bunks))}
    if locations is None:
        locations = {
            "Court": Location("Court", sports=["Basketball"], sharable=True),
            "Field": Location("Field", sports=["Soccer"]),
            "Arts": Location("Arts", is_special=True, sharable=True),
            "Dining Hall": Location("Dining Hall", is_special=True, available=False),
        }
    return SchedulingContext(DAY, _slots(n_slots), divisions, locations,
                             rng=random.Random(11), **kwargs)


class TestSlotsForRange:
    def test_inside(self):
        assert slots_for_range(_slots(3), time(9), time(11)) == [0, 1]

    def test_overlap_when_nothing_inside(self):
        assert slots_for_range(_slots(3), time(9, 30), time(10, 15)) == [0, 1]

    def test_outside(self):
        assert slots_for_range(_slots(3), time(12), time(13)) == []


class TestFixedPlacement:
    def test_block_for_all_divisions(self):
        ctx = _make_ctx()
        n = place_fixed_block(ctx, FixedBlock("Lunch", time(10), time(11)))
        assert n == 2
        for b in ("B1", "B2"):
            assert ctx.assignments[b][1].kind == EntryKind.FIXED
        assert ctx.blocked_slots["Juniors"] == {1}

    def test_never_overwrites(self):
        ctx = _make_ctx()
        ctx.assignments["B1"][0] = Entry(Special("Swim Test"), kind=EntryKind.FIXED)
        place_fixed_block(ctx, FixedBlock("Assembly", time(9), time(11)))
        assert ctx.assignments["B1"][0].name == "Swim Test"
        head = ctx.assignments["B1"][1]
        assert head.name == "Assembly" and not head.continuation
        assert ctx.assignments["B2"][1].continuation

    def test_trip_only_named_bunks(self):
        ctx = _make_ctx(overrides=DailyOverrides(trips=[
            FixedBlock("Zoo", time(9), time(11), bunks=["B1"], is_trip=True)]))
        ctx.fixed_blocks = [FixedBlock("Lunch", time(10), time(11))]
        place_fixed(ctx)
        assert ctx.assignments["B1"][0].kind == EntryKind.TRIP
        assert ctx.assignments["B1"][1].name == "Zoo"
        assert ctx.assignments["B2"][0] is None
        assert ctx.assignments["B2"][1].name == "Lunch"
        # B2 is still free during the first trip hour.
        assert ctx.blocked_slots["Juniors"] == {1}

    def test_block_holds_location(self):
        ctx = _make_ctx()
        place_fixed_block(ctx, FixedBlock("Free Swim", time(9), time(10), location="Arts"))
        claims = ctx.usage.claims(0, "Arts")
        assert len(claims) == 1
        assert claims[0].exclusive
        assert set(claims[0].owners) == {"B1", "B2"}

    def test_unmatched_block_warns(self):
        ctx = _make_ctx()
        assert place_fixed_block(ctx, FixedBlock("Campfire", time(20), time(21))) == 0
        assert any("matches no time slot" in w for w in ctx.warnings)

    def test_pinned(self):
        pins = [
            PinnedActivity("B1", time(9), time(10), FieldSport("Field", "Soccer")),
            PinnedActivity("B2", time(9), time(10), FieldSport("Field", "Soccer")),
        ]
        ctx = _make_ctx(overrides=DailyOverrides(pinned=pins))
        assert place_pinned(ctx) == 1
        assert ctx.assignments["B1"][0].kind == EntryKind.GENERAL
        assert ctx.assignments["B2"][0] is None
        assert any("does not fit" in w for w in ctx.warnings)


class TestHistory:
    def test_previous_day_preferences(self):
        prev = {
            "B1": [
                Entry(FieldSport("Court", "Basketball"), location="Court").to_dict(),
                Entry(Special("Lunch"), kind=EntryKind.FIXED).to_dict(),
                Entry(FieldSport("Field", "Soccer"), kind=EntryKind.H2H,
                      location="Field", opponent="B2").to_dict(),
                "garbage",
            ],
        }
        store = HistoryStore(days={"2026-07-03": {"scheduleAssignments": prev}})
        ctx = _make_ctx()
        load_previous_day(ctx, store)
        assert ctx.previous_activities["B1"] == {"Basketball", "Soccer"}
        assert ctx.previous_opponents["B1"] == {"B2"}

    def test_no_previous_day(self):
        ctx = _make_ctx()
        load_previous_day(ctx, HistoryStore())
        assert ctx.previous_activities == {}

    def test_persist_day(self):
        store = HistoryStore()
        ctx = _make_ctx()
        ctx.assignments["B1"][0] = Entry(Special("Arts"), location="Arts")
        persist_day(ctx, store, LeagueHistory())
        day = store.load_daily_data(DAY)
        assert day["scheduleAssignments"]["B1"][0]["activity"] == "Arts"
        assert day["scheduleAssignments"]["B1"][1] is None
        assert day["leagueAssignments"] == {"Juniors": {}}
        assert "leagueHistory" in store.load_global_settings()

    def test_persist_counts_lifetime_usage(self):
        store = HistoryStore()
        ctx = _make_ctx()
        ctx.assignments["B1"][0] = Entry(Special("Arts"), location="Arts")
        ctx.assignments["B1"][1] = Entry(Special("Lunch"), kind=EntryKind.FIXED)
        persist_day(ctx, store, LeagueHistory())
        settings = store.load_global_settings()
        assert settings["historicalCounts"] == {"B1": {"Arts": 1}}
        assert settings["historicalCountedDates"] == ["2026-07-06"]

    def test_rerun_replaces_the_days_counts(self):
        store = HistoryStore(settings={"historicalCounts": {"B1": {"Arts": 5}}})
        ctx = _make_ctx()
        ctx.assignments["B1"][0] = Entry(Special("Arts"), location="Arts")
        persist_day(ctx, store, LeagueHistory())
        ctx.assignments["B1"][0] = Entry(FieldSport("Court", "Basketball"), location="Court")
        persist_day(ctx, store, LeagueHistory())
        counts = store.load_global_settings()["historicalCounts"]
        assert counts == {"B1": {"Arts": 5, "Basketball": 1}}

    def test_cap_holds_after_uses_leave_the_scan_window(self):
        cap_ctx = _make_ctx(locations={
            "Canteen": Location("Canteen", is_special=True, sharable=True, max_usage=3),
            "Arts": Location("Arts", is_special=True, sharable=True),
        })
        store = HistoryStore()
        canteen = Entry(Special("Canteen"), location="Canteen").to_dict()
        arts = Entry(Special("Arts"), location="Arts").to_dict()
        for n in range(17, 0, -1):
            day = DAY - timedelta(days=n)
            grid = {"B1": [canteen if n >= 15 else arts]}
            update_historical_counts(store, day, grid)
            store.save_current_daily_data(day, "scheduleAssignments", grid)
        engine = RotationEngine(store, DAY)
        engine.attach(cap_ctx)
        assert engine.get_bunk_history("B1").record("Canteen").count == 0
        assert engine.activity_count("B1", "Canteen") == 3
        assert engine.limit_score("B1", "Canteen") == FORBIDDEN

    def test_rerun_day_not_charged_for_its_old_grid(self):
        store = HistoryStore()
        ctx = _make_ctx(locations={
            "Arts": Location("Arts", is_special=True, sharable=True, max_usage=1)})
        ctx.assignments["B1"][0] = Entry(Special("Arts"), location="Arts")
        persist_day(ctx, store, LeagueHistory())
        engine = RotationEngine(store, DAY)
        engine.attach(ctx)
        assert engine.activity_count("B1", "Arts") == 0
        tomorrow = RotationEngine(store, DAY + timedelta(days=1))
        assert tomorrow.activity_count("B1", "Arts") == 1

    def test_persist_writes_once(self):
        class CountingStore(HistoryStore):
            flushes = 0

            def flush(self):
                self.flushes += 1

        store = CountingStore()
        persist_day(_make_ctx(), store, LeagueHistory())
        assert store.flushes == 1


class TestAssignFieldsToBunks:
    def test_single_sharable_field_fills_every_cell(self):
        ctx = _make_ctx(n_slots=2, locations={
            "Court": Location("Court", sports=["Basketball"], sharable=True)})
        assign_fields_to_bunks(ctx)
        assert ctx.empty_cells() == []
        result = validate_schedule(ctx)
        assert result["valid"], result["errors"]

    def test_full_day_valid(self):
        ctx = _make_ctx(n_slots=4, bunks=("B1", "B2", "B3", "B4"))
        ctx.fixed_blocks = [FixedBlock("Lunch", time(11), time(12))]
        assign_fields_to_bunks(ctx)
        assert ctx.empty_cells() == []
        assert all(ctx.assignments[b][2].name == "Lunch" for b in ctx.assignments)
        result = validate_schedule(ctx)
        assert result["valid"], result["errors"]

    def test_league_booked_before_general(self):
        ctx = _make_ctx(n_slots=3, bunks=("B1", "B2", "B3", "B4"), leagues={
            "JL": League("JL", ["Red", "Blue"], ["Juniors"], ["Soccer"])})
        assign_fields_to_bunks(ctx)
        booking = ctx.league_assignments["Juniors"][0]
        assert booking.games[0].field == "Field"
        assert all(ctx.assignments[b][0].kind == EntryKind.LEAGUE for b in ctx.assignments)
        assert validate_schedule(ctx)["valid"]

    def test_nothing_fits_marks_placeholder(self):
        ctx = _make_ctx(n_slots=1, locations={
            "Arts": Location("Arts", is_special=True, allowed_divisions=["Seniors"])})
        assign_fields_to_bunks(ctx)
        assert ctx.assignments["B1"][0].name == PLACEHOLDER
        result = validate_schedule(ctx)
        assert result["valid"]
        assert any("placeholder" in w for w in result["warnings"])

    def test_empty_catalog_leaves_grid(self):
        ctx = _make_ctx(locations={})
        ctx.assignments["B1"][0] = Entry(Special("Arts"))
        assign_fields_to_bunks(ctx)
        assert ctx.assignments["B1"][0].name == "Arts"
        assert any("No fields or specials" in w for w in ctx.warnings)

    def test_no_time_grid(self):
        ctx = _make_ctx(n_slots=0)
        assign_fields_to_bunks(ctx)
        assert ctx.assignments["B1"] == []
        assert any("No time grid" in w for w in ctx.warnings)

    def test_persist_then_refresh(self):
        store = HistoryStore()
        seen = []

        def refresh(c):
            seen.append(store.load_daily_data(c.schedule_date).get("scheduleAssignments"))

        ctx = _make_ctx()
        assign_fields_to_bunks(ctx, store, refresh=refresh)
        assert len(seen) == 1
        assert set(seen[0]) == {"B1", "B2"}

    def test_rerun_resets_grid(self):
        ctx = _make_ctx()
        assign_fields_to_bunks(ctx)
        assign_fields_to_bunks(ctx)
        assert validate_schedule(ctx)["valid"]
