"""League booking: specialty leagues first, then regular division leagues.

A league books every bunk of its divisions into one slot span. Regular
leagues rotate sports per team pair and assign fields most-constrained-first;
when no slot admits a full field assignment, an eviction pass reclaims
general and head-to-head placements and tries again. All placement runs on
a Trial and reaches the context only on success.
"""

from datetime import date

from campsched.context import Claim, FieldUsage, SchedulingContext, Trial
from campsched.models import (
    Entry, EntryKind, League, LeagueBooking, LeagueGame, Location, Matchup,
    Special, SpecialtyLeague,
)
from campsched.roundrobin import round_for_game


class LeagueHistory:
    """Day-keyed league history stored under the ``leagueHistory`` setting.

    - gamesPerDate: league -> date -> games played
    - teamSports:   "league|team" -> date -> sport
    - pairSports:   "league|a|b" -> date -> sport
    - slotOrder:    "league|team" -> date -> game order on its field
                    (specialty leagues; sitting out counts as last)
    - teamFields:   "league|team" -> date -> field (specialty leagues)

    Keying by date keeps re-running a day from double counting.
    """

    WAIT_WEIGHT = 50

    def __init__(self, raw: dict | None = None):
        raw = raw if isinstance(raw, dict) else {}
        self.games_per_date: dict[str, dict[str, int]] = self._section(raw, "gamesPerDate")
        self.team_sports: dict[str, dict[str, str]] = self._section(raw, "teamSports")
        self.pair_sports: dict[str, dict[str, str]] = self._section(raw, "pairSports")
        self.slot_order: dict[str, dict[str, int]] = self._section(raw, "slotOrder")
        self.team_fields: dict[str, dict[str, str]] = self._section(raw, "teamFields")

    @staticmethod
    def _section(raw: dict, key: str) -> dict:
        value = raw.get(key)
        if not isinstance(value, dict):
            return {}
        return {str(k): {str(d): v for d, v in inner.items()}
                for k, inner in value.items() if isinstance(inner, dict)}

    @staticmethod
    def _pair_key(league: str, a: str, b: str) -> str:
        x, y = sorted([a, b])
        return f"{league}|{x}|{y}"

    def game_number(self, league: str, schedule_date: date) -> int:
        today = schedule_date.isoformat()
        played = self.games_per_date.get(league, {})
        return sum(1 for d, n in played.items() if d < today and n)

    def last_sport(self, league: str, team: str, schedule_date: date) -> str | None:
        today = schedule_date.isoformat()
        past = {d: s for d, s in self.team_sports.get(f"{league}|{team}", {}).items()
                if d < today}
        if not past:
            return None
        return past[max(past)]

    def sports_played(self, league: str, a: str, b: str, schedule_date: date) -> set[str]:
        today = schedule_date.isoformat()
        return {s for d, s in self.pair_sports.get(self._pair_key(league, a, b), {}).items()
                if d < today}

    def sport_preferences(self, league: str, sports: list[str], matchup: Matchup,
                          schedule_date: date, index: int) -> list[str]:
        """Order sports for one game, relaxing in passes.

        Pass 1 avoids a sport this pair already played and either team's
        previous sport; pass 2 only avoids the pair repeat; pass 3 only the
        back-to-back sport; pass 4 takes anything.
        """
        if not sports:
            return []
        start = (self.game_number(league, schedule_date) + index) % len(sports)
        order = sports[start:] + sports[:start]
        played = self.sports_played(league, matchup.team_a, matchup.team_b, schedule_date)
        last = {self.last_sport(league, matchup.team_a, schedule_date),
                self.last_sport(league, matchup.team_b, schedule_date)}
        passes = [
            [s for s in order if s not in played and s not in last],
            [s for s in order if s not in played],
            [s for s in order if s not in last],
            order,
        ]
        prefs: list[str] = []
        for p in passes:
            for s in p:
                if s not in prefs:
                    prefs.append(s)
        return prefs

    def record(self, league: str, schedule_date: date, games: list[LeagueGame]) -> None:
        today = schedule_date.isoformat()
        self.games_per_date.setdefault(league, {})[today] = len(games)
        for g in games:
            for team in (g.team_a, g.team_b):
                self.team_sports.setdefault(f"{league}|{team}", {})[today] = g.sport
            self.pair_sports.setdefault(self._pair_key(league, g.team_a, g.team_b), {})[today] = g.sport

    # -- specialty league fairness --------------------------------------------

    @staticmethod
    def _before(values: dict, schedule_date: date) -> list:
        """Values recorded before schedule_date, oldest first."""
        today = schedule_date.isoformat()
        return [values[d] for d in sorted(values) if d < today]

    def last_slot_order(self, league: str, team: str, schedule_date: date) -> int:
        past = self._before(self.slot_order.get(f"{league}|{team}", {}), schedule_date)
        if not past or not isinstance(past[-1], int):
            return 1
        return past[-1]

    def wait_priority(self, league: str, matchup: Matchup, schedule_date: date) -> int:
        """Higher for teams that played late or sat out last time."""
        return sum((self.last_slot_order(league, t, schedule_date) - 1) * self.WAIT_WEIGHT
                   for t in (matchup.team_a, matchup.team_b))

    def fields_played(self, league: str, team: str, schedule_date: date) -> list[str]:
        return self._before(self.team_fields.get(f"{league}|{team}", {}), schedule_date)

    def field_rotation_score(self, league: str, matchup: Matchup, field_name: str,
                             fields: list[str], schedule_date: date) -> int:
        """Higher when the pair has played field_name less; positive means new."""
        played_a = self.fields_played(league, matchup.team_a, schedule_date)
        played_b = self.fields_played(league, matchup.team_b, schedule_date)
        count_a = played_a.count(field_name)
        count_b = played_b.count(field_name)
        if count_a == 0 and count_b == 0:
            return 200
        if count_a == 0 or count_b == 0:
            return 100
        all_fields = set(fields)
        if all_fields - set(played_a) or all_fields - set(played_b):
            return -100 * (count_a + count_b)
        return -10 * (count_a + count_b)

    def record_specialty(self, league: str, schedule_date: date,
                         games: list[LeagueGame], idle_teams: list[str],
                         games_per_field: int) -> None:
        today = schedule_date.isoformat()
        for g in games:
            for team in (g.team_a, g.team_b):
                self.slot_order.setdefault(f"{league}|{team}", {})[today] = g.order
                self.team_fields.setdefault(f"{league}|{team}", {})[today] = g.field
        for team in idle_teams:
            self.slot_order.setdefault(f"{league}|{team}", {})[today] = games_per_field + 1
            self.team_fields.get(f"{league}|{team}", {}).pop(today, None)

    def to_dict(self) -> dict:
        return {
            "gamesPerDate": self.games_per_date,
            "teamSports": self.team_sports,
            "pairSports": self.pair_sports,
            "slotOrder": self.slot_order,
            "teamFields": self.team_fields,
        }


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _league_bunks(ctx: SchedulingContext, divisions: list[str]) -> list[tuple[str, str]]:
    return [(d, b) for d in divisions for b in ctx.bunks(d)]


def _candidate_slots(ctx: SchedulingContext, divisions: list[str], span: int) -> list[int]:
    """Slots where every division is active for the span, not blocked by a
    fixed block, and not held by another league."""
    out = []
    for s in range(len(ctx.slots) - span + 1):
        ok = True
        for d in divisions:
            div = ctx.divisions[d]
            for x in range(s, s + span):
                if (not div.is_active(x) or x in ctx.league_slots[d]
                        or x in ctx.blocked_slots[d]):
                    ok = False
                    break
            if not ok:
                break
        if ok:
            out.append(s)
    return out


def _field_open(ctx: SchedulingContext, usage: FieldUsage, loc: Location,
                slot: int, span: int, division: str) -> bool:
    rules = ctx.rules_for(loc)
    for s in range(slot, slot + span):
        if s >= len(ctx.slots) or not loc.is_time_available(ctx.slots[s], rules):
            return False
        if not usage.can_host(s, loc, division, exclusive=True):
            return False
    return True


def _field_eligible(ctx: SchedulingContext, loc: Location, divisions: list[str]) -> bool:
    if not ctx.is_usable(loc):
        return False
    if loc.allowed_divisions:
        return all(d in loc.allowed_divisions for d in divisions)
    return True


def _commit_booking(ctx: SchedulingContext, trial: Trial, booking: LeagueBooking,
                    bunks: list[tuple[str, str]], history: LeagueHistory) -> None:
    entry = Entry(activity=Special(booking.league), kind=EntryKind.LEAGUE,
                  league=booking.league)
    for _, b in bunks:
        trial.write(b, booking.slot, booking.span, entry)
    division = booking.divisions[0]
    for fname in sorted({g.field for g in booking.games}):
        for s in booking.slots:
            trial.usage.reserve(s, fname, Claim(
                (booking.league,), division, EntryKind.LEAGUE, exclusive=True))
    trial.commit()

    for d in booking.divisions:
        ctx.league_assignments[d][booking.slot] = booking
        ctx.league_slots[d].update(booking.slots)
    history.record(booking.league, ctx.schedule_date, booking.games)


# ---------------------------------------------------------------------------
# Specialty leagues
# ---------------------------------------------------------------------------

def distribute_games(matchups: list[Matchup], sport: str, fields: list[str],
                     games_per_field: int, history: LeagueHistory | None = None,
                     league: str = "", schedule_date: date | None = None,
                     ) -> tuple[list[LeagueGame], list[Matchup]]:
    """Spread games evenly over fields, least-loaded first.

    With a history, matchups whose teams waited longest last time go first,
    and ties between equally loaded fields go to the field the pair has
    played least. Each game's order is its position on its field.

    Returns (games, sat_out) where sat_out holds matchups beyond capacity.
    """
    if history is not None:
        matchups = sorted(matchups, key=lambda m: -history.wait_priority(
            league, m, schedule_date))
    load = {f: 0 for f in fields}
    games = []
    sat_out = []
    for m in matchups:
        open_fields = [f for f in fields if load[f] < games_per_field]
        if not open_fields:
            sat_out.append(m)
            continue
        least = min(load[f] for f in open_fields)
        tied = [f for f in open_fields if load[f] == least]
        f = tied[0]
        if history is not None:
            f = max(tied, key=lambda name: history.field_rotation_score(
                league, m, name, fields, schedule_date))
        load[f] += 1
        games.append(LeagueGame(m.team_a, m.team_b, sport, f, order=load[f]))
    return games, sat_out


def book_specialty_league(ctx: SchedulingContext, league: SpecialtyLeague,
                          history: LeagueHistory) -> LeagueBooking | None:
    divisions = [d for d in league.divisions if d in ctx.divisions]
    bunks = _league_bunks(ctx, divisions)
    if not bunks:
        ctx.warn(f"Specialty league {league.name} has no active bunks; skipped")
        return None
    fields = [ctx.locations[f] for f in league.fields
              if f in ctx.locations and ctx.is_usable(ctx.locations[f])]
    if not fields:
        ctx.warn(f"Specialty league {league.name} has no usable fields; skipped")
        return None

    game_number = history.game_number(league.name, ctx.schedule_date)
    rnd = round_for_game(league.teams, game_number)
    if rnd is None or not rnd.matchups:
        ctx.warn(f"Specialty league {league.name} has no matchups; skipped")
        return None

    span = ctx.span_len
    for slot in _candidate_slots(ctx, divisions, span):
        if not all(ctx.free_run(b, slot, span) == span for _, b in bunks):
            continue
        if not all(_field_open(ctx, ctx.usage, f, slot, span, divisions[0]) for f in fields):
            continue

        games, sat_out = distribute_games(
            rnd.matchups, league.sport, [f.name for f in fields], league.games_per_field,
            history=history, league=league.name, schedule_date=ctx.schedule_date)
        for m in sat_out:
            print(f"    {league.name}: {m.team_a} vs {m.team_b} sits out (fields full)")
        booking = LeagueBooking(
            league=league.name, slot=slot, span=span, divisions=divisions,
            games=games, specialty=True, round_number=rnd.number,
        )
        _commit_booking(ctx, Trial(ctx), booking, bunks, history)
        idle = [t for m in sat_out for t in (m.team_a, m.team_b)] + list(rnd.bye_teams)
        history.record_specialty(league.name, ctx.schedule_date, games, idle,
                                 league.games_per_field)
        return booking

    ctx.warn(f"Specialty league {league.name} could not be placed; skipped")
    return None


def book_specialty_leagues(ctx: SchedulingContext, history: LeagueHistory) -> list[LeagueBooking]:
    bookings = []
    for league in ctx.specialty_leagues.values():
        booking = book_specialty_league(ctx, league, history)
        if booking:
            print(f"  {league.name}: slot {booking.slot + 1}, "
                  f"{len(booking.games)} games (round {booking.round_number})")
            bookings.append(booking)
    return bookings


# ---------------------------------------------------------------------------
# Regular leagues
# ---------------------------------------------------------------------------

def _fields_for_sport(ctx: SchedulingContext, league: League, sport: str,
                      divisions: list[str]) -> list[Location]:
    names = league.fields or list(ctx.locations)
    out = []
    for name in names:
        loc = ctx.locations.get(name)
        if loc is None or loc.is_special or sport not in loc.sports:
            continue
        if _field_eligible(ctx, loc, divisions):
            out.append(loc)
    return out


def assign_league_fields(ctx: SchedulingContext, league: League,
                         matchups: list[Matchup], history: LeagueHistory,
                         available, divisions: list[str]) -> list[LeagueGame] | None:
    """Pick a (sport, field) for every game, most-constrained game first.

    ``available(loc)`` decides whether a field may be used. Returns None if
    any game cannot get a field of its own.
    """
    options = []
    for i, m in enumerate(matchups):
        prefs = history.sport_preferences(league.name, league.sports, m,
                                          ctx.schedule_date, i)
        opts = []
        for sport in prefs:
            for loc in _fields_for_sport(ctx, league, sport, divisions):
                if available(loc):
                    opts.append((sport, loc.name))
        if not opts:
            return None
        options.append(opts)

    order = sorted(range(len(matchups)),
                   key=lambda i: (len({f for _, f in options[i]}), i))
    used: set[str] = set()
    chosen: dict[int, LeagueGame] = {}
    for i in order:
        for sport, fname in options[i]:
            if fname not in used:
                used.add(fname)
                m = matchups[i]
                chosen[i] = LeagueGame(m.team_a, m.team_b, sport, fname)
                break
        else:
            return None
    return [chosen[i] for i in range(len(matchups))]


def _clear_bunks(trial: Trial, bunks: list[tuple[str, str]], slot: int, span: int) -> bool:
    for _, b in bunks:
        for s in range(slot, slot + span):
            if trial.row(b)[s] is not None and not trial.evict(b, s):
                return False
    return True


def book_regular_league(ctx: SchedulingContext, league: League,
                        history: LeagueHistory) -> LeagueBooking | None:
    divisions = [d for d in league.divisions if d in ctx.divisions]
    bunks = _league_bunks(ctx, divisions)
    if not bunks:
        ctx.warn(f"League {league.name} has no active bunks; skipped")
        return None
    if not league.sports:
        ctx.warn(f"League {league.name} has no sports; skipped")
        return None

    game_number = history.game_number(league.name, ctx.schedule_date)
    rnd = round_for_game(league.teams, game_number)
    if rnd is None or not rnd.matchups:
        ctx.warn(f"League {league.name} has no matchups; skipped")
        return None

    span = ctx.span_len
    division = divisions[0]
    slots = _candidate_slots(ctx, divisions, span)

    for evict in (False, True):
        for slot in slots:
            trial = Trial(ctx)
            window = range(slot, slot + span)
            if evict:
                if not _clear_bunks(trial, bunks, slot, span):
                    continue

                def available(loc, trial=trial, slot=slot, window=window):
                    rules = ctx.rules_for(loc)
                    if not all(loc.is_time_available(ctx.slots[s], rules) for s in window):
                        return False
                    return (_field_open(ctx, trial.usage, loc, slot, span, division)
                            or trial.can_reclaim(loc.name, window))
            else:
                if not all(trial.is_free(b, slot, span) for _, b in bunks):
                    continue

                def available(loc, trial=trial, slot=slot):
                    return _field_open(ctx, trial.usage, loc, slot, span, division)

            games = assign_league_fields(ctx, league, rnd.matchups, history,
                                         available, divisions)
            if games is None:
                continue
            if evict:
                for g in games:
                    trial.reclaim(g.field, window)
                print(f"  {league.name}: reclaimed {len(trial.evicted)} placements "
                      f"at slot {slot + 1}")

            booking = LeagueBooking(
                league=league.name, slot=slot, span=span, divisions=divisions,
                games=games, round_number=rnd.number,
            )
            _commit_booking(ctx, trial, booking, bunks, history)
            return booking

    ctx.warn(f"League {league.name} could not be placed even after eviction; skipped")
    return None


def book_regular_leagues(ctx: SchedulingContext, history: LeagueHistory) -> list[LeagueBooking]:
    bookings = []
    for league in ctx.leagues.values():
        booking = book_regular_league(ctx, league, history)
        if booking:
            print(f"  {league.name}: slot {booking.slot + 1}, "
                  f"{len(booking.games)} games (round {booking.round_number})")
            bookings.append(booking)
    return bookings
