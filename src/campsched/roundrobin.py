"""Round-robin matchup rotation for camp leagues."""

from campsched.models import Matchup, Round


BYE = "__BYE__"


def generate_round_robin(teams: list[str]) -> list[Round]:
    """Generate a full round-robin schedule using the circle method.

    For N teams: N-1 rounds if even, N rounds with one bye each if odd.
    The rounds depend only on the team list, so a league picks up the next
    round on each camp day from its game count alone.
    """
    order = list(teams)
    n = len(order)
    if n < 2:
        return []

    if n % 2 == 1:
        order.append(BYE)
        n += 1

    # Circle method: fix position 0, rotate the rest
    rounds = []
    for r in range(n - 1):
        matchups = []
        bye_teams = []
        for i in range(n // 2):
            t1 = order[i]
            t2 = order[n - 1 - i]
            if t1 == BYE:
                bye_teams.append(t2)
            elif t2 == BYE:
                bye_teams.append(t1)
            else:
                matchups.append(Matchup(t1, t2))

        rounds.append(Round(number=r + 1, matchups=matchups, bye_teams=bye_teams))

        order = [order[0]] + [order[-1]] + order[1:-1]

    return rounds


def round_for_game(teams: list[str], game_number: int) -> Round | None:
    """The round a league plays on its game_number-th day (0-based)."""
    rounds = generate_round_robin(teams)
    if not rounds:
        return None
    return rounds[game_number % len(rounds)]
