"""
Deterministic round-robin schedule generation for tournaments.

Round-robin is used so every player meets every other player exactly once; the
schedule has N-1 rounds (N even) or N rounds (N odd). Each player plays at most
one game per round.

BYE handling: when the number of players is odd, we add a virtual BYE slot. Each
round one player is paired with BYE and sits out. Bye pairings never become games.

Uses the circle method: fix the first slot, rotate the others each round. Same
roster ordering yields the same schedule.
"""
from __future__ import annotations

from typing import Sequence, Union

from pongtracker.models import Game, Player

# Sentinel for bye when number of players is odd
BYE = object()


def _player_id(player: Union[Player, str]) -> str:
    return player if isinstance(player, str) else player.id


def round_robin_pairings(player_ids: Sequence[str]) -> list[tuple[int, str, str | None]]:
    """
    Generate round-robin pairings: (round_number, player1_id, player2_id).
    player2_id is None when player1_id has a bye (odd number of players).
    Fewer than two players => no pairings.
    """
    if len(player_ids) < 2:
        return []
    slots: list = list(player_ids)
    if len(slots) % 2 == 1:
        slots.append(BYE)
    n = len(slots)  # n is even
    result: list[tuple[int, str, str | None]] = []
    for round_number in range(1, n):
        # Pair slots[0] with slots[n-1], slots[1] with slots[n-2], ...
        for i in range(n // 2):
            first, second = slots[i], slots[n - 1 - i]
            if first is BYE:
                result.append((round_number, second, None))
            elif second is BYE:
                result.append((round_number, first, None))
            else:
                result.append((round_number, first, second))
        # Rotate: keep slots[0]; the slot right after it moves to the end of the ring
        slots = [slots[0]] + slots[2:] + [slots[1]]
    return result


def generate_schedule(players: Sequence[Union[Player, str]]) -> list[Game]:
    """
    Return the fixtures for a round-robin tournament as unsaved Game objects.
    game_number is global and increases in emission order; byes are omitted.
    The caller attaches tournament_id and ids when persisting.
    """
    ids = [_player_id(p) for p in players]
    games: list[Game] = []
    for round_number, p1, p2 in round_robin_pairings(ids):
        if p2 is None:
            continue
        games.append(Game(
            round=round_number,
            game_number=len(games) + 1,
            player1_id=p1,
            player2_id=p2,
        ))
    return games


def schedule_rounds(players: Sequence[Union[Player, str]]) -> list[dict]:
    """
    Group pairings by round for previews: [{ "round": int, "games": [...], "bye": str | None }].
    """
    rounds: dict[int, dict] = {}
    for round_number, p1, p2 in round_robin_pairings([_player_id(p) for p in players]):
        entry = rounds.setdefault(round_number, {"round": round_number, "games": [], "bye": None})
        if p2 is None:
            entry["bye"] = p1
        else:
            entry["games"].append({"player1_id": p1, "player2_id": p2})
    return [rounds[r] for r in sorted(rounds)]
