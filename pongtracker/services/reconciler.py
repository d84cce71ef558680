"""
Result reconciliation: turn a game save into exact player-record adjustments.

A save carries the last-persisted game and the newly submitted game. The
winner transition decides games_played / games_won / points; per-game stats are
absolute snapshots, so lifetime stat totals move by (new snapshot - previous
snapshot). Re-saving an already applied state produces zero deltas.

No persistence here: the caller applies new_game and both deltas in one
transaction.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from pongtracker import config
from pongtracker.exceptions import ConstraintViolation
from pongtracker.models import Game, PlayerRecord, RecordDelta, STAT_FIELDS

# scoring(game, winner_id) -> points credited for the win
ScoringRule = Callable[[Game, str], int]


def win_points(game: Game, winner_id: str) -> int:
    """Fixed points per won game; no partial credit, no draws."""
    return config.WIN_POINTS


class Transition(str, Enum):
    UNDECIDED = "undecided"          # undecided -> undecided (stats only)
    DECIDED = "decided"              # undecided -> decided
    WINNER_CHANGED = "winner_changed"
    UNCHANGED = "unchanged"          # decided -> same winner


@dataclass(frozen=True)
class ReconcileResult:
    new_game: Game
    player1_delta: RecordDelta
    player2_delta: RecordDelta
    transition: Transition

    @property
    def is_noop(self) -> bool:
        return self.player1_delta.is_zero() and self.player2_delta.is_zero()

    def deltas(self) -> tuple[RecordDelta, RecordDelta]:
        return (self.player1_delta, self.player2_delta)


def classify_transition(previous_winner: str | None, new_winner: str | None) -> Transition:
    """Raise ConstraintViolation for decided -> undecided."""
    if previous_winner is None:
        return Transition.UNDECIDED if new_winner is None else Transition.DECIDED
    if new_winner is None:
        raise ConstraintViolation(
            f"Winner cannot be cleared once decided (was {previous_winner})"
        )
    if new_winner == previous_winner:
        return Transition.UNCHANGED
    return Transition.WINNER_CHANGED


def _validate(previous_game: Game, new_game: Game) -> None:
    if previous_game.participants != new_game.participants:
        raise ConstraintViolation(
            f"Participants cannot change: {previous_game.participants} -> {new_game.participants}"
        )
    if new_game.player1_id is None or new_game.player2_id is None:
        raise ConstraintViolation("Bye pairings have no result to reconcile")
    if new_game.winner is not None and new_game.winner not in new_game.participants:
        raise ConstraintViolation(
            f"Winner {new_game.winner} is not a participant of game {new_game.id}"
        )
    for stats in (new_game.stats_player1, new_game.stats_player2):
        if not stats.is_valid():
            raise ConstraintViolation(f"Stats must be non-negative: {stats.to_dict()}")
    if new_game.score1 < 0 or new_game.score2 < 0:
        raise ConstraintViolation("Scores must be non-negative")


def _check_record(record: PlayerRecord, player_id: str) -> None:
    if record.player_id != player_id:
        raise ConstraintViolation(
            f"Record for {record.player_id} supplied for participant {player_id}"
        )


def _check_not_negative(record: PlayerRecord, delta: RecordDelta) -> None:
    # points are left out: a pluggable scoring rule may award negative points
    after = record.apply(delta)
    for name in ("games_played", "games_won") + STAT_FIELDS:
        if getattr(after, name) < 0:
            raise ConstraintViolation(
                f"Player {record.player_id} {name} would become {getattr(after, name)}; "
                "record is inconsistent with the game log"
            )


def normalize_scores(game: Game) -> Game:
    """Decided games score 1 for the winner and 0 for the loser."""
    if game.winner is None:
        return game
    return replace(
        game,
        score1=1 if game.winner == game.player1_id else 0,
        score2=1 if game.winner == game.player2_id else 0,
    )


def _result_credit(
    transition: Transition,
    previous_game: Game,
    new_game: Game,
    player_id: str,
    scoring: ScoringRule,
) -> dict[str, int]:
    """
    games_played / games_won / points for one participant.

    The winner's stored credit always equals scoring(persisted game), so a
    same-winner save rescores by difference and a winner change reverses
    exactly what the previous game awarded.
    """
    credit = {"points": 0, "games_played": 0, "games_won": 0}
    if transition is Transition.DECIDED:
        credit["games_played"] = 1
        if new_game.winner == player_id:
            credit["games_won"] = 1
            credit["points"] = scoring(new_game, player_id)
    elif transition is Transition.WINNER_CHANGED:
        if previous_game.winner == player_id:
            credit["games_won"] = -1
            credit["points"] = -scoring(previous_game, player_id)
        elif new_game.winner == player_id:
            credit["games_won"] = 1
            credit["points"] = scoring(new_game, player_id)
    elif transition is Transition.UNCHANGED and new_game.winner == player_id:
        credit["points"] = scoring(new_game, player_id) - scoring(previous_game, player_id)
    return credit


def reconcile(
    previous_game: Game,
    new_game: Game,
    player1_record: PlayerRecord,
    player2_record: PlayerRecord,
    scoring: ScoringRule = win_points,
) -> ReconcileResult:
    """
    Compute the record deltas for saving new_game over previous_game.

    previous_game must be the last-persisted state. Its stats are the snapshot
    being replaced; a never-saved game holds zero stats. player1_record and
    player2_record belong to new_game.player1_id / player2_id; each delta carries
    the record version it was computed against.

    Raises ConstraintViolation for invalid transitions; nothing is returned then.
    """
    _validate(previous_game, new_game)
    transition = classify_transition(previous_game.winner, new_game.winner)
    _check_record(player1_record, new_game.player1_id)
    _check_record(player2_record, new_game.player2_id)

    deltas: list[RecordDelta] = []
    for record, prev_stats, new_stats in (
        (player1_record, previous_game.stats_player1, new_game.stats_player1),
        (player2_record, previous_game.stats_player2, new_game.stats_player2),
    ):
        credit = _result_credit(transition, previous_game, new_game, record.player_id, scoring)
        delta = RecordDelta(
            player_id=record.player_id,
            expected_version=record.version,
            **credit,
            **new_stats.minus(prev_stats),
        )
        _check_not_negative(record, delta)
        deltas.append(delta)

    return ReconcileResult(
        new_game=normalize_scores(new_game),
        player1_delta=deltas[0],
        player2_delta=deltas[1],
        transition=transition,
    )
