"""
Tournament service: player registration, tournament creation, game saves, standings.

Create tournament: validate roster, generate the round-robin schedule and insert
the tournament with all its games in one transaction.
Save game: read the last-persisted game and both records, reconcile, then apply
the game row and both record deltas in one transaction. A version mismatch at
apply time rolls everything back and the save is retried from fresh reads.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from typing import Any

from pongtracker import config
from pongtracker.exceptions import ConcurrencyConflict, ConstraintViolation, NotFoundError
from pongtracker.models import (
    ChangeAction,
    Game,
    GameStats,
    Player,
    PlayerRecord,
    STAT_FIELDS,
    Tournament,
    TournamentStyle,
)
from pongtracker.persistence.db import transaction
from pongtracker.persistence.repositories import (
    GameRepository,
    PlayerRepository,
    TournamentRepository,
)
from pongtracker.services.notifications import (
    GAMES,
    PLAYERS,
    TOURNAMENTS,
    ChangeEvent,
    ChangeNotifier,
    tournament_topic,
)
from pongtracker.services.reconciler import ReconcileResult, ScoringRule, reconcile, win_points
from pongtracker.services.scheduling import generate_schedule

logger = logging.getLogger(__name__)

MIN_TOURNAMENT_PLAYERS = 2

# Statistic badges: (stat field, badge label)
STAT_BADGES = (
    ("bouncers", "Bounce Master"),
    ("airballs", "Fresh Air Specialist"),
    ("bombs", "Bomb Commander"),
    ("islands", "Island King"),
)
LEADER_BADGE = "Leader"


# ---------- Read models ----------


@dataclass
class LeaderboardEntry:
    """Tournament standing, recomputed from decided games."""
    player_id: str
    player_name: str
    wins: int = 0
    losses: int = 0
    games_played: int = 0
    win_percentage: float = 0.0
    total_bombs: int = 0
    total_bouncers: int = 0
    total_airballs: int = 0
    total_islands: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "player_name": self.player_name,
            "wins": self.wins,
            "losses": self.losses,
            "games_played": self.games_played,
            "win_percentage": round(self.win_percentage, 1),
            "total_bombs": self.total_bombs,
            "total_bouncers": self.total_bouncers,
            "total_airballs": self.total_airballs,
            "total_islands": self.total_islands,
        }


@dataclass
class PlayerStatistics:
    player: Player
    win_ratio: float
    badges: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = self.player.to_dict()
        d["win_ratio"] = round(self.win_ratio, 1)
        d["badges"] = list(self.badges)
        return d


@dataclass
class RecordMismatch:
    """Difference between a stored record and the record derived from the game log."""
    player_id: str
    stored: dict[str, int]
    derived: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {"player_id": self.player_id, "stored": self.stored, "derived": self.derived}


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ConstraintViolation("Name must not be empty")
    return cleaned


# ---------- TournamentService ----------


class TournamentService:
    """
    Domain logic for players, tournaments and game results.
    Persistence is delegated to repositories; committed changes go to the notifier.
    """

    def __init__(
        self,
        notifier: ChangeNotifier | None = None,
        scoring: ScoringRule = win_points,
        max_attempts: int | None = None,
    ) -> None:
        self._player_repo = PlayerRepository()
        self._tournament_repo = TournamentRepository()
        self._game_repo = GameRepository()
        self.notifier = notifier or ChangeNotifier()
        self._scoring = scoring
        self._max_attempts = max_attempts or config.MAX_RECONCILE_ATTEMPTS

    # ---------- Players ----------

    def register_player(self, conn: sqlite3.Connection, name: str) -> Player:
        player = self._player_repo.create(conn, _clean_name(name))
        logger.info("Registered player %s (%s)", player.name, player.id)
        self.notifier.publish(ChangeEvent(PLAYERS, ChangeAction.INSERT, player.id, player.to_dict()))
        return player

    def get_player(self, conn: sqlite3.Connection, player_id: str) -> Player:
        player = self._player_repo.get(conn, player_id)
        if player is None:
            raise NotFoundError(f"Player not found: {player_id}")
        return player

    def list_players(self, conn: sqlite3.Connection) -> list[Player]:
        return self._player_repo.list_all(conn)

    def rename_player(self, conn: sqlite3.Connection, player_id: str, name: str) -> Player:
        if not self._player_repo.rename(conn, player_id, _clean_name(name)):
            raise NotFoundError(f"Player not found: {player_id}")
        player = self.get_player(conn, player_id)
        self.notifier.publish(ChangeEvent(PLAYERS, ChangeAction.UPDATE, player.id, player.to_dict()))
        return player

    def delete_player(self, conn: sqlite3.Connection, player_id: str) -> None:
        """Players with scheduled games cannot be removed."""
        with transaction(conn):
            if self._player_repo.get(conn, player_id) is None:
                raise NotFoundError(f"Player not found: {player_id}")
            if self._game_repo.count_for_player(conn, player_id) > 0:
                raise ConstraintViolation(f"Player {player_id} has tournament games and cannot be removed")
            self._player_repo.delete(conn, player_id)
        logger.info("Removed player %s", player_id)
        self.notifier.publish(ChangeEvent(PLAYERS, ChangeAction.DELETE, player_id))

    # ---------- Tournaments ----------

    def create_tournament(
        self,
        conn: sqlite3.Connection,
        name: str,
        player_ids: list[str],
        tournament_style: str = TournamentStyle.ROUND_ROBIN.value,
    ) -> tuple[Tournament, list[Game]]:
        """
        Insert the tournament and its full round-robin schedule atomically.
        Roster: at least two distinct registered players. The schedule follows the
        given order.
        """
        name = _clean_name(name)
        try:
            style = TournamentStyle(tournament_style).value
        except ValueError:
            raise ConstraintViolation(f"Unknown tournament style: {tournament_style}") from None
        if len(set(player_ids)) != len(player_ids):
            raise ConstraintViolation("Tournament roster contains duplicate players")
        if len(player_ids) < MIN_TOURNAMENT_PLAYERS:
            raise ConstraintViolation(
                f"Need at least {MIN_TOURNAMENT_PLAYERS} players to create a tournament"
            )
        with transaction(conn):
            known = self._player_repo.get_many(conn, player_ids)
            missing = [pid for pid in player_ids if pid not in known]
            if missing:
                raise NotFoundError(f"Players not found: {', '.join(missing)}")
            tournament = self._tournament_repo.create(conn, name, style, player_ids)
            games = self._game_repo.create_many(conn, tournament.id, generate_schedule(player_ids))
        logger.info(
            "Created tournament %s (%s) with %d players and %d games",
            tournament.name, tournament.id, len(player_ids), len(games),
        )
        self.notifier.publish(
            ChangeEvent(TOURNAMENTS, ChangeAction.INSERT, tournament.id, tournament.to_dict())
        )
        return tournament, games

    def get_tournament(self, conn: sqlite3.Connection, tournament_id: str) -> Tournament:
        tournament = self._tournament_repo.get(conn, tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament not found: {tournament_id}")
        return tournament

    def list_tournaments(self, conn: sqlite3.Connection) -> list[Tournament]:
        return self._tournament_repo.list_all(conn)

    def list_games(self, conn: sqlite3.Connection, tournament_id: str) -> list[Game]:
        self.get_tournament(conn, tournament_id)
        return self._game_repo.list_by_tournament(conn, tournament_id)

    def get_game(self, conn: sqlite3.Connection, game_id: str) -> Game:
        game = self._game_repo.get(conn, game_id)
        if game is None:
            raise NotFoundError(f"Game not found: {game_id}")
        return game

    # ---------- Game results ----------

    def save_game(
        self,
        conn: sqlite3.Connection,
        game_id: str,
        winner: str | None,
        stats_player1: GameStats | dict | None = None,
        stats_player2: GameStats | dict | None = None,
        score1: int | None = None,
        score2: int | None = None,
    ) -> Game:
        """
        Save a game result. Stats are absolute per-game values; omitted stats
        keep the stored snapshot. Retries from fresh reads on ConcurrencyConflict
        and re-raises once attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                result = self._save_game_once(
                    conn, game_id, winner, stats_player1, stats_player2, score1, score2
                )
                break
            except ConcurrencyConflict:
                if attempt >= self._max_attempts:
                    logger.warning("Giving up on game %s after %d conflicting attempts", game_id, attempt)
                    raise
                logger.warning("Conflict saving game %s (attempt %d); retrying", game_id, attempt)
                attempt += 1
        saved = result.new_game
        self._publish_game_saved(saved, result)
        return saved

    def _reconcile(
        self,
        previous: Game,
        submitted: Game,
        record1: PlayerRecord,
        record2: PlayerRecord,
    ) -> ReconcileResult:
        return reconcile(previous, submitted, record1, record2, scoring=self._scoring)

    def _save_game_once(
        self,
        conn: sqlite3.Connection,
        game_id: str,
        winner: str | None,
        stats_player1: GameStats | dict | None,
        stats_player2: GameStats | dict | None,
        score1: int | None,
        score2: int | None,
    ) -> ReconcileResult:
        previous = self.get_game(conn, game_id)
        submitted = replace(
            previous,
            winner=winner,
            stats_player1=_as_stats(stats_player1, previous.stats_player1),
            stats_player2=_as_stats(stats_player2, previous.stats_player2),
            score1=previous.score1 if score1 is None else score1,
            score2=previous.score2 if score2 is None else score2,
        )
        record1 = self._require_record(conn, previous.player1_id)
        record2 = self._require_record(conn, previous.player2_id)
        result = self._reconcile(previous, submitted, record1, record2)
        with transaction(conn):
            saved = self._game_repo.update_result(conn, result.new_game, previous.version)
            for delta in result.deltas():
                if not delta.is_zero():
                    self._player_repo.apply_delta(conn, delta)
        return replace(result, new_game=saved)

    def _require_record(self, conn: sqlite3.Connection, player_id: str | None) -> PlayerRecord:
        record = self._player_repo.get_record(conn, player_id) if player_id else None
        if record is None:
            raise NotFoundError(f"Player not found: {player_id}")
        return record

    def _publish_game_saved(self, game: Game, result: ReconcileResult) -> None:
        payload = game.to_dict()
        payload["transition"] = result.transition.value
        events = [
            ChangeEvent(GAMES, ChangeAction.UPDATE, game.id, payload),
            ChangeEvent(tournament_topic(game.tournament_id), ChangeAction.UPDATE, game.id, payload),
        ]
        for delta in result.deltas():
            if not delta.is_zero():
                events.append(ChangeEvent(PLAYERS, ChangeAction.UPDATE, delta.player_id, delta.to_dict()))
        self.notifier.publish_many(events)

    # ---------- Standings ----------

    def leaderboard(self, conn: sqlite3.Connection, tournament_id: str) -> list[LeaderboardEntry]:
        """
        Standings for one tournament from its decided games only.
        Sorted by wins, then win percentage. Players without a decided game are absent.
        """
        self.get_tournament(conn, tournament_id)
        games = self._game_repo.list_decided(conn, tournament_id)
        participants: list[str] = []
        for g in games:
            for pid in g.participants:
                if pid not in participants:
                    participants.append(pid)
        names = {pid: p.name for pid, p in self._player_repo.get_many(conn, participants).items()}
        entries = {
            pid: LeaderboardEntry(player_id=pid, player_name=names[pid])
            for pid in participants
            if pid in names
        }
        for g in games:
            if g.player1_id not in entries or g.player2_id not in entries:
                continue
            for pid in g.participants:
                entry = entries[pid]
                entry.games_played += 1
                if g.winner == pid:
                    entry.wins += 1
                else:
                    entry.losses += 1
                stats = g.stats_for(pid)
                entry.total_bombs += stats.bombs
                entry.total_bouncers += stats.bouncers
                entry.total_airballs += stats.airballs
                entry.total_islands += stats.islands
        for entry in entries.values():
            if entry.games_played > 0:
                entry.win_percentage = entry.wins / entry.games_played * 100
        return sorted(entries.values(), key=lambda e: (-e.wins, -e.win_percentage))

    def player_statistics(self, conn: sqlite3.Connection) -> list[PlayerStatistics]:
        """All players by points with win ratio and badges."""
        players = self._player_repo.list_all(conn)
        result: list[PlayerStatistics] = []
        for p in players:
            played = p.record.games_played
            ratio = p.record.games_won / played * 100 if played > 0 else 0.0
            result.append(PlayerStatistics(player=p, win_ratio=ratio))
        if result:
            result[0].badges.append(LEADER_BADGE)
        for stat, badge in STAT_BADGES:
            holder = _max_by(result, stat)
            if holder is not None:
                holder.badges.append(badge)
        return result

    def derive_records(self, conn: sqlite3.Connection) -> dict[str, PlayerRecord]:
        """Recompute every player's record from the game log."""
        derived = {p.id: PlayerRecord(player_id=p.id) for p in self._player_repo.list_all(conn)}
        for g in self._game_repo.list_all(conn):
            for pid in g.participants:
                record = derived.setdefault(pid, PlayerRecord(player_id=pid))
                stats = g.stats_for(pid)
                for name in STAT_FIELDS:
                    setattr(record, name, getattr(record, name) + getattr(stats, name))
                if g.winner is not None:
                    record.games_played += 1
                    if g.winner == pid:
                        record.games_won += 1
                        record.points += self._scoring(g, pid)
        return derived

    def audit_records(self, conn: sqlite3.Connection) -> list[RecordMismatch]:
        """Stored records that disagree with the game log. Empty when consistent."""
        derived = self.derive_records(conn)
        mismatches: list[RecordMismatch] = []
        for p in self._player_repo.list_all(conn):
            stored = p.record.to_dict()
            expected = derived[p.id].to_dict()
            if stored != expected:
                mismatches.append(RecordMismatch(player_id=p.id, stored=stored, derived=expected))
        if mismatches:
            logger.warning("Record audit found %d mismatched players", len(mismatches))
        return mismatches


def _as_stats(value: GameStats | dict | None, current: GameStats) -> GameStats:
    if value is None:
        return current
    if isinstance(value, GameStats):
        return value
    return GameStats.from_dict(value)


def _max_by(stats: list[PlayerStatistics], stat: str) -> PlayerStatistics | None:
    """First player holding the maximum; None when the maximum is not positive."""
    if not stats:
        return None
    best = max(getattr(s.player.record, stat) for s in stats)
    if best <= 0:
        return None
    return next(s for s in stats if getattr(s.player.record, stat) == best)
