"""
Repository interfaces for pong tracker data.
No business logic: only read/write operations.

Repositories never commit: single statements autocommit, multi-statement
writes are wrapped in db.transaction() by the service layer.
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from pongtracker.exceptions import ConcurrencyConflict
from pongtracker.models import Game, GameStats, Player, PlayerRecord, RecordDelta, Tournament


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


# ---------- PlayerRepository ----------

_PLAYER_COLS = (
    "id, name, inserted_at, points, games_played, games_won, "
    "bombs, bouncers, airballs, islands, version"
)


def _row_to_record(r: sqlite3.Row) -> PlayerRecord:
    return PlayerRecord(
        player_id=r["id"],
        points=r["points"],
        games_played=r["games_played"],
        games_won=r["games_won"],
        bombs=r["bombs"],
        bouncers=r["bouncers"],
        airballs=r["airballs"],
        islands=r["islands"],
        version=r["version"],
    )


def _row_to_player(r: sqlite3.Row) -> Player:
    return Player(
        id=r["id"],
        name=r["name"],
        inserted_at=_parse_datetime(r["inserted_at"]),
        record=_row_to_record(r),
    )


class PlayerRepository:
    """CRUD for players and conditional writes to their records."""

    def create(self, conn: sqlite3.Connection, name: str, id: str | None = None) -> Player:
        pid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            "INSERT INTO players (id, name, inserted_at) VALUES (?, ?, ?)",
            (pid, name, now),
        )
        return Player(id=pid, name=name, inserted_at=_parse_datetime(now))

    def get(self, conn: sqlite3.Connection, player_id: str) -> Player | None:
        row = conn.execute(
            f"SELECT {_PLAYER_COLS} FROM players WHERE id = ?", (player_id,)
        ).fetchone()
        return _row_to_player(row) if row is not None else None

    def get_many(self, conn: sqlite3.Connection, player_ids: list[str]) -> dict[str, Player]:
        if not player_ids:
            return {}
        marks = ", ".join("?" for _ in player_ids)
        rows = conn.execute(
            f"SELECT {_PLAYER_COLS} FROM players WHERE id IN ({marks})", tuple(player_ids)
        ).fetchall()
        return {r["id"]: _row_to_player(r) for r in rows}

    def get_record(self, conn: sqlite3.Connection, player_id: str) -> PlayerRecord | None:
        row = conn.execute(
            f"SELECT {_PLAYER_COLS} FROM players WHERE id = ?", (player_id,)
        ).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_all(self, conn: sqlite3.Connection) -> list[Player]:
        """Ordered by points (desc), then name."""
        rows = conn.execute(
            f"SELECT {_PLAYER_COLS} FROM players ORDER BY points DESC, name ASC, inserted_at ASC"
        ).fetchall()
        return [_row_to_player(r) for r in rows]

    def rename(self, conn: sqlite3.Connection, player_id: str, name: str) -> bool:
        cur = conn.execute("UPDATE players SET name = ? WHERE id = ?", (name, player_id))
        return cur.rowcount > 0

    def delete(self, conn: sqlite3.Connection, player_id: str) -> bool:
        cur = conn.execute("DELETE FROM players WHERE id = ?", (player_id,))
        return cur.rowcount > 0

    def apply_delta(self, conn: sqlite3.Connection, delta: RecordDelta) -> None:
        """
        Add delta to the record if its version still equals delta.expected_version.
        Raises ConcurrencyConflict otherwise.
        """
        cur = conn.execute(
            """
            UPDATE players SET
                points = points + ?,
                games_played = games_played + ?,
                games_won = games_won + ?,
                bombs = bombs + ?,
                bouncers = bouncers + ?,
                airballs = airballs + ?,
                islands = islands + ?,
                version = version + 1
            WHERE id = ? AND version = ?
            """,
            (
                delta.points, delta.games_played, delta.games_won,
                delta.bombs, delta.bouncers, delta.airballs, delta.islands,
                delta.player_id, delta.expected_version,
            ),
        )
        if cur.rowcount == 0:
            raise ConcurrencyConflict(
                f"Record for player {delta.player_id} changed since version {delta.expected_version}"
            )


# ---------- TournamentRepository ----------


def _row_to_tournament(r: sqlite3.Row) -> Tournament:
    return Tournament(
        id=r["id"],
        name=r["name"],
        tournament_style=r["tournament_style"],
        player_ids=json.loads(r["player_ids"]),
        created_at=_parse_datetime(r["created_at"]),
    )


class TournamentRepository:
    """CRUD for tournaments. No business logic."""

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        tournament_style: str,
        player_ids: list[str],
        id: str | None = None,
    ) -> Tournament:
        tid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            "INSERT INTO tournaments (id, name, tournament_style, player_ids, created_at) VALUES (?, ?, ?, ?, ?)",
            (tid, name, tournament_style, json.dumps(list(player_ids)), now),
        )
        return Tournament(
            id=tid, name=name, tournament_style=tournament_style,
            player_ids=list(player_ids), created_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, tournament_id: str) -> Tournament | None:
        row = conn.execute(
            "SELECT id, name, tournament_style, player_ids, created_at FROM tournaments WHERE id = ?",
            (tournament_id,),
        ).fetchone()
        return _row_to_tournament(row) if row is not None else None

    def list_all(self, conn: sqlite3.Connection) -> list[Tournament]:
        rows = conn.execute(
            "SELECT id, name, tournament_style, player_ids, created_at FROM tournaments ORDER BY created_at DESC"
        ).fetchall()
        return [_row_to_tournament(r) for r in rows]


# ---------- GameRepository ----------

_GAME_COLS = (
    "id, tournament_id, game_number, round, player1_id, player2_id, "
    "score1, score2, stats_player1, stats_player2, winner, version"
)


def _row_to_game(r: sqlite3.Row) -> Game:
    return Game(
        id=r["id"],
        tournament_id=r["tournament_id"],
        game_number=r["game_number"],
        round=r["round"],
        player1_id=r["player1_id"],
        player2_id=r["player2_id"],
        score1=r["score1"],
        score2=r["score2"],
        stats_player1=GameStats.from_dict(json.loads(r["stats_player1"] or "{}")),
        stats_player2=GameStats.from_dict(json.loads(r["stats_player2"] or "{}")),
        winner=r["winner"],
        version=r["version"],
    )


class GameRepository:
    """CRUD for games. Result writes are conditional on the game version."""

    def create_many(
        self, conn: sqlite3.Connection, tournament_id: str, games: list[Game]
    ) -> list[Game]:
        """Insert scheduled games for a tournament. Returns them with ids attached."""
        created: list[Game] = []
        rows: list[tuple[Any, ...]] = []
        for g in games:
            gid = g.id or str(uuid.uuid4())
            created.append(replace(g, id=gid, tournament_id=tournament_id, version=0))
            rows.append((
                gid, tournament_id, g.game_number, g.round, g.player1_id, g.player2_id,
                g.score1, g.score2,
                json.dumps(g.stats_player1.to_dict()), json.dumps(g.stats_player2.to_dict()),
                g.winner,
            ))
        conn.executemany(
            """
            INSERT INTO games (id, tournament_id, game_number, round, player1_id, player2_id,
                               score1, score2, stats_player1, stats_player2, winner, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
            """,
            rows,
        )
        return created

    def get(self, conn: sqlite3.Connection, game_id: str) -> Game | None:
        row = conn.execute(f"SELECT {_GAME_COLS} FROM games WHERE id = ?", (game_id,)).fetchone()
        return _row_to_game(row) if row is not None else None

    def list_by_tournament(self, conn: sqlite3.Connection, tournament_id: str) -> list[Game]:
        rows = conn.execute(
            f"SELECT {_GAME_COLS} FROM games WHERE tournament_id = ? ORDER BY game_number",
            (tournament_id,),
        ).fetchall()
        return [_row_to_game(r) for r in rows]

    def list_decided(self, conn: sqlite3.Connection, tournament_id: str | None = None) -> list[Game]:
        """Games with a winner; all tournaments when tournament_id is None."""
        if tournament_id is None:
            rows = conn.execute(
                f"SELECT {_GAME_COLS} FROM games WHERE winner IS NOT NULL ORDER BY tournament_id, game_number"
            ).fetchall()
        else:
            rows = conn.execute(
                f"SELECT {_GAME_COLS} FROM games WHERE tournament_id = ? AND winner IS NOT NULL ORDER BY game_number",
                (tournament_id,),
            ).fetchall()
        return [_row_to_game(r) for r in rows]

    def list_all(self, conn: sqlite3.Connection) -> list[Game]:
        rows = conn.execute(
            f"SELECT {_GAME_COLS} FROM games ORDER BY tournament_id, game_number"
        ).fetchall()
        return [_row_to_game(r) for r in rows]

    def count_for_player(self, conn: sqlite3.Connection, player_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM games WHERE player1_id = ? OR player2_id = ?",
            (player_id, player_id),
        ).fetchone()
        return row[0]

    def update_result(self, conn: sqlite3.Connection, game: Game, expected_version: int) -> Game:
        """
        Overwrite winner, scores and stats if the stored version is expected_version.
        Raises ConcurrencyConflict otherwise. Returns the game with its new version.
        """
        cur = conn.execute(
            """
            UPDATE games SET
                winner = ?, score1 = ?, score2 = ?,
                stats_player1 = ?, stats_player2 = ?,
                version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (
                game.winner, game.score1, game.score2,
                json.dumps(game.stats_player1.to_dict()), json.dumps(game.stats_player2.to_dict()),
                _now_iso(), game.id, expected_version,
            ),
        )
        if cur.rowcount == 0:
            raise ConcurrencyConflict(f"Game {game.id} changed since version {expected_version}")
        return replace(game, version=expected_version + 1)
