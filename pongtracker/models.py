"""
Data models for the pong tracker.
Domain objects only: no persistence or API logic.

Players carry a cumulative record; tournaments own a fixed set of games
created at tournament creation; games are mutated by result saves.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


STAT_FIELDS = ("bombs", "bouncers", "airballs", "islands")


# ---------- Tournament style ----------
class TournamentStyle(str, Enum):
    """Style tag stored on the tournament. Scheduling is round-robin for both."""
    ROUND_ROBIN = "round-robin"
    SINGLE_ELIMINATION = "single-elimination"


# ---------- Change actions (notifications) ----------
class ChangeAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# ---------- GameStats ----------
@dataclass(frozen=True)
class GameStats:
    """Per-player event counters for one game. Absolute values, never deltas."""
    bombs: int = 0
    bouncers: int = 0
    airballs: int = 0
    islands: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GameStats:
        """Missing dict or missing keys count as zero."""
        if not data:
            return cls()
        return cls(**{name: int(data.get(name) or 0) for name in STAT_FIELDS})

    def minus(self, other: GameStats) -> dict[str, int]:
        return {name: getattr(self, name) - getattr(other, name) for name in STAT_FIELDS}

    def is_valid(self) -> bool:
        return all(getattr(self, name) >= 0 for name in STAT_FIELDS)

    def to_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in STAT_FIELDS}


# ---------- PlayerRecord ----------
@dataclass
class PlayerRecord:
    """
    Cumulative standings for one player.
    Mutated only by applying a RecordDelta produced by the reconciler.
    version increments on every write (optimistic concurrency).
    """
    player_id: str
    points: int = 0
    games_played: int = 0
    games_won: int = 0
    bombs: int = 0
    bouncers: int = 0
    airballs: int = 0
    islands: int = 0
    version: int = 0

    def apply(self, delta: RecordDelta) -> PlayerRecord:
        """Return a new record with delta added. Does not check expected_version."""
        return replace(
            self,
            points=self.points + delta.points,
            games_played=self.games_played + delta.games_played,
            games_won=self.games_won + delta.games_won,
            bombs=self.bombs + delta.bombs,
            bouncers=self.bouncers + delta.bouncers,
            airballs=self.airballs + delta.airballs,
            islands=self.islands + delta.islands,
            version=self.version + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "points": self.points,
            "games_played": self.games_played,
            "games_won": self.games_won,
            "bombs": self.bombs,
            "bouncers": self.bouncers,
            "airballs": self.airballs,
            "islands": self.islands,
        }


# ---------- RecordDelta ----------
@dataclass(frozen=True)
class RecordDelta:
    """Signed adjustment to one PlayerRecord, computed against expected_version."""
    player_id: str
    points: int = 0
    games_played: int = 0
    games_won: int = 0
    bombs: int = 0
    bouncers: int = 0
    airballs: int = 0
    islands: int = 0
    expected_version: int = 0

    def is_zero(self) -> bool:
        return not any((
            self.points, self.games_played, self.games_won,
            self.bombs, self.bouncers, self.airballs, self.islands,
        ))

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "points": self.points,
            "games_played": self.games_played,
            "games_won": self.games_won,
            "bombs": self.bombs,
            "bouncers": self.bouncers,
            "airballs": self.airballs,
            "islands": self.islands,
        }


# ---------- Player ----------
@dataclass
class Player:
    """A registered player and their cumulative record."""
    id: str
    name: str
    inserted_at: datetime
    record: PlayerRecord | None = None

    def __post_init__(self) -> None:
        if self.record is None:
            self.record = PlayerRecord(player_id=self.id)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "inserted_at": self.inserted_at.isoformat(),
        }
        d.update(self.record.to_dict())
        return d


# ---------- Tournament ----------
@dataclass
class Tournament:
    """
    Named set of participants with a style tag.
    Immutable after creation except for its game set.
    """
    id: str
    name: str
    tournament_style: str  # TournamentStyle value
    player_ids: list[str]
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tournament_style": self.tournament_style,
            "player_ids": list(self.player_ids),
            "created_at": self.created_at.isoformat(),
        }


# ---------- Game ----------
@dataclass
class Game:
    """
    One pairing within a tournament.
    player ids are nullable only for bye pairings, which are never persisted.
    Once winner is set: winner scores 1, the other 0.
    id and tournament_id are None until the game is persisted.
    """
    round: int
    game_number: int
    player1_id: str | None
    player2_id: str | None
    score1: int = 0
    score2: int = 0
    stats_player1: GameStats = field(default_factory=GameStats)
    stats_player2: GameStats = field(default_factory=GameStats)
    winner: str | None = None
    id: str | None = None
    tournament_id: str | None = None
    version: int = 0

    @property
    def is_decided(self) -> bool:
        return self.winner is not None

    @property
    def participants(self) -> tuple[str | None, str | None]:
        return (self.player1_id, self.player2_id)

    def loser(self) -> str | None:
        if self.winner is None:
            return None
        return self.player2_id if self.winner == self.player1_id else self.player1_id

    def stats_for(self, player_id: str) -> GameStats:
        if player_id == self.player1_id:
            return self.stats_player1
        if player_id == self.player2_id:
            return self.stats_player2
        raise KeyError(player_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round": self.round,
            "game_number": self.game_number,
            "player1_id": self.player1_id,
            "player2_id": self.player2_id,
            "score1": self.score1,
            "score2": self.score2,
            "stats_player1": self.stats_player1.to_dict(),
            "stats_player2": self.stats_player2.to_dict(),
            "winner": self.winner,
        }
