"""
Persistence layer for players, tournaments and games.
No business logic: only read/write interfaces.
"""
from .db import get_connection, init_db, set_db_path, get_db_path, transaction
from .repositories import (
    PlayerRepository,
    TournamentRepository,
    GameRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "set_db_path",
    "get_db_path",
    "transaction",
    "PlayerRepository",
    "TournamentRepository",
    "GameRepository",
]
