"""
REST API for the pong tracker.
Thin wrappers around the tournament service and persistence.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncGenerator, Generator

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from pongtracker import __version__, config
from pongtracker.exceptions import ConcurrencyConflict, ConstraintViolation, NotFoundError
from pongtracker.models import TournamentStyle
from pongtracker.persistence import get_connection, init_db
from pongtracker.persistence.db import get_db_path
from pongtracker.services.notifications import (
    GAMES,
    PLAYERS,
    TOURNAMENTS,
    ChangeEvent,
    ChangeNotifier,
)
from pongtracker.services.scheduling import schedule_rounds
from pongtracker.services.tournament_service import TournamentService

logger = logging.getLogger(__name__)

notifier = ChangeNotifier()
service = TournamentService(notifier=notifier)


@contextmanager
def db_conn() -> Generator:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def service_errors() -> Generator:
    """Map service exceptions to HTTP errors."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConstraintViolation as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ConcurrencyConflict as e:
        raise HTTPException(status_code=409, detail=f"{e}. Reload and retry.") from e
    except sqlite3.OperationalError as e:
        if "locked" not in str(e) and "busy" not in str(e):
            raise
        logger.warning("Database busy: %s", e)
        raise HTTPException(status_code=503, detail="Database busy. Retry shortly.") from e


def _log_change(event: ChangeEvent) -> None:
    logger.debug("Committed %s %s %s", event.topic, event.action.value, event.entity_id)


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config.configure_logging()
    init_db(db_path=get_db_path())
    unsubscribes = [notifier.subscribe(topic, _log_change) for topic in (PLAYERS, TOURNAMENTS, GAMES)]
    logger.info("Pong tracker API ready (db=%s)", get_db_path())
    yield
    for unsubscribe in unsubscribes:
        unsubscribe()


# ---------- FastAPI app ----------
app = FastAPI(
    title="Pong Tracker API",
    description="Players, round-robin tournaments and reconciled standings",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Request models ----------


class PlayerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CreateTournamentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    tournament_style: TournamentStyle = Field(TournamentStyle.ROUND_ROBIN)
    player_ids: list[str] = Field(..., description="Participants in scheduling order")


class SchedulePreviewRequest(BaseModel):
    player_ids: list[str]


class StatsModel(BaseModel):
    bombs: int = Field(0, ge=0)
    bouncers: int = Field(0, ge=0)
    airballs: int = Field(0, ge=0)
    islands: int = Field(0, ge=0)


class SaveGameRequest(BaseModel):
    winner: str | None = Field(None, description="Winning player id; null while undecided")
    stats_player1: StatsModel | None = Field(None, description="Absolute per-game counters")
    stats_player2: StatsModel | None = None


# ---------- Players ----------


@app.post("/players")
def register_player(req: PlayerRequest) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return service.register_player(conn, req.name).to_dict()


@app.get("/players")
def list_players() -> dict[str, Any]:
    """Players ordered by points."""
    with db_conn() as conn:
        return {"players": [p.to_dict() for p in service.list_players(conn)]}


@app.get("/players/{player_id}")
def get_player(player_id: str) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return service.get_player(conn, player_id).to_dict()


@app.patch("/players/{player_id}")
def rename_player(player_id: str, req: PlayerRequest) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return service.rename_player(conn, player_id, req.name).to_dict()


@app.delete("/players/{player_id}")
def delete_player(player_id: str) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        service.delete_player(conn, player_id)
        return {"id": player_id, "deleted": True}


@app.get("/statistics")
def statistics() -> dict[str, Any]:
    """All players with win ratio and badges."""
    with db_conn() as conn:
        return {"players": [s.to_dict() for s in service.player_statistics(conn)]}


# ---------- Tournaments ----------


@app.post("/schedule/preview")
def preview_schedule(req: SchedulePreviewRequest) -> dict[str, Any]:
    """Round-robin rounds for a roster, without persisting anything."""
    rounds = schedule_rounds(req.player_ids)
    return {
        "rounds": rounds,
        "total_games": sum(len(r["games"]) for r in rounds),
    }


@app.post("/tournaments")
def create_tournament(req: CreateTournamentRequest) -> dict[str, Any]:
    """Create a tournament and its full round-robin schedule."""
    with db_conn() as conn, service_errors():
        tournament, games = service.create_tournament(
            conn, req.name, req.player_ids, tournament_style=req.tournament_style.value
        )
        out = tournament.to_dict()
        out["games"] = [g.to_dict() for g in games]
        return out


@app.get("/tournaments")
def list_tournaments() -> dict[str, Any]:
    with db_conn() as conn:
        return {"tournaments": [t.to_dict() for t in service.list_tournaments(conn)]}


@app.get("/tournaments/{tournament_id}")
def get_tournament(tournament_id: str) -> dict[str, Any]:
    """Tournament with its games ordered by game number."""
    with db_conn() as conn, service_errors():
        tournament = service.get_tournament(conn, tournament_id)
        out = tournament.to_dict()
        out["games"] = [g.to_dict() for g in service.list_games(conn, tournament_id)]
        return out


@app.get("/tournaments/{tournament_id}/leaderboard")
def tournament_leaderboard(tournament_id: str) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        entries = service.leaderboard(conn, tournament_id)
        return {"tournament_id": tournament_id, "leaderboard": [e.to_dict() for e in entries]}


# ---------- Games ----------


@app.get("/games/{game_id}")
def get_game(game_id: str) -> dict[str, Any]:
    with db_conn() as conn, service_errors():
        return service.get_game(conn, game_id).to_dict()


@app.put("/games/{game_id}")
def save_game(game_id: str, req: SaveGameRequest) -> dict[str, Any]:
    """
    Save winner and absolute per-game stats. Player standings are reconciled
    against the last stored state of the game.
    """
    with db_conn() as conn, service_errors():
        game = service.save_game(
            conn,
            game_id,
            winner=req.winner,
            stats_player1=req.stats_player1.model_dump() if req.stats_player1 else None,
            stats_player2=req.stats_player2.model_dump() if req.stats_player2 else None,
        )
        return game.to_dict()


# ---------- Run with: uvicorn pongtracker.api:app --reload ----------
