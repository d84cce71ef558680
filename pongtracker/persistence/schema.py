"""
SQLite schema for pong tracker entities.
Migration-friendly: each table created with IF NOT EXISTS.
"""
from __future__ import annotations


def players_schema() -> str:
    """Player identity plus the cumulative record. version bumps on every record write."""
    return """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        inserted_at TEXT NOT NULL,
        points INTEGER NOT NULL DEFAULT 0,
        games_played INTEGER NOT NULL DEFAULT 0,
        games_won INTEGER NOT NULL DEFAULT 0,
        bombs INTEGER NOT NULL DEFAULT 0,
        bouncers INTEGER NOT NULL DEFAULT 0,
        airballs INTEGER NOT NULL DEFAULT 0,
        islands INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS ix_players_points ON players(points);
    """


def tournaments_schema() -> str:
    """player_ids is a JSON array; order is the scheduling order."""
    return """
    CREATE TABLE IF NOT EXISTS tournaments (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        tournament_style TEXT NOT NULL DEFAULT 'round-robin',
        player_ids TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS ix_tournaments_created_at ON tournaments(created_at);
    """


def games_schema() -> str:
    """One row per scheduled pairing. winner NULL = undecided. stats columns are JSON objects."""
    return """
    CREATE TABLE IF NOT EXISTS games (
        id TEXT PRIMARY KEY,
        tournament_id TEXT NOT NULL,
        game_number INTEGER NOT NULL,
        round INTEGER NOT NULL,
        player1_id TEXT NOT NULL,
        player2_id TEXT NOT NULL,
        score1 INTEGER NOT NULL DEFAULT 0,
        score2 INTEGER NOT NULL DEFAULT 0,
        stats_player1 TEXT NOT NULL,
        stats_player2 TEXT NOT NULL,
        winner TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT,
        FOREIGN KEY (tournament_id) REFERENCES tournaments(id),
        FOREIGN KEY (player1_id) REFERENCES players(id),
        FOREIGN KEY (player2_id) REFERENCES players(id),
        FOREIGN KEY (winner) REFERENCES players(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_games_tournament_number ON games(tournament_id, game_number);
    CREATE INDEX IF NOT EXISTS ix_games_player1 ON games(player1_id);
    CREATE INDEX IF NOT EXISTS ix_games_player2 ON games(player2_id);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution. Order: players, tournaments, games."""
    return "\n".join([
        players_schema(),
        tournaments_schema(),
        games_schema(),
    ])
