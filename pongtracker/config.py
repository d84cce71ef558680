"""
Runtime settings read from the environment.
Defaults are suitable for local development.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


def project_root() -> Path:
    return Path(__file__).resolve().parent.parent


DB_PATH = os.environ.get("PONGTRACKER_DB_PATH") or str(project_root() / "data" / "pongtracker.db")
DB_TIMEOUT_SECONDS = _env_float("PONGTRACKER_DB_TIMEOUT", 5.0)

# Points awarded per won game
WIN_POINTS = _env_int("PONGTRACKER_WIN_POINTS", 10)
MAX_RECONCILE_ATTEMPTS = _env_int("PONGTRACKER_MAX_RECONCILE_ATTEMPTS", 3)

LOG_LEVEL = os.environ.get("PONGTRACKER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "PONGTRACKER_CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if origin.strip()
]


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once. Later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(level or LOG_LEVEL)
