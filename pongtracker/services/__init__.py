"""
Service layer: scheduling, result reconciliation, tournament orchestration.
scheduling and reconciler are pure; tournament_service orchestrates persistence.
"""
from .scheduling import generate_schedule, round_robin_pairings
from .reconciler import ReconcileResult, Transition, reconcile, win_points
from .notifications import ChangeEvent, ChangeNotifier
from .tournament_service import TournamentService, LeaderboardEntry, PlayerStatistics

__all__ = [
    "generate_schedule",
    "round_robin_pairings",
    "ReconcileResult",
    "Transition",
    "reconcile",
    "win_points",
    "ChangeEvent",
    "ChangeNotifier",
    "TournamentService",
    "LeaderboardEntry",
    "PlayerStatistics",
]
