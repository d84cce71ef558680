"""Exceptions raised by the pong tracker services."""


class PongTrackerError(Exception):
    """Base exception for all pong tracker errors."""


class ConstraintViolation(PongTrackerError, ValueError):
    """
    A requested change breaks a domain rule: winner cleared once decided,
    winner not a participant, negative counters, invalid tournament roster.
    Nothing is mutated when this is raised.
    """


class ConcurrencyConflict(PongTrackerError):
    """
    A game or player record changed between read and apply.
    Retryable: re-read current state and reconcile again.
    """


class NotFoundError(PongTrackerError, LookupError):
    """Unknown player, tournament or game id."""
