"""Pong tracker: round-robin tournaments and reconciled player standings."""

__version__ = "0.1.0"
