"""
Change notifications: publish committed changes to in-process subscribers.

Services publish only after a transaction commits. Delivery is synchronous and
in subscription order; a failing subscriber is logged and skipped.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from pongtracker.models import ChangeAction

logger = logging.getLogger(__name__)

PLAYERS = "players"
TOURNAMENTS = "tournaments"
GAMES = "games"


def tournament_topic(tournament_id: str) -> str:
    """Per-tournament topic: game updates for one tournament."""
    return f"tournament:{tournament_id}"


@dataclass(frozen=True)
class ChangeEvent:
    topic: str
    action: ChangeAction
    entity_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "action": self.action.value,
            "entity_id": self.entity_id,
            "payload": self.payload,
        }


Subscriber = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Topic-based pub/sub. Thread-safe subscribe/unsubscribe."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """Register callback for topic. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._subscribers.get(topic, [])
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, event: ChangeEvent) -> int:
        """Deliver event to topic subscribers. Returns the number delivered successfully."""
        with self._lock:
            listeners = list(self._subscribers.get(event.topic, []))
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception("Subscriber failed for %s %s", event.topic, event.action.value)
        return delivered

    def publish_many(self, events: list[ChangeEvent]) -> None:
        for event in events:
            self.publish(event)
