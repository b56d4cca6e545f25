"""Synchronous pub/sub bus for outcome events."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

import structlog

logger = structlog.get_logger()


IDEA_RESOLVED = "idea_resolved"
SWEEP_COMPLETED = "sweep_completed"
PROFILES_REFRESHED = "profiles_refreshed"

# Keyword payload each event carries.
EVENT_FIELDS: dict[str, frozenset[str]] = {
    IDEA_RESOLVED: frozenset({"idea", "resolution"}),
    SWEEP_COMPLETED: frozenset({"result"}),
    PROFILES_REFRESHED: frozenset({"symbols", "updated"}),
}


class EventBus:
    """Callbacks run synchronously in subscription order.

    Only the outcome events in ``EVENT_FIELDS`` are accepted, and a publish
    must carry exactly that event's fields. A failing subscriber is logged
    and skipped; it never reaches the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._log = logger.bind(component="event_bus")

    @staticmethod
    def _check_event(event_type: str) -> None:
        if event_type not in EVENT_FIELDS:
            raise ValueError(f"Unknown event type: {event_type!r}")

    def subscribe(self, event_type: str, callback: Callable[..., Any]) -> None:
        self._check_event(event_type)
        self._subscribers[event_type].append(callback)
        self._log.debug("subscriber_added", event_type=event_type, callback=callback.__qualname__)

    def unsubscribe(self, event_type: str, callback: Callable[..., Any]) -> None:
        try:
            self._subscribers[event_type].remove(callback)
        except ValueError:
            pass

    def publish(self, event_type: str, **data: Any) -> int:
        """Deliver ``data`` to every subscriber. Returns how many completed."""
        self._check_event(event_type)
        if set(data) != EVENT_FIELDS[event_type]:
            raise ValueError(
                f"{event_type} expects fields {sorted(EVENT_FIELDS[event_type])}, got {sorted(data)}"
            )

        subscribers = list(self._subscribers.get(event_type, []))
        if not subscribers:
            return 0

        self._log.debug("event_published", event_type=event_type, subscriber_count=len(subscribers))

        delivered = 0
        for callback in subscribers:
            try:
                callback(**data)
            except Exception:
                self._log.exception(
                    "subscriber_error",
                    event_type=event_type,
                    callback=getattr(callback, "__qualname__", repr(callback)),
                )
            else:
                delivered += 1
        return delivered

    def clear(self) -> None:
        self._subscribers.clear()
