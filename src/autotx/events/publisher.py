"""In-process event log that fans domain events out to subscribers.

The log supports:
- Any number of synchronous subscribers (console logger, Telegram notifier)
- Isolation of failing subscribers, so reporting never breaks a run
- Buffering of recent events for status reporting and tests
"""

from collections import deque
from collections.abc import Callable
from typing import Any

import structlog

from autotx.events.types import EventType, RunEvent

logger = structlog.get_logger(__name__)

Subscriber = Callable[[RunEvent], None]

_WARNING_EVENTS = frozenset(
    {EventType.TASK_FAILED, EventType.BALANCE_PROBE_FAILED, EventType.RUN_FAILED}
)


class EventLog:
    """Publishes orchestrator events to registered subscribers.

    Usage:
        events = EventLog()
        events.subscribe(notifier)

        events.publish(some_event)
    """

    def __init__(self, buffer_size: int = 200):
        self._buffer_size = buffer_size
        self._event_buffer: deque[RunEvent] = deque(maxlen=buffer_size)
        self._subscribers: list[Subscriber] = []

        self._logger = logger.bind(component="event_log")

    @property
    def recent_events(self) -> list[RunEvent]:
        """Get recently published events, oldest first."""
        return list(self._event_buffer)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        """Add a subscriber to be called for every event.

        Subscribers are called synchronously in registration order and must
        not block; anything slow (network delivery) should be scheduled.
        """
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber."""
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: RunEvent) -> None:
        """Record an event and hand it to every subscriber.

        Args:
            event: The event to publish.
        """
        self._event_buffer.append(event)

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                self._logger.error(
                    "event_subscriber_error",
                    event_type=event.event_type.value,
                    error=str(e),
                )

    def events_of(self, *event_types: EventType) -> list[RunEvent]:
        """Get buffered events matching any of the given types."""
        return [e for e in self._event_buffer if e.event_type in event_types]

    def clear(self) -> None:
        """Drop all buffered events."""
        self._event_buffer.clear()

    def get_status(self) -> dict[str, Any]:
        """Get event log status information."""
        return {
            "subscribers": len(self._subscribers),
            "buffer_size": len(self._event_buffer),
            "buffer_capacity": self._buffer_size,
        }


def log_event(event: RunEvent) -> None:
    """Subscriber that mirrors every event onto the console log."""
    payload = event.to_dict()
    payload.pop("id", None)
    payload.pop("timestamp", None)
    event_type = payload.pop("type")
    level = "warning" if event.event_type in _WARNING_EVENTS else "info"
    getattr(logger, level)("event", event_type=event_type, **payload)
