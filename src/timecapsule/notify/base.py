"""
Notifier interface and in-process adapters.

The notifier is an external collaborator: the core hands it lifecycle events
(unlock, report, ban) and never waits on or depends on delivery. Adapters
must not raise for delivery failures.
"""

import logging
import threading
from typing import Protocol

from timecapsule.schema import EventKind, NotificationEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Sink for fire-and-forget lifecycle events."""

    def notify(self, event: NotificationEvent) -> None:
        """Hand an event to the notifier."""
        ...


class NullNotifier:
    """Discards every event."""

    def notify(self, event: NotificationEvent) -> None:
        return None


class MemoryNotifier:
    """
    Keeps events in memory, in emission order.

    Useful for dry runs and for asserting exactly-once emission.
    """

    def __init__(self) -> None:
        self._events: list[NotificationEvent] = []
        self._lock = threading.Lock()

    def notify(self, event: NotificationEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[NotificationEvent]:
        """Snapshot of recorded events."""
        with self._lock:
            return list(self._events)

    def of_kind(self, kind: EventKind) -> list[NotificationEvent]:
        """Recorded events of one kind."""
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


def dispatch(notifier: Notifier, event: NotificationEvent) -> None:
    """
    Hand an event to a notifier without letting it fail the caller.

    Events are emitted after the state change they describe has committed,
    so a failing notifier is logged and the operation still succeeds.
    """
    try:
        notifier.notify(event)
    except Exception as e:
        logger.warning("Notifier failed on %s: %s", event.kind.value, e)
