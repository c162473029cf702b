"""
Notifier adapters for TimeCapsule.

Lifecycle events (capsule.unlocked, capsule.reported, user.banned,
user.unbanned) are handed to a Notifier. The core guarantees the unlock event
is emitted at most once per capsule; delivery itself is the notifier's job.

Adapters:
    - NullNotifier: Drops events
    - MemoryNotifier: Records events in memory
    - WebhookNotifier: POSTs events as JSON via httpx
"""

from timecapsule.notify.base import MemoryNotifier, Notifier, NullNotifier, dispatch
from timecapsule.notify.webhook import WebhookNotifier

__all__ = [
    "MemoryNotifier",
    "Notifier",
    "NullNotifier",
    "WebhookNotifier",
    "dispatch",
]
