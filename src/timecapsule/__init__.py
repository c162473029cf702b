"""
TimeCapsule - Lifecycle and access-control engine for time-locked capsules.

A capsule is a message (and optional media reference) that stays sealed
until its unlock time. This package decides when a capsule's content becomes
readable, to whom, under what encryption and visibility, and how reports,
reviews, bans and deletions interact with that lifecycle.

It provides:
- AES-256-GCM envelopes for payloads at rest
- SQLite persistence with atomic single-record mutations
- A lazily evaluated lock/unlock state machine (no background scheduler)
- Deduplicated community reporting and moderator review
- A single fail-closed access controller for API layers

Example usage:
    $ timecapsule keygen
    $ timecapsule create --as alice --title "Hello" --message "..." --unlock-at 2030-01-01T00:00:00Z
    $ timecapsule show <capsule_id> --as alice
"""

__version__ = "0.1.0"
__author__ = "TimeCapsule Contributors"

__all__ = [
    "__version__",
    "__author__",
]
