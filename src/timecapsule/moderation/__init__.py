"""
Moderation module for TimeCapsule.

Tracks reports through a deduplicated ledger, records moderator review, and
applies bans through the external user directory.
"""

from timecapsule.moderation.engine import ModerationEngine

__all__ = [
    "ModerationEngine",
]
