"""
Lifecycle module for TimeCapsule.

Computes and enforces the lock/unlock transition. State is derived from
unlock_at on every access; the one-time unlock event is claimed atomically
in the store so it is emitted at most once.
"""

from timecapsule.lifecycle.engine import Clock, LifecycleEngine, capsule_state

__all__ = [
    "Clock",
    "LifecycleEngine",
    "capsule_state",
]
