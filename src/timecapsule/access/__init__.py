"""
Access control module for TimeCapsule.

The AccessController is the only surface API layers should call. It answers
"may actor A read/modify capsule C now, and with what payload?" and re-maps
every lower-level failure into the TimeCapsule error taxonomy.

Key concepts:
    - AccessDecision: ALLOW/DENY + reason + rule, like a policy verdict
    - Fail-closed: any error while deciding results in denial
    - LockedView is an answer, not an error
"""

from timecapsule.access.controller import AccessController, build_controller

__all__ = [
    "AccessController",
    "build_controller",
]
