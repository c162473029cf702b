"""
Storage module for TimeCapsule.

This module provides SQLite-based persistence for capsules and the report
ledger.

Tables:
    - capsules: Capsule records (payload or ciphertext + envelope, flags, version)
    - capsule_reports: One row per (capsule_id, reporter_id)

Design principles:
    - Lock state is never stored; reads compare unlock_at against now
    - Single-record mutations are atomic (BEGIN IMMEDIATE)
    - Lock waits are bounded and surface as StoreTimeoutError
    - sqlite3 exceptions never leave this module
"""

from timecapsule.store.db import CapsuleStore, generate_id, to_db_time

__all__ = [
    "CapsuleStore",
    "generate_id",
    "to_db_time",
]
