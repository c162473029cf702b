"""
SQLite storage for TimeCapsule.

This module persists capsule records and the report ledger in a single
SQLite database file.

Design Principles:
    - No stored lock state: queries compare unlock_at against a caller-supplied now
    - Sealed pairs: ciphertext and envelope live in the same row (CHECK enforced)
    - Atomic: every mutation is one BEGIN IMMEDIATE transaction
    - Bounded: lock waits give up after timeout_seconds with StoreTimeoutError
    - Idempotent deletes: a missing id is DeleteOutcome.NOT_FOUND, not an error

Tables:
    - capsules: One row per capsule
    - capsule_reports: Report ledger, unique per (capsule_id, reporter_id)
"""

import json
import sqlite3
import threading
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from timecapsule.errors import (
    CapsuleNotFoundError,
    ConflictError,
    ImmutableFieldError,
    InvalidCapsuleError,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
    StoreTimeoutError,
    TimeCapsuleError,
)
from timecapsule.schema import (
    AdminFilter,
    Capsule,
    CapsuleReport,
    DeleteOutcome,
    EnvelopeMetadata,
    MediaRef,
    MediaType,
    Visibility,
    ensure_utc,
)

# Schema version for migrations
SCHEMA_VERSION = 1

# Fields update() may change; everything else is fixed or owned by a dedicated operation
MUTABLE_FIELDS = frozenset({"title", "visibility"})

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS capsules (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT,
    media_ref TEXT,
    media_type TEXT,
    ciphertext BLOB,
    envelope_json TEXT,
    unlock_at TEXT NOT NULL,
    visibility TEXT NOT NULL CHECK (visibility IN ('private', 'public')),
    encrypted INTEGER NOT NULL,
    report_count INTEGER NOT NULL DEFAULT 0 CHECK (report_count >= 0),
    reviewed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    unlock_notified INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 1,
    CHECK (
        (encrypted = 1 AND ciphertext IS NOT NULL AND envelope_json IS NOT NULL AND message IS NULL)
        OR (encrypted = 0 AND ciphertext IS NULL AND envelope_json IS NULL)
    )
);

CREATE TABLE IF NOT EXISTS capsule_reports (
    capsule_id TEXT NOT NULL,
    reporter_id TEXT NOT NULL,
    reason TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (capsule_id, reporter_id),
    FOREIGN KEY (capsule_id) REFERENCES capsules(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_capsules_owner_id ON capsules(owner_id);
CREATE INDEX IF NOT EXISTS idx_capsules_public ON capsules(visibility, unlock_at);
CREATE INDEX IF NOT EXISTS idx_capsules_created_at ON capsules(created_at);
"""


def generate_id() -> str:
    """Generate an opaque unique capsule id."""
    return uuid.uuid4().hex


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC ISO format, so text comparison orders correctly."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def _is_lock_error(error: sqlite3.Error) -> bool:
    text = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and ("locked" in text or "busy" in text)


class CapsuleStore:
    """
    SQLite database for capsules and the report ledger.

    One connection is shared by all threads of a process and guarded by a
    re-entrant lock; separate processes coordinate through SQLite locking.

    Usage:
        with CapsuleStore("timecapsule.db") as store:
            store.create(capsule)
            store.add_report(capsule.id, "bob", "spam", now)
    """

    def __init__(self, db_path: str | Path, timeout_seconds: float = 5.0) -> None:
        """
        Open (and create if needed) the database.

        Args:
            db_path: Path to the SQLite file, or ":memory:"
            timeout_seconds: Maximum wait for a lock held by another connection
        """
        self.db_path = Path(db_path)
        self.timeout_seconds = timeout_seconds
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout_seconds,
                check_same_thread=False,
                # Transactions are managed explicitly with BEGIN IMMEDIATE
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        with self.transaction("init_schema") as conn:
            for statement in CREATE_TABLES_SQL.split(";"):
                if statement.strip():
                    conn.execute(statement)
            row = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, to_db_time(datetime.now(UTC))),
                )

    def _translate(self, error: sqlite3.Error, operation: str, write: bool) -> TimeCapsuleError:
        if _is_lock_error(error):
            return StoreTimeoutError(operation=operation, timeout_seconds=self.timeout_seconds)
        if write:
            return StorageWriteError(operation=operation, underlying_error=str(error))
        return StorageReadError(operation=operation, underlying_error=str(error))

    @contextmanager
    def transaction(self, operation: str) -> Generator[sqlite3.Connection, None, None]:
        """Run a block as one write transaction, rolling back on any error."""
        with self._lock:
            conn = self._require_conn(operation)
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise self._translate(e, operation, write=True) from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise self._translate(e, operation, write=True) from e
            except BaseException:
                self._rollback(conn)
                raise

    @contextmanager
    def _reading(self, operation: str) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            conn = self._require_conn(operation)
            try:
                yield conn
            except sqlite3.Error as e:
                raise self._translate(e, operation, write=False) from e

    def _require_conn(self, operation: str) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation=operation,
                message="Store is closed",
            )
        return self._conn

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "CapsuleStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Capsule Operations
    # =========================================================================

    def create(self, capsule: Capsule) -> Capsule:
        """
        Insert a new capsule record.

        Returns:
            The stored capsule
        """
        with self.transaction("create") as conn:
            conn.execute(
                """
                INSERT INTO capsules (
                    id, owner_id, title, message, media_ref, media_type,
                    ciphertext, envelope_json, unlock_at, visibility, encrypted,
                    report_count, reviewed, created_at, unlock_notified, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    capsule.id,
                    capsule.owner_id,
                    capsule.title,
                    capsule.message,
                    capsule.media.ref if capsule.media else None,
                    capsule.media.media_type.value if capsule.media else None,
                    capsule.ciphertext,
                    capsule.envelope.model_dump_json() if capsule.envelope else None,
                    to_db_time(capsule.unlock_at),
                    capsule.visibility.value,
                    int(capsule.encrypted),
                    capsule.report_count,
                    int(capsule.reviewed),
                    to_db_time(capsule.created_at),
                    int(capsule.unlock_notified),
                    capsule.version,
                ),
            )
        return capsule

    def get_by_id(self, capsule_id: str) -> Capsule | None:
        """
        Get a capsule by id.

        Returns:
            Capsule or None if not found
        """
        with self._reading("get_by_id") as conn:
            row = conn.execute("SELECT * FROM capsules WHERE id = ?", (capsule_id,)).fetchone()
            return self._row_to_capsule(row) if row else None

    def list_by_owner(self, owner_id: str) -> list[Capsule]:
        """List an owner's capsules, newest first."""
        with self._reading("list_by_owner") as conn:
            cursor = conn.execute(
                "SELECT * FROM capsules WHERE owner_id = ? ORDER BY created_at DESC, id",
                (owner_id,),
            )
            return [self._row_to_capsule(row) for row in cursor]

    def list_public_unlocked(self, now: datetime) -> list[Capsule]:
        """
        List public capsules whose unlock time is at or before now.

        Args:
            now: Current time as computed by the lifecycle engine
        """
        with self._reading("list_public_unlocked") as conn:
            cursor = conn.execute(
                """
                SELECT * FROM capsules
                WHERE visibility = ? AND unlock_at <= ?
                ORDER BY unlock_at DESC, id
                """,
                (Visibility.PUBLIC.value, to_db_time(now)),
            )
            return [self._row_to_capsule(row) for row in cursor]

    def update(
        self,
        capsule_id: str,
        expected_version: int | None = None,
        **changes: Any,
    ) -> Capsule:
        """
        Apply a partial update to the mutable fields of a capsule.

        Args:
            capsule_id: Capsule to update
            expected_version: If given, the update only applies to this version
            **changes: New values for title and/or visibility

        Raises:
            ImmutableFieldError: If a change targets a field fixed at creation
            CapsuleNotFoundError: If the capsule does not exist
            ConflictError: If expected_version is stale
        """
        for name in changes:
            if name in MUTABLE_FIELDS:
                continue
            if name in Capsule.model_fields:
                raise ImmutableFieldError(field_name=name)
            raise InvalidCapsuleError(field_name=name, message=f"Unknown capsule field: {name}")

        updates: list[str] = []
        params: list[Any] = []
        if "title" in changes:
            title = str(changes["title"]).strip()
            if not title:
                raise InvalidCapsuleError(field_name="title", message="title must not be blank")
            updates.append("title = ?")
            params.append(title)
        if "visibility" in changes:
            updates.append("visibility = ?")
            params.append(Visibility(changes["visibility"]).value)

        with self.transaction("update") as conn:
            row = conn.execute(
                "SELECT version FROM capsules WHERE id = ?", (capsule_id,)
            ).fetchone()
            if row is None:
                raise CapsuleNotFoundError(capsule_id=capsule_id)
            current = row["version"]
            if expected_version is not None and expected_version != current:
                raise ConflictError(
                    capsule_id=capsule_id,
                    expected_version=expected_version,
                    actual_version=current,
                )
            if updates:
                conn.execute(
                    f"UPDATE capsules SET {', '.join(updates)}, version = version + 1 "
                    "WHERE id = ? AND version = ?",
                    (*params, capsule_id, current),
                )
            updated = conn.execute("SELECT * FROM capsules WHERE id = ?", (capsule_id,)).fetchone()
        return self._row_to_capsule(updated)

    def delete(self, capsule_id: str) -> DeleteOutcome:
        """
        Hard-delete a capsule and its report ledger entries.

        Returns:
            DeleteOutcome.DELETED, or DeleteOutcome.NOT_FOUND if nothing was there
        """
        with self.transaction("delete") as conn:
            conn.execute("DELETE FROM capsule_reports WHERE capsule_id = ?", (capsule_id,))
            cursor = conn.execute("DELETE FROM capsules WHERE id = ?", (capsule_id,))
            deleted = cursor.rowcount == 1
        return DeleteOutcome.DELETED if deleted else DeleteOutcome.NOT_FOUND

    def delete_by_owner(self, owner_id: str) -> int:
        """
        Delete every capsule owned by a user.

        Each capsule is removed in its own transaction with delete(), so a
        failure part way leaves the rest in place and a retry picks them up.

        Returns:
            Number of capsules deleted by this call
        """
        with self._reading("delete_by_owner") as conn:
            cursor = conn.execute("SELECT id FROM capsules WHERE owner_id = ?", (owner_id,))
            ids = [row["id"] for row in cursor]
        return sum(1 for capsule_id in ids if self.delete(capsule_id) == DeleteOutcome.DELETED)

    # =========================================================================
    # Moderation Operations
    # =========================================================================

    def add_report(
        self,
        capsule_id: str,
        reporter_id: str,
        reason: str,
        now: datetime,
    ) -> tuple[int, bool]:
        """
        Record a report in the ledger and bump the count if it is new.

        Returns:
            Tuple of (report_count after the call, whether this report was counted)

        Raises:
            CapsuleNotFoundError: If the capsule does not exist
        """
        with self.transaction("add_report") as conn:
            exists = conn.execute(
                "SELECT 1 FROM capsules WHERE id = ?", (capsule_id,)
            ).fetchone()
            if exists is None:
                raise CapsuleNotFoundError(capsule_id=capsule_id)
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO capsule_reports (capsule_id, reporter_id, reason, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (capsule_id, reporter_id, reason, to_db_time(now)),
            )
            counted = cursor.rowcount == 1
            if counted:
                conn.execute(
                    "UPDATE capsules SET report_count = report_count + 1, version = version + 1 "
                    "WHERE id = ?",
                    (capsule_id,),
                )
            row = conn.execute(
                "SELECT report_count FROM capsules WHERE id = ?", (capsule_id,)
            ).fetchone()
        return row["report_count"], counted

    def list_reports(self, capsule_id: str) -> list[CapsuleReport]:
        """List ledger entries for a capsule, oldest first."""
        with self._reading("list_reports") as conn:
            cursor = conn.execute(
                "SELECT * FROM capsule_reports WHERE capsule_id = ? ORDER BY created_at, reporter_id",
                (capsule_id,),
            )
            return [
                CapsuleReport(
                    capsule_id=row["capsule_id"],
                    reporter_id=row["reporter_id"],
                    reason=row["reason"],
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in cursor
            ]

    def mark_reviewed(self, capsule_id: str) -> Capsule:
        """
        Set reviewed = true without touching report_count or visibility.

        Raises:
            CapsuleNotFoundError: If the capsule does not exist
        """
        with self.transaction("mark_reviewed") as conn:
            cursor = conn.execute(
                "UPDATE capsules SET reviewed = 1, version = version + 1 WHERE id = ?",
                (capsule_id,),
            )
            if cursor.rowcount == 0:
                raise CapsuleNotFoundError(capsule_id=capsule_id)
            row = conn.execute("SELECT * FROM capsules WHERE id = ?", (capsule_id,)).fetchone()
        return self._row_to_capsule(row)

    def claim_unlock_notification(self, capsule_id: str, now: datetime) -> bool:
        """
        Atomically flip the one-time unlock flag.

        Only succeeds for an unlocked capsule whose flag is still clear, so
        exactly one caller wins no matter how many readers race.

        Returns:
            True if this call claimed the notification
        """
        with self.transaction("claim_unlock_notification") as conn:
            cursor = conn.execute(
                """
                UPDATE capsules SET unlock_notified = 1
                WHERE id = ? AND unlock_notified = 0 AND unlock_at <= ?
                """,
                (capsule_id, to_db_time(now)),
            )
            return cursor.rowcount == 1

    # =========================================================================
    # Admin Queries
    # =========================================================================

    def list_all(
        self,
        filter: AdminFilter,
        now: datetime,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Capsule], int]:
        """
        Page through all capsules, newest first.

        Returns:
            Tuple of (capsules on this page, total matching capsules)
        """
        where, params = self._filter_clause(filter, now)
        offset = (page - 1) * limit
        with self._reading("list_all") as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM capsules {where}", params).fetchone()[0]
            cursor = conn.execute(
                f"SELECT * FROM capsules {where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                (*params, limit, offset),
            )
            return [self._row_to_capsule(row) for row in cursor], total

    @staticmethod
    def _filter_clause(filter: AdminFilter, now: datetime) -> tuple[str, tuple[Any, ...]]:
        if filter == AdminFilter.LOCKED:
            return "WHERE unlock_at > ?", (to_db_time(now),)
        if filter == AdminFilter.UNLOCKED:
            return "WHERE unlock_at <= ?", (to_db_time(now),)
        if filter == AdminFilter.REPORTED:
            return "WHERE report_count > 0", ()
        return "", ()

    def stats(self, now: datetime, since: datetime) -> dict[str, Any]:
        """
        Count capsules by state and flags.

        Args:
            now: Current time for the locked/unlocked split
            since: Start of the creations-per-day window

        Returns:
            Dict of counters plus "creations": list of (day, count) pairs
        """
        with self._reading("stats") as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(unlock_at > ?), 0) AS locked,
                    COALESCE(SUM(report_count > 0), 0) AS reported,
                    COALESCE(SUM(reviewed), 0) AS reviewed,
                    COALESCE(SUM(visibility = 'public'), 0) AS public,
                    COALESCE(SUM(encrypted), 0) AS encrypted
                FROM capsules
                """,
                (to_db_time(now),),
            ).fetchone()
            creations = conn.execute(
                """
                SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS count
                FROM capsules WHERE created_at >= ?
                GROUP BY day ORDER BY day
                """,
                (to_db_time(since),),
            ).fetchall()

        return {
            "total": row["total"],
            "locked": row["locked"],
            "unlocked": row["total"] - row["locked"],
            "reported": row["reported"],
            "reviewed": row["reviewed"],
            "public": row["public"],
            "encrypted": row["encrypted"],
            "creations": [(r["day"], r["count"]) for r in creations],
        }

    # =========================================================================
    # Row Mapping
    # =========================================================================

    @staticmethod
    def _row_to_capsule(row: sqlite3.Row) -> Capsule:
        media = None
        if row["media_ref"]:
            media = MediaRef(ref=row["media_ref"], media_type=MediaType(row["media_type"]))
        envelope = None
        if row["envelope_json"]:
            envelope = EnvelopeMetadata.model_validate(json.loads(row["envelope_json"]))
        return Capsule(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            message=row["message"],
            media=media,
            ciphertext=bytes(row["ciphertext"]) if row["ciphertext"] is not None else None,
            envelope=envelope,
            unlock_at=datetime.fromisoformat(row["unlock_at"]),
            visibility=Visibility(row["visibility"]),
            encrypted=bool(row["encrypted"]),
            report_count=row["report_count"],
            reviewed=bool(row["reviewed"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            unlock_notified=bool(row["unlock_notified"]),
            version=row["version"],
        )
