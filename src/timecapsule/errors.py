"""
Exception hierarchy for TimeCapsule.

All TimeCapsule exceptions inherit from TimeCapsuleError, allowing callers to
catch every core failure with a single except clause.

Exception Categories:
    - NotFoundError: Missing capsule or user (safe to report to callers)
    - ForbiddenError: Authorization failure (banned actor, not a moderator, ...)
    - IntegrityError: Ciphertext failed authentication or could not be opened
    - ConflictError: A concurrent mutation won the race
    - StoreTimeoutError: The store did not answer within its bounded timeout
    - StorageError: Any other persistence failure
    - ValidationError: Invalid input (bad capsule, immutable field, bad report)

A locked capsule is not an error: it is answered with a LockedView.

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (capsule, actor, operation where applicable)
    - Integrity errors never carry plaintext or key material
    - Nothing below the access controller leaks sqlite3 exceptions
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Not found errors: 1xxx
ERROR_NOT_FOUND = 1000
ERROR_CAPSULE_NOT_FOUND = 1001
ERROR_USER_NOT_FOUND = 1002

# Authorization errors: 2xxx
ERROR_FORBIDDEN = 2000
ERROR_USER_BANNED = 2001
ERROR_MODERATOR_REQUIRED = 2002

# Integrity errors: 3xxx
ERROR_INTEGRITY = 3000
ERROR_DECRYPTION_FAILED = 3001
ERROR_CORRUPT_PAYLOAD = 3002

# Concurrency and storage errors: 4xxx
ERROR_STORAGE = 4000
ERROR_CONFLICT = 4001
ERROR_STORE_TIMEOUT = 4002
ERROR_STORAGE_CONNECTION = 4003
ERROR_STORAGE_WRITE = 4004
ERROR_STORAGE_READ = 4005

# Validation errors: 5xxx
ERROR_VALIDATION = 5000
ERROR_INVALID_CAPSULE = 5001
ERROR_IMMUTABLE_FIELD = 5002
ERROR_INVALID_REPORT = 5003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class TimeCapsuleError(Exception):
    """
    Base exception for all TimeCapsule errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Not Found Errors
# =============================================================================


@dataclass
class NotFoundError(TimeCapsuleError):
    """Raised when a capsule or user does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Resource not found"
        if self.code == 0:
            self.code = ERROR_NOT_FOUND


@dataclass
class CapsuleNotFoundError(NotFoundError):
    """Raised when a capsule id is unknown."""

    capsule_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Capsule not found: {self.capsule_id}"
        if self.code == 0:
            self.code = ERROR_CAPSULE_NOT_FOUND
        super().__post_init__()
        self.context["capsule_id"] = self.capsule_id


@dataclass
class UserNotFoundError(NotFoundError):
    """Raised when a user id is unknown to the user directory."""

    user_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"User not found: {self.user_id}"
        if self.code == 0:
            self.code = ERROR_USER_NOT_FOUND
        super().__post_init__()
        self.context["user_id"] = self.user_id


# =============================================================================
# Authorization Errors
# =============================================================================


@dataclass
class ForbiddenError(TimeCapsuleError):
    """
    Raised when an actor is not allowed to perform an operation.

    Attributes:
        actor_id: The actor that was denied
        capsule_id: The capsule involved (if any)
        reason: Why access was denied
        rule: Which access rule caused the denial
    """

    actor_id: str = ""
    capsule_id: str | None = None
    reason: str = ""
    rule: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Forbidden: {self.reason}" if self.reason else "Forbidden"
        if self.code == 0:
            self.code = ERROR_FORBIDDEN
        self.context.update({
            "actor_id": self.actor_id,
            "capsule_id": self.capsule_id,
            "reason": self.reason,
            "rule": self.rule,
        })


@dataclass
class UserBannedError(ForbiddenError):
    """Raised when a banned actor attempts a write."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.reason:
            self.reason = f"user {self.actor_id} is banned"
        if self.code == 0:
            self.code = ERROR_USER_BANNED
        if self.rule is None:
            self.rule = "banned_actor"
        super().__post_init__()


@dataclass
class ModeratorRequiredError(ForbiddenError):
    """Raised when a non-moderator calls a moderation operation."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.reason:
            self.reason = "moderator role required"
        if self.code == 0:
            self.code = ERROR_MODERATOR_REQUIRED
        if self.rule is None:
            self.rule = "moderator_only"
        super().__post_init__()


# =============================================================================
# Integrity Errors
# =============================================================================


@dataclass
class IntegrityError(TimeCapsuleError):
    """Base class for data integrity failures."""

    capsule_id: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_INTEGRITY
        self.context["capsule_id"] = self.capsule_id


@dataclass
class DecryptionError(IntegrityError):
    """Raised by the envelope when a ciphertext cannot be authenticated."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Ciphertext failed authentication"
        if self.code == 0:
            self.code = ERROR_DECRYPTION_FAILED
        super().__post_init__()


@dataclass
class CorruptPayloadError(IntegrityError):
    """Raised when a stored payload can not be revealed intact."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Capsule payload is unavailable"
        if self.code == 0:
            self.code = ERROR_CORRUPT_PAYLOAD
        super().__post_init__()


# =============================================================================
# Concurrency and Storage Errors
# =============================================================================


@dataclass
class ConflictError(TimeCapsuleError):
    """Raised when an optimistic update loses against a concurrent writer."""

    capsule_id: str = ""
    expected_version: int | None = None
    actual_version: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Concurrent modification of capsule {self.capsule_id}: "
                f"expected version {self.expected_version}, found {self.actual_version}"
            )
        if self.code == 0:
            self.code = ERROR_CONFLICT
        if not self.suggestion:
            self.suggestion = "Reload the capsule and retry the update"
        self.context.update({
            "capsule_id": self.capsule_id,
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
        })


@dataclass
class StorageError(TimeCapsuleError):
    """
    Base class for storage errors.

    Attributes:
        operation: The store operation that failed (e.g., "create", "add_report")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Storage operation failed: {self.operation}"
        if self.code == 0:
            self.code = ERROR_STORAGE
        self.context["operation"] = self.operation


@dataclass
class StoreTimeoutError(StorageError):
    """Raised when the store stays locked beyond its bounded timeout."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Store unavailable: {self.operation} timed out after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_STORE_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Retry later or increase store_timeout_seconds"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


@dataclass
class StorageConnectionError(StorageError):
    """Raised when the database can not be opened."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Validation Errors
# =============================================================================


@dataclass
class ValidationError(TimeCapsuleError):
    """
    Raised when input fails validation.

    Attributes:
        field_name: The offending field (if applicable)
    """

    field_name: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_VALIDATION
        self.context["field"] = self.field_name


@dataclass
class InvalidCapsuleError(ValidationError):
    """Raised when a capsule can not be created as requested."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid capsule field: {self.field_name}"
        if self.code == 0:
            self.code = ERROR_INVALID_CAPSULE
        super().__post_init__()


@dataclass
class ImmutableFieldError(ValidationError):
    """Raised when an update touches a field fixed at creation."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Field is immutable after creation: {self.field_name}"
        if self.code == 0:
            self.code = ERROR_IMMUTABLE_FIELD
        super().__post_init__()


@dataclass
class InvalidReportError(ValidationError):
    """Raised when a report is malformed."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Report reason must be a non-empty string"
        if self.code == 0:
            self.code = ERROR_INVALID_REPORT
        if self.field_name is None:
            self.field_name = "reason"
        super().__post_init__()
