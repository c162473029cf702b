"""
Schema definitions for TimeCapsule.

This module defines the Pydantic models used throughout TimeCapsule:
- Capsule/CapsuleCreate: The stored record and the creation request
- EnvelopeMetadata: Parameters that travel with every ciphertext
- RevealedView/LockedView/CapsuleSummary: What read paths hand back
- Actor/User/CapsuleReport: Identities and the report ledger
- AccessDecision: The result of an access check
- AdminStats/CapsulePage/UserPage/UserDeletion: Moderation dashboard data

Design Decisions:
    - Records are immutable (frozen=True); mutations go through the store
    - Lock state is never a field of Capsule, it is derived from unlock_at
    - All timestamps are timezone-aware UTC
    - Ciphertext and its envelope are validated as a pair
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def now_utc() -> datetime:
    """Get the current UTC time."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to UTC; naive datetimes are rejected."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        msg = "timestamp must be timezone-aware"
        raise ValueError(msg)
    return value.astimezone(UTC)


# =============================================================================
# Enums
# =============================================================================


class Visibility(str, Enum):
    """Who may read a capsule once it is unlocked."""

    PRIVATE = "private"
    PUBLIC = "public"


class CapsuleState(str, Enum):
    """
    Derived lock state of a capsule.

    UNLOCKED is terminal: a capsule never goes back to LOCKED.
    """

    LOCKED = "locked"
    UNLOCKED = "unlocked"


class Role(str, Enum):
    """Role of a user as reported by the user directory."""

    USER = "user"
    ADMIN = "admin"


class MediaType(str, Enum):
    """Kind of media attached to a capsule."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


class AdminFilter(str, Enum):
    """Filters available on the moderation listing."""

    ALL = "all"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    REPORTED = "reported"


class UserFilter(str, Enum):
    """Filters available on the moderation user listing."""

    ALL = "all"
    ACTIVE = "active"
    BANNED = "banned"


class DeleteOutcome(str, Enum):
    """Result of an idempotent delete."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"


class EventKind(str, Enum):
    """Lifecycle events handed to the external notifier."""

    CAPSULE_UNLOCKED = "capsule.unlocked"
    CAPSULE_REPORTED = "capsule.reported"
    USER_BANNED = "user.banned"
    USER_UNBANNED = "user.unbanned"
    USER_DELETED = "user.deleted"


# =============================================================================
# Capsule Models
# =============================================================================


class MediaRef(BaseModel):
    """
    Reference to a binary payload held by the external media store.

    Attributes:
        ref: Opaque key in the media store
        media_type: Kind of media, used by renderers
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ref: str = Field(..., min_length=1, description="Opaque media store key")
    media_type: MediaType = Field(default=MediaType.FILE, description="Kind of media")


class EnvelopeMetadata(BaseModel):
    """
    Parameters needed to open a sealed payload.

    Attributes:
        algorithm: Cipher identifier (e.g., "AES-256-GCM")
        nonce: Base64 nonce, unique per seal
        tag: Base64 authentication tag
        key_id: Identifier of the key handle used to seal
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    algorithm: str = Field(..., min_length=1)
    nonce: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1)
    key_id: str | None = Field(default=None)


class CapsuleCreate(BaseModel):
    """
    A request to create a capsule.

    Attributes:
        title: Short text shown in listings (also while locked)
        message: The text to keep sealed until unlock
        media: Optional media store reference
        unlock_at: When the capsule becomes readable (timezone-aware)
        visibility: private or public
        encrypted: Whether to seal the message at rest
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(..., description="Capsule title")
    message: str = Field(default="", description="Message to seal")
    media: MediaRef | None = Field(default=None, description="Attached media")
    unlock_at: datetime = Field(..., description="Unlock timestamp")
    visibility: Visibility = Field(default=Visibility.PRIVATE)
    encrypted: bool = Field(default=False)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Titles are trimmed and must not be blank."""
        v = v.strip()
        if not v:
            msg = "title must not be blank"
            raise ValueError(msg)
        return v

    @field_validator("unlock_at")
    @classmethod
    def validate_unlock_at(cls, v: datetime) -> datetime:
        """Unlock time must be timezone-aware; stored as UTC."""
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_payload(self) -> "CapsuleCreate":
        """A capsule must carry a message, a media reference, or both."""
        if not self.message and self.media is None:
            msg = "capsule needs a message or a media reference"
            raise ValueError(msg)
        return self


class Capsule(BaseModel):
    """
    A stored capsule record.

    Lock state is not stored here; it is a pure function of unlock_at and
    the current time (see timecapsule.lifecycle).

    Attributes:
        id: Opaque unique identifier
        owner_id: Creating user
        title: Short text
        message: Plaintext message (None when encrypted)
        media: Optional media store reference
        ciphertext: Sealed message (present iff encrypted)
        envelope: Parameters to open the ciphertext (present iff encrypted)
        unlock_at: Unlock timestamp, fixed at creation
        visibility: private or public
        encrypted: Fixed at creation
        report_count: Number of distinct reporters
        reviewed: Set by a moderator
        created_at: Fixed at creation
        unlock_notified: Whether the unlock event has been claimed
        version: Incremented on every mutation
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    id: str
    owner_id: str
    title: str
    message: str | None = None
    media: MediaRef | None = None
    ciphertext: bytes | None = None
    envelope: EnvelopeMetadata | None = None
    unlock_at: datetime
    visibility: Visibility = Visibility.PRIVATE
    encrypted: bool = False
    report_count: int = Field(default=0, ge=0)
    reviewed: bool = False
    created_at: datetime = Field(default_factory=now_utc)
    unlock_notified: bool = False
    version: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def validate_envelope_pair(self) -> "Capsule":
        """Ciphertext exists if and only if the capsule is encrypted."""
        sealed = self.ciphertext is not None and self.envelope is not None
        if self.encrypted and not sealed:
            msg = "encrypted capsule requires ciphertext and envelope"
            raise ValueError(msg)
        if not self.encrypted and (self.ciphertext is not None or self.envelope is not None):
            msg = "plaintext capsule must not carry ciphertext"
            raise ValueError(msg)
        if self.encrypted and self.message is not None:
            msg = "encrypted capsule must not carry a plaintext message"
            raise ValueError(msg)
        return self


class CapsuleSummary(BaseModel):
    """
    Metadata-only view of a capsule, used by listings.

    Never carries message, media or ciphertext.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    owner_id: str
    title: str
    unlock_at: datetime
    visibility: Visibility
    encrypted: bool
    state: CapsuleState
    report_count: int
    reviewed: bool
    created_at: datetime
    has_media: bool

    @classmethod
    def from_capsule(cls, capsule: Capsule, state: CapsuleState) -> "CapsuleSummary":
        """Build a summary for a capsule whose state was just computed."""
        return cls(
            id=capsule.id,
            owner_id=capsule.owner_id,
            title=capsule.title,
            unlock_at=capsule.unlock_at,
            visibility=capsule.visibility,
            encrypted=capsule.encrypted,
            state=state,
            report_count=capsule.report_count,
            reviewed=capsule.reviewed,
            created_at=capsule.created_at,
            has_media=capsule.media is not None,
        )


class RevealedView(BaseModel):
    """The readable content of an unlocked capsule."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: Literal[CapsuleState.UNLOCKED] = CapsuleState.UNLOCKED
    capsule_id: str
    owner_id: str
    title: str
    message: str
    media: MediaRef | None = None
    unlock_at: datetime
    visibility: Visibility
    encrypted: bool


class LockedView(BaseModel):
    """
    Answer for a capsule that is still locked.

    Carries the unlock time and title only, never payload or ciphertext.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: Literal[CapsuleState.LOCKED] = CapsuleState.LOCKED
    capsule_id: str
    title: str
    unlock_at: datetime


# =============================================================================
# Identity and Moderation Models
# =============================================================================


class User(BaseModel):
    """A user record as exposed by the user directory."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = ""
    role: Role = Role.USER
    banned: bool = False
    created_at: datetime = Field(default_factory=now_utc)


class Actor(BaseModel):
    """
    The authenticated identity performing an operation.

    Resolved by the caller's identity provider and passed explicitly into
    every access controller call.

    role is only what the caller claims. Moderator rights are always looked
    up in the user directory, so a forged role grants nothing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: str = Field(..., min_length=1)
    role: Role = Role.USER


class CapsuleReport(BaseModel):
    """One entry in the report ledger (unique per capsule and reporter)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    capsule_id: str
    reporter_id: str
    reason: str
    created_at: datetime


class AccessDecision(BaseModel):
    """
    Result of an access check.

    Attributes:
        allowed: Whether the action is permitted
        reason: Human-readable explanation of the decision
        rule_matched: Which access rule caused this decision
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool
    reason: str
    rule_matched: str | None = None

    @classmethod
    def allow(cls, reason: str, rule: str | None = None) -> "AccessDecision":
        """Create an ALLOW decision."""
        return cls(allowed=True, reason=reason, rule_matched=rule)

    @classmethod
    def deny(cls, reason: str, rule: str | None = None) -> "AccessDecision":
        """Create a DENY decision."""
        return cls(allowed=False, reason=reason, rule_matched=rule)


class CapsulePage(BaseModel):
    """A page of the moderation listing."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: list[CapsuleSummary]
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)


class UserPage(BaseModel):
    """A page of the moderation user listing."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: list[User]
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)


class UserDeletion(BaseModel):
    """Outcome of removing a user together with their capsules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: str
    capsules_deleted: int = Field(..., ge=0)


class DailyCount(BaseModel):
    """Number of capsules created or users registered on one UTC day."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    day: date
    count: int = Field(..., ge=0)


class AdminStats(BaseModel):
    """Counters shown on the moderation dashboard."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_users: int = 0
    active_users: int = 0
    banned_users: int = 0
    total_capsules: int = 0
    locked_capsules: int = 0
    unlocked_capsules: int = 0
    reported_capsules: int = 0
    reviewed_capsules: int = 0
    public_capsules: int = 0
    encrypted_capsules: int = 0
    capsule_creations: list[DailyCount] = Field(default_factory=list)
    user_registrations: list[DailyCount] = Field(default_factory=list)


class NotificationEvent(BaseModel):
    """A fire-and-forget event for the external notifier."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: EventKind
    user_id: str
    capsule_id: str | None = None
    occurred_at: datetime = Field(default_factory=now_utc)
    detail: dict[str, Any] = Field(default_factory=dict)
