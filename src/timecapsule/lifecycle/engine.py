"""
Lifecycle Engine for TimeCapsule.

A capsule is either LOCKED or UNLOCKED. The state is never stored: it is a
pure function of unlock_at and the current time, recomputed on every read.
No background job flips it, so an unlock can never be missed because a
scheduler did not run.

State machine:
    LOCKED --(now >= unlock_at, first observed by any read)--> UNLOCKED

UNLOCKED is terminal. The first read that observes the transition claims the
capsule's one-time unlock flag in the store and emits a single
capsule.unlocked event; concurrent readers lose the claim and emit nothing.

Read contract (reveal):
    1. Locked: LockedView for every requester, owner included
    2. Private and requester is not the owner: ForbiddenError
    3. Encrypted: open the envelope; a failed open is CorruptPayloadError
"""

import logging
from collections.abc import Callable
from datetime import datetime

from timecapsule.config import Settings
from timecapsule.crypto import KeyProvider, open_sealed, seal
from timecapsule.errors import (
    CorruptPayloadError,
    DecryptionError,
    ForbiddenError,
    InvalidCapsuleError,
)
from timecapsule.notify import Notifier, NullNotifier, dispatch
from timecapsule.schema import (
    Capsule,
    CapsuleCreate,
    CapsuleState,
    EventKind,
    LockedView,
    NotificationEvent,
    RevealedView,
    Visibility,
    ensure_utc,
    now_utc,
)
from timecapsule.store import CapsuleStore, generate_id

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def capsule_state(capsule: Capsule, now: datetime) -> CapsuleState:
    """Derive the lock state of a capsule at a given instant."""
    return CapsuleState.UNLOCKED if now >= capsule.unlock_at else CapsuleState.LOCKED


class LifecycleEngine:
    """
    Creates capsules and answers lock-aware reads.

    Usage:
        engine = LifecycleEngine(store, keys, notifier)
        capsule = engine.create("alice", CapsuleCreate(...))
        view = engine.reveal(capsule, "alice")

    Attributes:
        store: Capsule persistence
        settings: Limits applied at creation
    """

    def __init__(
        self,
        store: CapsuleStore,
        keys: KeyProvider | None = None,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
        clock: Clock = now_utc,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Capsule persistence
            keys: Key provider for encrypted capsules (None disables encryption)
            notifier: Receives capsule.unlocked events
            settings: Creation limits
            clock: Source of the current time
        """
        self.store = store
        self.settings = settings or Settings()
        self._keys = keys
        self._notifier = notifier or NullNotifier()
        self._clock = clock

    def now(self) -> datetime:
        """Current time from the injected clock, as UTC."""
        return ensure_utc(self._clock())

    def state_of(self, capsule: Capsule, now: datetime | None = None) -> CapsuleState:
        """Lock state of a capsule, recomputed from unlock_at."""
        return capsule_state(capsule, now or self.now())

    def is_unlocked(self, capsule: Capsule, now: datetime | None = None) -> bool:
        return self.state_of(capsule, now) == CapsuleState.UNLOCKED

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, owner_id: str, request: CapsuleCreate) -> Capsule:
        """
        Validate, seal if requested, and store a new capsule.

        A capsule whose unlock time has already passed starts UNLOCKED and
        never emits an unlock event.

        Raises:
            InvalidCapsuleError: If a limit is exceeded or encryption is unavailable
        """
        now = self.now()
        self._validate(request, now)

        capsule_id = generate_id()
        message: str | None = request.message
        ciphertext = None
        envelope = None
        if request.encrypted:
            if self._keys is None:
                raise InvalidCapsuleError(
                    field_name="encrypted",
                    message="Encryption requested but no key provider is configured",
                )
            ciphertext, envelope = seal(
                request.message.encode("utf-8"),
                self._keys.current_key(),
                associated_data=capsule_id.encode("ascii"),
            )
            message = None

        capsule = Capsule(
            id=capsule_id,
            owner_id=owner_id,
            title=request.title,
            message=message,
            media=request.media,
            ciphertext=ciphertext,
            envelope=envelope,
            unlock_at=request.unlock_at,
            visibility=request.visibility,
            encrypted=request.encrypted,
            created_at=now,
            unlock_notified=request.unlock_at <= now,
        )
        return self.store.create(capsule)

    def _validate(self, request: CapsuleCreate, now: datetime) -> None:
        if len(request.title) > self.settings.max_title_length:
            raise InvalidCapsuleError(
                field_name="title",
                message=f"Title longer than {self.settings.max_title_length} characters",
            )
        if len(request.message.encode("utf-8")) > self.settings.max_message_bytes:
            raise InvalidCapsuleError(
                field_name="message",
                message=f"Message larger than {self.settings.max_message_bytes} bytes",
            )
        if self.settings.require_future_unlock and request.unlock_at <= now:
            raise InvalidCapsuleError(
                field_name="unlock_at",
                message="Unlock time must be in the future",
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def observe(self, capsule: Capsule) -> CapsuleState:
        """
        Compute the state and perform the unlock transition if due.

        Safe to call from any number of concurrent readers: the store lets
        exactly one of them claim the unlock notification.
        """
        now = self.now()
        state = capsule_state(capsule, now)
        if state == CapsuleState.UNLOCKED and not capsule.unlock_notified:
            if self.store.claim_unlock_notification(capsule.id, now):
                dispatch(
                    self._notifier,
                    NotificationEvent(
                        kind=EventKind.CAPSULE_UNLOCKED,
                        user_id=capsule.owner_id,
                        capsule_id=capsule.id,
                        occurred_at=now,
                        detail={"title": capsule.title},
                    ),
                )
        return state

    def observe_all(self, capsules: list[Capsule]) -> list[CapsuleState]:
        return [self.observe(c) for c in capsules]

    def list_public_unlocked(self) -> list[Capsule]:
        """
        Public capsules that are unlocked right now.

        The store query is re-checked against the same instant, so a capsule
        is included only if it is public and its live state is UNLOCKED.
        """
        now = self.now()
        capsules = [
            c
            for c in self.store.list_public_unlocked(now)
            if c.visibility == Visibility.PUBLIC and capsule_state(c, now) == CapsuleState.UNLOCKED
        ]
        self.observe_all(capsules)
        return capsules

    def reveal(self, capsule: Capsule, requester_id: str) -> RevealedView | LockedView:
        """
        Answer a read of a capsule.

        Returns:
            LockedView while locked (for every requester), otherwise RevealedView

        Raises:
            ForbiddenError: If a non-owner asks for an unlocked private capsule
            CorruptPayloadError: If an encrypted payload can not be opened
        """
        if self.observe(capsule) == CapsuleState.LOCKED:
            return LockedView(
                capsule_id=capsule.id,
                title=capsule.title,
                unlock_at=capsule.unlock_at,
            )

        if requester_id != capsule.owner_id and capsule.visibility != Visibility.PUBLIC:
            raise ForbiddenError(
                actor_id=requester_id,
                capsule_id=capsule.id,
                reason="capsule is private",
                rule="private_capsule",
            )

        message = self._open(capsule) if capsule.encrypted else capsule.message or ""
        return RevealedView(
            capsule_id=capsule.id,
            owner_id=capsule.owner_id,
            title=capsule.title,
            message=message,
            media=capsule.media,
            unlock_at=capsule.unlock_at,
            visibility=capsule.visibility,
            encrypted=capsule.encrypted,
        )

    def _open(self, capsule: Capsule) -> str:
        if self._keys is None or capsule.ciphertext is None or capsule.envelope is None:
            logger.error("Capsule %s is encrypted but cannot be opened", capsule.id)
            raise CorruptPayloadError(capsule_id=capsule.id)
        try:
            key = self._keys.key_for(capsule.envelope.key_id)
            plaintext = open_sealed(
                capsule.ciphertext,
                capsule.envelope,
                key,
                associated_data=capsule.id.encode("ascii"),
            )
            return plaintext.decode("utf-8")
        except (DecryptionError, UnicodeDecodeError) as e:
            logger.error("Payload of capsule %s failed integrity check", capsule.id)
            raise CorruptPayloadError(capsule_id=capsule.id) from e
