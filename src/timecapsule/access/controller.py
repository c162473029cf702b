"""
Access Controller for TimeCapsule.

The Access Controller is the single entry point for API layers. Every read
and write of a capsule goes through it.

Design Principles:
    - Explicit identity: every call takes the acting Actor; there is no
      ambient "current user"
    - Fail-closed: an unknown actor, a directory failure or any unexpected
      error during evaluation results in denial
    - Fixed composition: ownership -> ban check -> lifecycle state ->
      visibility -> decryption
    - Stable taxonomy: callers only ever see TimeCapsuleError subclasses

Read policy:
    - Owners may always read; a locked capsule answers with LockedView
    - Other users may read only public capsules that are unlocked
    - Banned users may still read; they may not create, report or delete
"""

import logging
import math
from collections import Counter
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta
from typing import TypeVar

from timecapsule.config import Settings
from timecapsule.crypto import KeyProvider
from timecapsule.errors import (
    CapsuleNotFoundError,
    CorruptPayloadError,
    DecryptionError,
    ForbiddenError,
    ModeratorRequiredError,
    StorageError,
    TimeCapsuleError,
    UserBannedError,
    ValidationError,
)
from timecapsule.lifecycle import Clock, LifecycleEngine
from timecapsule.moderation import ModerationEngine
from timecapsule.notify import Notifier, NullNotifier
from timecapsule.schema import (
    AccessDecision,
    Actor,
    AdminFilter,
    AdminStats,
    Capsule,
    CapsuleCreate,
    CapsulePage,
    CapsuleReport,
    CapsuleSummary,
    DailyCount,
    DeleteOutcome,
    LockedView,
    RevealedView,
    User,
    UserDeletion,
    UserFilter,
    UserPage,
    Visibility,
    ensure_utc,
    now_utc,
)
from timecapsule.store import CapsuleStore
from timecapsule.users import UserDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AccessController:
    """
    Façade composing the lifecycle engine, moderation engine and envelope.

    Usage:
        controller = AccessController(lifecycle, moderation)
        summary = controller.create_capsule(actor, CapsuleCreate(...))
        view = controller.get_capsule(other_actor, summary.id)

    Attributes:
        lifecycle: Lock state, creation and reveal
        moderation: Reports, review, bans and the user directory
    """

    def __init__(self, lifecycle: LifecycleEngine, moderation: ModerationEngine) -> None:
        self.lifecycle = lifecycle
        self.moderation = moderation
        self.store = lifecycle.store
        self.directory = moderation.directory

    # =========================================================================
    # Decisions
    # =========================================================================

    def can_read(self, actor: Actor, capsule: Capsule) -> AccessDecision:
        """Whether actor may read capsule now (LockedView counts as a read for owners)."""
        return self._decide(self._evaluate_read, actor, capsule)

    def can_delete(self, actor: Actor, capsule: Capsule) -> AccessDecision:
        """Whether actor may delete capsule."""
        return self._decide(self._evaluate_delete, actor, capsule)

    def can_moderate(self, actor: Actor) -> AccessDecision:
        """Whether actor may run moderation operations."""
        return self._decide(self._evaluate_moderate, actor)

    def can_write(self, actor: Actor) -> AccessDecision:
        """Whether actor may create or report (known and not banned)."""
        return self._decide(self._evaluate_write, actor)

    def _decide(self, evaluator: Callable[..., AccessDecision], *args: object) -> AccessDecision:
        try:
            return evaluator(*args)
        except Exception as e:
            logger.warning("Access evaluation failed closed: %s", e)
            return AccessDecision.deny("Access evaluation failed", rule="fail_closed")

    def _lookup(self, actor: Actor) -> User | None:
        return self.directory.get_user(actor.user_id)

    def _evaluate_read(self, actor: Actor, capsule: Capsule) -> AccessDecision:
        if actor.user_id == capsule.owner_id:
            return AccessDecision.allow("Actor owns the capsule", rule="owner")

        if self._lookup(actor) is None:
            return AccessDecision.deny("Unknown actor", rule="unknown_actor")

        if not self.lifecycle.is_unlocked(capsule):
            return AccessDecision.deny("Capsule is locked", rule="locked")

        if capsule.visibility != Visibility.PUBLIC:
            return AccessDecision.deny("Capsule is private", rule="private_capsule")

        return AccessDecision.allow("Capsule is public and unlocked", rule="public_unlocked")

    def _evaluate_delete(self, actor: Actor, capsule: Capsule) -> AccessDecision:
        if self.moderation.is_moderator(actor):
            return AccessDecision.allow("Actor is a moderator", rule="moderator")

        if actor.user_id != capsule.owner_id:
            return AccessDecision.deny("Only the owner may delete this capsule", rule="not_owner")

        return self._evaluate_write(actor)

    def _evaluate_moderate(self, actor: Actor) -> AccessDecision:
        if self.moderation.is_moderator(actor):
            return AccessDecision.allow("Actor is a moderator", rule="moderator")
        return AccessDecision.deny("Moderator role required", rule="moderator_only")

    def _evaluate_write(self, actor: Actor) -> AccessDecision:
        user = self._lookup(actor)
        if user is None:
            return AccessDecision.deny("Unknown actor", rule="unknown_actor")
        if user.banned:
            return AccessDecision.deny("Actor is banned", rule="banned_actor")
        return AccessDecision.allow("Actor is active", rule="active_user")

    def _enforce(self, decision: AccessDecision, actor: Actor, capsule_id: str | None = None) -> None:
        if decision.allowed:
            return
        if decision.rule_matched == "banned_actor":
            raise UserBannedError(actor_id=actor.user_id, capsule_id=capsule_id)
        if decision.rule_matched == "moderator_only":
            raise ModeratorRequiredError(actor_id=actor.user_id)
        raise ForbiddenError(
            actor_id=actor.user_id,
            capsule_id=capsule_id,
            reason=decision.reason,
            rule=decision.rule_matched,
        )

    # =========================================================================
    # Error Mapping
    # =========================================================================

    def _guard(self, operation: str, call: Callable[[], T]) -> T:
        """Run a lower-level call, re-mapping anything outside the taxonomy."""
        try:
            return call()
        except DecryptionError as e:
            logger.error("Integrity failure during %s", operation)
            raise CorruptPayloadError(capsule_id=e.capsule_id) from e
        except TimeCapsuleError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure during %s", operation)
            raise StorageError(operation=operation, message="Internal error") from e

    def _load(self, capsule_id: str) -> Capsule:
        capsule = self._guard("get", lambda: self.store.get_by_id(capsule_id))
        if capsule is None:
            raise CapsuleNotFoundError(capsule_id=capsule_id)
        return capsule

    def _summaries(self, capsules: list[Capsule]) -> list[CapsuleSummary]:
        states = self.lifecycle.observe_all(capsules)
        return [CapsuleSummary.from_capsule(c, s) for c, s in zip(capsules, states)]

    # =========================================================================
    # Capsule Operations
    # =========================================================================

    def reveal_for(self, actor: Actor, capsule: Capsule) -> RevealedView | LockedView:
        """
        Read a capsule on behalf of actor.

        Raises:
            ForbiddenError: If actor may not read it (non-owners of locked capsules included)
            CorruptPayloadError: If the encrypted payload fails authentication
        """
        self._enforce(self.can_read(actor, capsule), actor, capsule.id)
        return self._guard("reveal", lambda: self.lifecycle.reveal(capsule, actor.user_id))

    def create_capsule(self, actor: Actor, request: CapsuleCreate) -> CapsuleSummary:
        """Create a capsule owned by actor."""
        self._enforce(self.can_write(actor), actor)
        capsule = self._guard("create", lambda: self.lifecycle.create(actor.user_id, request))
        return CapsuleSummary.from_capsule(capsule, self.lifecycle.state_of(capsule))

    def get_capsule(self, actor: Actor, capsule_id: str) -> RevealedView | LockedView:
        """Load and read a capsule on behalf of actor."""
        return self.reveal_for(actor, self._load(capsule_id))

    def list_owned(self, actor: Actor) -> list[CapsuleSummary]:
        """Actor's own capsules, newest first (metadata only)."""
        capsules = self._guard("list_owned", lambda: self.store.list_by_owner(actor.user_id))
        return self._guard("list_owned", lambda: self._summaries(capsules))

    def list_public(self, actor: Actor) -> list[CapsuleSummary]:
        """Public capsules that are unlocked right now (metadata only)."""
        capsules = self._guard("list_public", self.lifecycle.list_public_unlocked)
        now = self.lifecycle.now()
        return [CapsuleSummary.from_capsule(c, self.lifecycle.state_of(c, now)) for c in capsules]

    def delete_capsule(self, actor: Actor, capsule_id: str) -> DeleteOutcome:
        """
        Delete a capsule as its owner or as a moderator.

        Deleting an id that does not exist returns DeleteOutcome.NOT_FOUND.
        """
        capsule = self._guard("delete", lambda: self.store.get_by_id(capsule_id))
        if capsule is None:
            return DeleteOutcome.NOT_FOUND

        decision = self.can_delete(actor, capsule)
        self._enforce(decision, actor, capsule_id)
        if decision.rule_matched == "moderator":
            return self._guard("delete", lambda: self.moderation.delete(capsule_id, actor))
        return self._guard("delete", lambda: self.store.delete(capsule_id))

    def report_capsule(self, actor: Actor, capsule_id: str, reason: str) -> int:
        """
        Report a capsule actor can currently read.

        Returns:
            report_count after the call
        """
        capsule = self._load(capsule_id)
        self._enforce(self.can_write(actor), actor, capsule_id)
        self._enforce(self.can_read(actor, capsule), actor, capsule_id)
        return self._guard(
            "report",
            lambda: self.moderation.report(capsule_id, actor.user_id, reason),
        )

    # =========================================================================
    # Moderation Operations
    # =========================================================================

    def review_capsule(self, actor: Actor, capsule_id: str) -> CapsuleSummary:
        """Mark a capsule as reviewed (moderators only)."""
        self._enforce(self.can_moderate(actor), actor, capsule_id)
        capsule = self._guard("review", lambda: self.moderation.review(capsule_id, actor))
        return CapsuleSummary.from_capsule(capsule, self.lifecycle.state_of(capsule))

    def list_reports(self, actor: Actor, capsule_id: str) -> list[CapsuleReport]:
        self._enforce(self.can_moderate(actor), actor, capsule_id)
        return self._guard("list_reports", lambda: self.moderation.list_reports(capsule_id, actor))

    def ban_user(self, actor: Actor, user_id: str) -> User:
        """Ban a user from new writes; their published capsules stay visible."""
        self._enforce(self.can_moderate(actor), actor)
        return self._guard("ban_user", lambda: self.moderation.ban_user(user_id, actor))

    def unban_user(self, actor: Actor, user_id: str) -> User:
        self._enforce(self.can_moderate(actor), actor)
        return self._guard("unban_user", lambda: self.moderation.unban_user(user_id, actor))

    def delete_user(self, actor: Actor, user_id: str) -> UserDeletion:
        """
        Remove a user and all of their capsules (moderators only).

        Raises:
            ModeratorRequiredError: If actor is not a moderator
            UserNotFoundError: If the user is unknown
            ForbiddenError: If the target is actor or another admin
        """
        self._enforce(self.can_moderate(actor), actor)
        return self._guard("delete_user", lambda: self.moderation.delete_user(user_id, actor))

    def _check_page(self, page: int, limit: int) -> None:
        max_limit = self.lifecycle.settings.max_page_size
        if page < 1:
            raise ValidationError(field_name="page", message="page must be >= 1")
        if not 1 <= limit <= max_limit:
            raise ValidationError(field_name="limit", message=f"limit must be between 1 and {max_limit}")

    def admin_list_capsules(
        self,
        actor: Actor,
        filter: AdminFilter = AdminFilter.ALL,
        page: int = 1,
        limit: int = 10,
    ) -> CapsulePage:
        """
        Page through every capsule for moderation (metadata only).

        Raises:
            ModeratorRequiredError: If actor is not a moderator
            ValidationError: If page or limit is out of range
        """
        self._enforce(self.can_moderate(actor), actor)
        self._check_page(page, limit)

        now = self.lifecycle.now()
        capsules, total = self._guard(
            "admin_list_capsules",
            lambda: self.store.list_all(filter, now, page=page, limit=limit),
        )
        return CapsulePage(
            items=self._guard("admin_list_capsules", lambda: self._summaries(capsules)),
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        )

    def admin_list_users(
        self,
        actor: Actor,
        filter: UserFilter = UserFilter.ALL,
        page: int = 1,
        limit: int = 10,
        search: str = "",
    ) -> UserPage:
        """
        Page through the user directory, newest registrations first.

        search matches the user id or name, case-insensitively.

        Raises:
            ModeratorRequiredError: If actor is not a moderator
            ValidationError: If page or limit is out of range
        """
        self._enforce(self.can_moderate(actor), actor)
        self._check_page(page, limit)

        users = self._guard("admin_list_users", self.directory.list_users)
        if filter == UserFilter.ACTIVE:
            users = [u for u in users if not u.banned]
        elif filter == UserFilter.BANNED:
            users = [u for u in users if u.banned]
        needle = search.strip().lower()
        if needle:
            users = [u for u in users if needle in u.id.lower() or needle in u.name.lower()]
        users = sorted(users, key=lambda u: u.id)
        users.sort(key=lambda u: u.created_at, reverse=True)

        start = (page - 1) * limit
        return UserPage(
            items=users[start : start + limit],
            page=page,
            limit=limit,
            total=len(users),
            total_pages=math.ceil(len(users) / limit),
        )

    def admin_stats(self, actor: Actor) -> AdminStats:
        """Dashboard counters for moderators."""
        self._enforce(self.can_moderate(actor), actor)
        now = self.lifecycle.now()
        window = self.lifecycle.settings.stats_window_days
        first_day = (now - timedelta(days=window - 1)).date()
        since = datetime.combine(first_day, datetime.min.time(), tzinfo=now.tzinfo)

        counts = self._guard("admin_stats", lambda: self.store.stats(now, since))
        users = self._guard("admin_stats", self.directory.list_users)
        banned = sum(1 for u in users if u.banned)

        registered = self._guard("admin_stats", lambda: [ensure_utc(u.created_at) for u in users])
        registrations = Counter(t.date().isoformat() for t in registered if t >= since)

        return AdminStats(
            total_users=len(users),
            active_users=len(users) - banned,
            banned_users=banned,
            total_capsules=counts["total"],
            locked_capsules=counts["locked"],
            unlocked_capsules=counts["unlocked"],
            reported_capsules=counts["reported"],
            reviewed_capsules=counts["reviewed"],
            public_capsules=counts["public"],
            encrypted_capsules=counts["encrypted"],
            capsule_creations=_daily_series(first_day, window, dict(counts["creations"])),
            user_registrations=_daily_series(first_day, window, registrations),
        )


def _daily_series(first_day: date, days: int, per_day: Mapping[str, int]) -> list[DailyCount]:
    """One entry per day from first_day, zero-filled."""
    series = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        series.append(DailyCount(day=day, count=per_day.get(day.isoformat(), 0)))
    return series


def build_controller(
    store: CapsuleStore,
    directory: UserDirectory,
    keys: KeyProvider | None = None,
    notifier: Notifier | None = None,
    settings: Settings | None = None,
    clock: Clock = now_utc,
) -> AccessController:
    """Wire the engines around one store, directory, notifier and clock."""
    settings = settings or Settings()
    notifier = notifier or NullNotifier()
    lifecycle = LifecycleEngine(store, keys=keys, notifier=notifier, settings=settings, clock=clock)
    moderation = ModerationEngine(store, directory, notifier=notifier, settings=settings, clock=clock)
    return AccessController(lifecycle, moderation)
