"""
Moderation Engine for TimeCapsule.

Community reports and moderator actions, independent of the lock state.

Rules:
    - One counted report per (capsule, reporter): the ledger has set
      semantics, so duplicate or racing reports never inflate report_count
    - Review only sets reviewed = true; report_count and visibility are untouched
    - Moderator deletion bypasses ownership but uses the same idempotent delete
    - Banning blocks a user's new writes (create, report, delete); it does
      NOT hide or delete capsules they already published
    - Deleting a user removes their capsules first, then the directory record
    - Moderators can neither ban nor delete themselves or another admin

Moderator status is always taken from the user directory, never from the
role an actor claims.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from timecapsule.config import Settings
from timecapsule.errors import (
    ForbiddenError,
    InvalidReportError,
    ModeratorRequiredError,
    UserBannedError,
    UserNotFoundError,
)
from timecapsule.notify import Notifier, NullNotifier, dispatch
from timecapsule.schema import (
    Actor,
    Capsule,
    CapsuleReport,
    DeleteOutcome,
    EventKind,
    NotificationEvent,
    Role,
    User,
    UserDeletion,
    ensure_utc,
    now_utc,
)
from timecapsule.store import CapsuleStore
from timecapsule.users import UserDirectory

logger = logging.getLogger(__name__)


class ModerationEngine:
    """
    Reporting, review, moderator deletion, bans and user removal.

    Usage:
        moderation = ModerationEngine(store, directory, notifier)
        count = moderation.report(capsule_id, "bob", "spam")
        moderation.review(capsule_id, moderator)
    """

    def __init__(
        self,
        store: CapsuleStore,
        directory: UserDirectory,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.directory = directory
        self.settings = settings or Settings()
        self._notifier = notifier or NullNotifier()
        self._clock = clock

    # =========================================================================
    # Identity Checks
    # =========================================================================

    def is_moderator(self, actor: Actor) -> bool:
        """Whether the directory knows the actor as an admin in good standing."""
        user = self.directory.get_user(actor.user_id)
        return user is not None and user.role == Role.ADMIN and not user.banned

    def require_moderator(self, actor: Actor) -> User:
        """
        Raises:
            ModeratorRequiredError: If the actor is not a moderator
        """
        user = self.directory.get_user(actor.user_id)
        if user is None or user.role != Role.ADMIN or user.banned:
            raise ModeratorRequiredError(actor_id=actor.user_id)
        return user

    def require_active_user(self, user_id: str) -> User:
        """
        Raises:
            ForbiddenError: If the user is unknown
            UserBannedError: If the user is banned
        """
        user = self.directory.get_user(user_id)
        if user is None:
            raise ForbiddenError(actor_id=user_id, reason="unknown user", rule="unknown_actor")
        if user.banned:
            raise UserBannedError(actor_id=user_id)
        return user

    # =========================================================================
    # Reports
    # =========================================================================

    def report(self, capsule_id: str, reporter_id: str, reason: str) -> int:
        """
        Report a capsule.

        Returns:
            report_count after the call (unchanged for a repeat reporter)

        Raises:
            UserBannedError: If the reporter is banned
            InvalidReportError: If the reason is blank or too long
            CapsuleNotFoundError: If the capsule does not exist
        """
        self.require_active_user(reporter_id)
        reason = (reason or "").strip()
        if not reason:
            raise InvalidReportError()
        if len(reason) > self.settings.max_report_reason_length:
            raise InvalidReportError(
                message=f"Report reason longer than {self.settings.max_report_reason_length} characters",
            )

        now = ensure_utc(self._clock())
        count, counted = self.store.add_report(capsule_id, reporter_id, reason, now)
        if counted:
            logger.info("Capsule %s reported by %s (%d reports)", capsule_id, reporter_id, count)
            dispatch(
                self._notifier,
                NotificationEvent(
                    kind=EventKind.CAPSULE_REPORTED,
                    user_id=reporter_id,
                    capsule_id=capsule_id,
                    occurred_at=now,
                    detail={"reason": reason, "report_count": count},
                ),
            )
        return count

    def list_reports(self, capsule_id: str, moderator: Actor) -> list[CapsuleReport]:
        self.require_moderator(moderator)
        return self.store.list_reports(capsule_id)

    # =========================================================================
    # Moderator Actions
    # =========================================================================

    def review(self, capsule_id: str, moderator: Actor) -> Capsule:
        """
        Mark a capsule as reviewed.

        Raises:
            ModeratorRequiredError: If the actor is not a moderator
            CapsuleNotFoundError: If the capsule does not exist
        """
        self.require_moderator(moderator)
        capsule = self.store.mark_reviewed(capsule_id)
        logger.info("Capsule %s reviewed by %s", capsule_id, moderator.user_id)
        return capsule

    def delete(self, capsule_id: str, moderator: Actor) -> DeleteOutcome:
        """Delete any capsule regardless of owner."""
        self.require_moderator(moderator)
        outcome = self.store.delete(capsule_id)
        logger.info("Capsule %s delete by moderator %s: %s", capsule_id, moderator.user_id, outcome.value)
        return outcome

    def ban_user(self, user_id: str, moderator: Actor) -> User:
        """
        Ban a user from new writes. Their existing capsules stay as they are.

        Raises:
            ModeratorRequiredError: If the actor is not a moderator
            UserNotFoundError: If the target is unknown
            ForbiddenError: If the target is the moderator or another admin
        """
        return self._set_banned(user_id, moderator, banned=True)

    def unban_user(self, user_id: str, moderator: Actor) -> User:
        return self._set_banned(user_id, moderator, banned=False)

    def _set_banned(self, user_id: str, moderator: Actor, banned: bool) -> User:
        self._check_target(user_id, moderator, action="ban", done="banned")
        updated = self.directory.set_banned(user_id, banned)
        kind = EventKind.USER_BANNED if banned else EventKind.USER_UNBANNED
        logger.info("User %s %s by %s", user_id, "banned" if banned else "unbanned", moderator.user_id)
        dispatch(
            self._notifier,
            NotificationEvent(
                kind=kind,
                user_id=user_id,
                occurred_at=ensure_utc(self._clock()),
                detail={"moderator_id": moderator.user_id},
            ),
        )
        return updated

    def delete_user(self, user_id: str, moderator: Actor) -> UserDeletion:
        """
        Remove a user and every capsule they own.

        Capsules go first, one at a time, and the directory record last, so an
        interrupted call can simply be repeated.

        Raises:
            ModeratorRequiredError: If the actor is not a moderator
            UserNotFoundError: If the target is unknown
            ForbiddenError: If the target is the moderator or another admin
        """
        self._check_target(user_id, moderator, action="delete", done="deleted")
        deleted = self.store.delete_by_owner(user_id)
        self.directory.remove_user(user_id)
        logger.info("User %s deleted by %s with %d capsules", user_id, moderator.user_id, deleted)
        dispatch(
            self._notifier,
            NotificationEvent(
                kind=EventKind.USER_DELETED,
                user_id=user_id,
                occurred_at=ensure_utc(self._clock()),
                detail={"moderator_id": moderator.user_id, "capsules_deleted": deleted},
            ),
        )
        return UserDeletion(user_id=user_id, capsules_deleted=deleted)

    def _check_target(self, user_id: str, moderator: Actor, action: str, done: str) -> User:
        self.require_moderator(moderator)
        if user_id == moderator.user_id:
            raise ForbiddenError(
                actor_id=moderator.user_id,
                reason=f"moderators cannot {action} themselves",
                rule=f"self_{action}",
            )
        target = self.directory.get_user(user_id)
        if target is None:
            raise UserNotFoundError(user_id=user_id)
        if target.role == Role.ADMIN:
            raise ForbiddenError(
                actor_id=moderator.user_id,
                reason=f"admins cannot be {done}",
                rule=f"admin_{action}",
            )
        return target
