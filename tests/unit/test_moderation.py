"""
Unit tests for the moderation engine.

Tests cover:
- Moderator status resolved from the user directory
- Reports (validation, set semantics, events)
- Review and moderator deletion
- Bans and unbans
"""

from datetime import timedelta

import pytest

from timecapsule.config import Settings
from timecapsule.errors import (
    CapsuleNotFoundError,
    ForbiddenError,
    InvalidReportError,
    ModeratorRequiredError,
    UserBannedError,
    UserNotFoundError,
)
from timecapsule.lifecycle import LifecycleEngine
from timecapsule.moderation import ModerationEngine
from timecapsule.notify import MemoryNotifier
from timecapsule.schema import Actor, Capsule, DeleteOutcome, EventKind, Role, Visibility
from timecapsule.store import CapsuleStore
from timecapsule.users import InMemoryUserDirectory


@pytest.fixture
def moderation(
    store: CapsuleStore,
    directory: InMemoryUserDirectory,
    notifier: MemoryNotifier,
    settings: Settings,
    clock,
) -> ModerationEngine:
    return ModerationEngine(store, directory, notifier=notifier, settings=settings, clock=clock)


@pytest.fixture
def capsule(store: CapsuleStore, clock, make_request) -> Capsule:
    lifecycle = LifecycleEngine(store, clock=clock)
    return lifecycle.create("alice", make_request(clock.now - timedelta(hours=1), visibility=Visibility.PUBLIC))


class TestModeratorStatus:
    """Moderator status always comes from the directory."""

    def test_admin_is_moderator(self, moderation: ModerationEngine, mod: Actor) -> None:
        assert moderation.is_moderator(mod)

    def test_claimed_role_is_ignored(self, moderation: ModerationEngine) -> None:
        impostor = Actor(user_id="bob", role=Role.ADMIN)
        assert not moderation.is_moderator(impostor)
        with pytest.raises(ModeratorRequiredError):
            moderation.require_moderator(impostor)

    def test_unknown_user(self, moderation: ModerationEngine) -> None:
        assert not moderation.is_moderator(Actor(user_id="ghost", role=Role.ADMIN))

    def test_banned_admin_is_not_moderator(
        self, moderation: ModerationEngine, directory: InMemoryUserDirectory
    ) -> None:
        directory.set_banned("mod", True)
        assert not moderation.is_moderator(Actor(user_id="mod"))

    def test_require_active_user(self, moderation: ModerationEngine) -> None:
        assert moderation.require_active_user("bob").id == "bob"
        with pytest.raises(UserBannedError):
            moderation.require_active_user("mallory")
        with pytest.raises(ForbiddenError) as exc_info:
            moderation.require_active_user("ghost")
        assert exc_info.value.rule == "unknown_actor"


class TestReport:
    """Tests for report()."""

    def test_report_counts_and_notifies(
        self, moderation: ModerationEngine, notifier: MemoryNotifier, capsule: Capsule
    ) -> None:
        assert moderation.report(capsule.id, "bob", "  spam  ") == 1
        events = notifier.of_kind(EventKind.CAPSULE_REPORTED)
        assert len(events) == 1
        assert events[0].user_id == "bob"
        assert events[0].detail == {"reason": "spam", "report_count": 1}

    def test_repeat_report_is_silent(
        self, moderation: ModerationEngine, notifier: MemoryNotifier, capsule: Capsule
    ) -> None:
        moderation.report(capsule.id, "bob", "spam")
        assert moderation.report(capsule.id, "bob", "spam") == 1
        assert len(notifier.of_kind(EventKind.CAPSULE_REPORTED)) == 1

    def test_failing_notifier_does_not_undo_report(
        self, store: CapsuleStore, directory: InMemoryUserDirectory, failing_notifier, capsule: Capsule, clock
    ) -> None:
        moderation = ModerationEngine(store, directory, notifier=failing_notifier, clock=clock)
        assert moderation.report(capsule.id, "bob", "spam") == 1
        assert failing_notifier.calls == 1
        assert store.get_by_id(capsule.id).report_count == 1

    def test_distinct_reporters(self, moderation: ModerationEngine, capsule: Capsule) -> None:
        moderation.report(capsule.id, "bob", "spam")
        assert moderation.report(capsule.id, "carol", "spam") == 2

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_blank_reason(self, moderation: ModerationEngine, capsule: Capsule, reason: str | None) -> None:
        with pytest.raises(InvalidReportError):
            moderation.report(capsule.id, "bob", reason)

    def test_reason_too_long(self, store: CapsuleStore, directory: InMemoryUserDirectory, capsule: Capsule) -> None:
        moderation = ModerationEngine(store, directory, settings=Settings(max_report_reason_length=3))
        with pytest.raises(InvalidReportError):
            moderation.report(capsule.id, "bob", "spammy")

    def test_banned_reporter(self, moderation: ModerationEngine, store: CapsuleStore, capsule: Capsule) -> None:
        with pytest.raises(UserBannedError):
            moderation.report(capsule.id, "mallory", "spam")
        assert store.get_by_id(capsule.id).report_count == 0

    def test_missing_capsule(self, moderation: ModerationEngine) -> None:
        with pytest.raises(CapsuleNotFoundError):
            moderation.report("nope", "bob", "spam")


class TestModeratorActions:
    """Tests for review, list_reports and delete."""

    def test_review(self, moderation: ModerationEngine, mod: Actor, capsule: Capsule) -> None:
        moderation.report(capsule.id, "bob", "spam")
        reviewed = moderation.review(capsule.id, mod)
        assert reviewed.reviewed is True
        assert reviewed.report_count == 1
        assert reviewed.visibility == Visibility.PUBLIC

    def test_review_requires_moderator(self, moderation: ModerationEngine, bob: Actor, capsule: Capsule) -> None:
        with pytest.raises(ModeratorRequiredError):
            moderation.review(capsule.id, bob)

    def test_list_reports(self, moderation: ModerationEngine, mod: Actor, capsule: Capsule) -> None:
        moderation.report(capsule.id, "bob", "spam")
        reports = moderation.list_reports(capsule.id, mod)
        assert [(r.reporter_id, r.reason) for r in reports] == [("bob", "spam")]

    def test_moderator_delete(self, moderation: ModerationEngine, mod: Actor, capsule: Capsule) -> None:
        assert moderation.delete(capsule.id, mod) == DeleteOutcome.DELETED
        assert moderation.delete(capsule.id, mod) == DeleteOutcome.NOT_FOUND

    def test_delete_requires_moderator(self, moderation: ModerationEngine, bob: Actor, capsule: Capsule) -> None:
        with pytest.raises(ModeratorRequiredError):
            moderation.delete(capsule.id, bob)


class TestBans:
    """Tests for ban_user and unban_user."""

    def test_ban_and_unban(
        self,
        moderation: ModerationEngine,
        directory: InMemoryUserDirectory,
        notifier: MemoryNotifier,
        mod: Actor,
    ) -> None:
        assert moderation.ban_user("bob", mod).banned is True
        assert directory.get_user("bob").banned is True
        assert moderation.unban_user("bob", mod).banned is False

        kinds = [e.kind for e in notifier.events]
        assert kinds == [EventKind.USER_BANNED, EventKind.USER_UNBANNED]
        assert notifier.events[0].detail == {"moderator_id": "mod"}

    def test_failing_notifier_does_not_undo_ban(
        self, store: CapsuleStore, directory: InMemoryUserDirectory, failing_notifier, mod: Actor, clock
    ) -> None:
        moderation = ModerationEngine(store, directory, notifier=failing_notifier, clock=clock)
        assert moderation.ban_user("bob", mod).banned is True
        assert directory.is_banned("bob") is True
        assert failing_notifier.calls == 1

    def test_ban_keeps_capsules(
        self, moderation: ModerationEngine, store: CapsuleStore, mod: Actor, capsule: Capsule
    ) -> None:
        moderation.ban_user("alice", mod)
        assert store.get_by_id(capsule.id) == capsule

    def test_ban_requires_moderator(self, moderation: ModerationEngine, bob: Actor) -> None:
        with pytest.raises(ModeratorRequiredError):
            moderation.ban_user("carol", bob)

    def test_cannot_ban_self(self, moderation: ModerationEngine, mod: Actor) -> None:
        with pytest.raises(ForbiddenError) as exc_info:
            moderation.ban_user("mod", mod)
        assert exc_info.value.rule == "self_ban"

    def test_cannot_ban_admin(
        self, moderation: ModerationEngine, directory: InMemoryUserDirectory, mod: Actor
    ) -> None:
        directory.add(directory.get_user("carol").model_copy(update={"role": Role.ADMIN}))
        with pytest.raises(ForbiddenError) as exc_info:
            moderation.ban_user("carol", mod)
        assert exc_info.value.rule == "admin_ban"

    def test_unknown_target(self, moderation: ModerationEngine, mod: Actor) -> None:
        with pytest.raises(UserNotFoundError):
            moderation.ban_user("ghost", mod)


class TestDeleteUser:
    """Tests for delete_user."""

    def test_deletes_user_and_capsules(
        self,
        moderation: ModerationEngine,
        store: CapsuleStore,
        directory: InMemoryUserDirectory,
        notifier: MemoryNotifier,
        mod: Actor,
        capsule: Capsule,
        clock,
        make_request,
    ) -> None:
        lifecycle = LifecycleEngine(store, clock=clock)
        lifecycle.create("alice", make_request(clock.now + timedelta(days=1)))
        kept = lifecycle.create("bob", make_request(clock.now))

        result = moderation.delete_user("alice", mod)

        assert result.user_id == "alice"
        assert result.capsules_deleted == 2
        assert store.list_by_owner("alice") == []
        assert store.get_by_id(kept.id) == kept
        assert directory.get_user("alice") is None
        events = notifier.of_kind(EventKind.USER_DELETED)
        assert len(events) == 1
        assert events[0].detail == {"moderator_id": "mod", "capsules_deleted": 2}

    def test_user_without_capsules(self, moderation: ModerationEngine, mod: Actor) -> None:
        assert moderation.delete_user("carol", mod).capsules_deleted == 0

    def test_requires_moderator(
        self, moderation: ModerationEngine, directory: InMemoryUserDirectory, bob: Actor, capsule: Capsule
    ) -> None:
        with pytest.raises(ModeratorRequiredError):
            moderation.delete_user("alice", bob)
        assert directory.get_user("alice") is not None

    def test_cannot_delete_self(self, moderation: ModerationEngine, mod: Actor) -> None:
        with pytest.raises(ForbiddenError) as exc_info:
            moderation.delete_user("mod", mod)
        assert exc_info.value.rule == "self_delete"

    def test_cannot_delete_admin(
        self, moderation: ModerationEngine, directory: InMemoryUserDirectory, mod: Actor
    ) -> None:
        directory.add(directory.get_user("carol").model_copy(update={"role": Role.ADMIN}))
        with pytest.raises(ForbiddenError) as exc_info:
            moderation.delete_user("carol", mod)
        assert exc_info.value.rule == "admin_delete"
        assert directory.get_user("carol") is not None

    def test_unknown_target(self, moderation: ModerationEngine, mod: Actor) -> None:
        with pytest.raises(UserNotFoundError):
            moderation.delete_user("ghost", mod)
