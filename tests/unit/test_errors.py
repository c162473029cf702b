"""
Unit tests for error hierarchy.

Tests cover:
- Base TimeCapsuleError behavior
- Default codes and messages per category
- Context captured by authorization and storage errors
- Error serialization
"""

import pytest

from timecapsule.errors import (
    ERROR_CAPSULE_NOT_FOUND,
    ERROR_CONFLICT,
    ERROR_CORRUPT_PAYLOAD,
    ERROR_FORBIDDEN,
    ERROR_MODERATOR_REQUIRED,
    ERROR_STORAGE,
    ERROR_STORE_TIMEOUT,
    ERROR_USER_BANNED,
    CapsuleNotFoundError,
    ConflictError,
    CorruptPayloadError,
    DecryptionError,
    ForbiddenError,
    ImmutableFieldError,
    IntegrityError,
    InvalidReportError,
    ModeratorRequiredError,
    NotFoundError,
    StorageError,
    StorageWriteError,
    StoreTimeoutError,
    TimeCapsuleError,
    UserBannedError,
    UserNotFoundError,
    ValidationError,
)


class TestTimeCapsuleError:
    """Tests for base TimeCapsuleError."""

    def test_basic_error(self) -> None:
        """Create a basic error with message."""
        err = TimeCapsuleError(message="Something went wrong", code=9999)
        assert err.message == "Something went wrong"
        assert err.code == 9999
        assert err.suggestion is None
        assert err.context == {}

    def test_str_includes_code_and_suggestion(self) -> None:
        err = TimeCapsuleError(message="Failed", code=1, suggestion="Try again")
        assert str(err) == "[E1] Failed\nSuggestion: Try again"

    def test_is_exception(self) -> None:
        with pytest.raises(TimeCapsuleError):
            raise TimeCapsuleError(message="boom")

    def test_to_dict(self) -> None:
        err = CapsuleNotFoundError(capsule_id="abc")
        data = err.to_dict()
        assert data["error_type"] == "CapsuleNotFoundError"
        assert data["code"] == ERROR_CAPSULE_NOT_FOUND
        assert data["context"] == {"capsule_id": "abc"}


class TestNotFoundErrors:
    """Tests for missing capsule and user errors."""

    def test_capsule_not_found(self) -> None:
        err = CapsuleNotFoundError(capsule_id="abc")
        assert isinstance(err, NotFoundError)
        assert err.code == ERROR_CAPSULE_NOT_FOUND
        assert "abc" in err.message

    def test_user_not_found(self) -> None:
        err = UserNotFoundError(user_id="ghost")
        assert isinstance(err, NotFoundError)
        assert "ghost" in err.message


class TestForbiddenErrors:
    """Tests for authorization errors."""

    def test_forbidden_context(self) -> None:
        err = ForbiddenError(actor_id="bob", capsule_id="c1", reason="capsule is private", rule="private_capsule")
        assert err.code == ERROR_FORBIDDEN
        assert err.message == "Forbidden: capsule is private"
        assert err.context["actor_id"] == "bob"
        assert err.context["rule"] == "private_capsule"

    def test_banned_is_forbidden(self) -> None:
        err = UserBannedError(actor_id="mallory")
        assert isinstance(err, ForbiddenError)
        assert err.code == ERROR_USER_BANNED
        assert err.rule == "banned_actor"

    def test_moderator_required(self) -> None:
        err = ModeratorRequiredError(actor_id="bob")
        assert isinstance(err, ForbiddenError)
        assert err.code == ERROR_MODERATOR_REQUIRED
        assert err.rule == "moderator_only"


class TestIntegrityErrors:
    """Integrity errors never carry payload details."""

    def test_decryption_error(self) -> None:
        err = DecryptionError()
        assert isinstance(err, IntegrityError)
        assert err.message

    def test_corrupt_payload(self) -> None:
        err = CorruptPayloadError(capsule_id="c1")
        assert err.code == ERROR_CORRUPT_PAYLOAD
        assert err.message == "Capsule payload is unavailable"
        assert err.context["capsule_id"] == "c1"


class TestStorageErrors:
    """Tests for concurrency and storage errors."""

    def test_conflict(self) -> None:
        err = ConflictError(capsule_id="c1", expected_version=1, actual_version=2)
        assert err.code == ERROR_CONFLICT
        assert err.suggestion
        assert err.context["actual_version"] == 2

    def test_store_timeout(self) -> None:
        err = StoreTimeoutError(operation="add_report", timeout_seconds=1.5)
        assert isinstance(err, StorageError)
        assert err.code == ERROR_STORE_TIMEOUT
        assert err.context == {"operation": "add_report", "timeout_seconds": 1.5}
        assert "1.5" in err.message

    def test_write_error(self) -> None:
        err = StorageWriteError(operation="create", underlying_error="disk full")
        assert "disk full" in err.message
        assert err.context["operation"] == "create"

    def test_base_storage_error_has_code(self) -> None:
        err = StorageError(operation="reveal", message="Internal error")
        assert err.code == ERROR_STORAGE
        assert str(err) == "[E4000] Internal error"


class TestValidationErrors:
    def test_immutable_field(self) -> None:
        err = ImmutableFieldError(field_name="unlock_at")
        assert isinstance(err, ValidationError)
        assert "unlock_at" in err.message

    def test_invalid_report_defaults_to_reason(self) -> None:
        err = InvalidReportError()
        assert err.field_name == "reason"
        assert err.context["field"] == "reason"
