"""
Pytest configuration and fixtures for TimeCapsule tests.

This module provides shared fixtures used across unit and integration tests:
a temporary store, a controllable clock, a key provider, a seeded user
directory and a recording notifier.
"""

import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

from timecapsule.access import AccessController, build_controller
from timecapsule.config import Settings
from timecapsule.crypto import KeyHandle, StaticKeyProvider
from timecapsule.notify import MemoryNotifier
from timecapsule.schema import Actor, CapsuleCreate, Role, User, Visibility
from timecapsule.store import CapsuleStore
from timecapsule.users import InMemoryUserDirectory

START = datetime(2030, 1, 1, 12, 0, tzinfo=UTC)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FailingNotifier:
    """A notifier whose delivery always blows up."""

    def __init__(self) -> None:
        self.calls = 0

    def notify(self, event) -> None:
        self.calls += 1
        raise RuntimeError("notifier down")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "capsules.db"


@pytest.fixture
def store(db_path: Path) -> Generator[CapsuleStore, None, None]:
    """Create a store on a temporary database."""
    s = CapsuleStore(db_path, timeout_seconds=1.0)
    yield s
    s.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def key() -> KeyHandle:
    return KeyHandle(key_id="test", material=os.urandom(32))


@pytest.fixture
def keys(key: KeyHandle) -> StaticKeyProvider:
    return StaticKeyProvider(key)


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    """Directory with two users, one moderator, one banned user."""
    return InMemoryUserDirectory(
        [
            User(id="alice", name="Alice"),
            User(id="bob", name="Bob"),
            User(id="carol", name="Carol"),
            User(id="mod", name="Moderator", role=Role.ADMIN),
            User(id="mallory", name="Mallory", banned=True),
        ]
    )


@pytest.fixture
def notifier() -> MemoryNotifier:
    return MemoryNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def settings(db_path: Path) -> Settings:
    return Settings(db_path=db_path, store_timeout_seconds=1.0)


@pytest.fixture
def controller(
    store: CapsuleStore,
    directory: InMemoryUserDirectory,
    keys: StaticKeyProvider,
    notifier: MemoryNotifier,
    settings: Settings,
    clock: FixedClock,
) -> AccessController:
    """Fully wired controller over the temporary store."""
    return build_controller(store, directory, keys=keys, notifier=notifier, settings=settings, clock=clock)


@pytest.fixture
def alice() -> Actor:
    return Actor(user_id="alice")


@pytest.fixture
def bob() -> Actor:
    return Actor(user_id="bob")


@pytest.fixture
def carol() -> Actor:
    return Actor(user_id="carol")


@pytest.fixture
def mod() -> Actor:
    return Actor(user_id="mod", role=Role.ADMIN)


@pytest.fixture
def mallory() -> Actor:
    return Actor(user_id="mallory")


def make_request(
    unlock_at: datetime,
    title: str = "Letter",
    message: str = "hello from the past",
    visibility: Visibility = Visibility.PRIVATE,
    encrypted: bool = False,
) -> CapsuleCreate:
    """Build a creation request with sensible defaults."""
    return CapsuleCreate(
        title=title,
        message=message,
        unlock_at=unlock_at,
        visibility=visibility,
        encrypted=encrypted,
    )


@pytest.fixture(name="make_request")
def make_request_fixture():
    """Factory for creation requests."""
    return make_request
