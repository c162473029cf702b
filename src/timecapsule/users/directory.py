"""
User directory for TimeCapsule.

The directory is owned outside the core: it answers "who is this user, what
role do they have, are they banned". The core only needs the protocol below.
InMemoryUserDirectory is the in-process implementation used by the CLI and
tests; it can be seeded from a YAML file and written back with save_users:

    users:
      - id: alice
        name: Alice
      - id: mod
        name: Moderator
        role: admin
      - id: mallory
        banned: true
"""

import threading
from pathlib import Path
from typing import Protocol

import yaml

from timecapsule.errors import UserNotFoundError
from timecapsule.schema import User


class UserDirectory(Protocol):
    """Read/write access to user records needed by the core."""

    def get_user(self, user_id: str) -> User | None:
        """Look up a user, None if unknown."""
        ...

    def is_banned(self, user_id: str) -> bool:
        """Whether a known user is banned (unknown users are not)."""
        ...

    def set_banned(self, user_id: str, banned: bool) -> User:
        """Set the ban flag and return the updated user."""
        ...

    def remove_user(self, user_id: str) -> User:
        """Remove a user and return the removed record."""
        ...

    def list_users(self) -> list[User]:
        """All known users."""
        ...


class InMemoryUserDirectory:
    """Thread-safe dict-backed user directory."""

    def __init__(self, users: list[User] | None = None) -> None:
        self._users: dict[str, User] = {u.id: u for u in users or []}
        self._lock = threading.Lock()

    def add(self, user: User) -> User:
        """Insert or replace a user record."""
        with self._lock:
            self._users[user.id] = user
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            return self._users.get(user_id)

    def is_banned(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        return user is not None and user.banned

    def set_banned(self, user_id: str, banned: bool) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id=user_id)
            updated = user.model_copy(update={"banned": banned})
            self._users[user_id] = updated
            return updated

    def remove_user(self, user_id: str) -> User:
        with self._lock:
            user = self._users.pop(user_id, None)
        if user is None:
            raise UserNotFoundError(user_id=user_id)
        return user

    def list_users(self) -> list[User]:
        with self._lock:
            return list(self._users.values())


def load_users(path: Path | str) -> InMemoryUserDirectory:
    """
    Load a user directory from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        pydantic.ValidationError: If an entry doesn't match the User schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f) or {}

    return InMemoryUserDirectory([User.model_validate(u) for u in data.get("users", [])])


def save_users(directory: UserDirectory, path: Path | str) -> None:
    """Write a directory back to YAML in the format load_users reads."""
    data = {"users": [u.model_dump(mode="json") for u in directory.list_users()]}
    with Path(path).open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
