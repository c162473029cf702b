"""
User directory adapters.

Ban status and roles come from a directory owned outside the core.
"""

from timecapsule.users.directory import InMemoryUserDirectory, UserDirectory, load_users, save_users

__all__ = [
    "InMemoryUserDirectory",
    "UserDirectory",
    "load_users",
    "save_users",
]
