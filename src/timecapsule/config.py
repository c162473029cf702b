"""
Configuration for TimeCapsule.

Settings are a frozen Pydantic model loaded from YAML, so a deployment can
keep its limits next to its database:

    db_path: ./timecapsule.db
    store_timeout_seconds: 5
    key_env_var: TIMECAPSULE_KEY
    max_title_length: 100
    webhook_url: https://hooks.example.com/timecapsule

Secrets never live in this file. The payload key is read from the
environment variable named by key_env_var.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field


class Settings(BaseModel):
    """
    Runtime limits and collaborator wiring.

    Attributes:
        db_path: SQLite database file
        store_timeout_seconds: Bounded wait for a locked store
        key_env_var: Environment variable holding the base64 payload key
        key_id: Identifier recorded in every envelope
        require_future_unlock: Reject capsules whose unlock time has passed
        max_title_length: Maximum title length in characters
        max_message_bytes: Maximum UTF-8 size of a message
        max_report_reason_length: Maximum report reason length
        max_page_size: Upper bound for moderation page size
        stats_window_days: Days covered by the creations histogram
        webhook_url: Endpoint for lifecycle events (None = no delivery)
        webhook_timeout_seconds: Timeout for one webhook delivery
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: Path = Field(default=Path("timecapsule.db"))
    store_timeout_seconds: float = Field(default=5.0, gt=0, le=60)
    key_env_var: str = Field(default="TIMECAPSULE_KEY", min_length=1)
    key_id: str = Field(default="default", min_length=1)
    require_future_unlock: bool = False
    max_title_length: int = Field(default=100, gt=0)
    max_message_bytes: int = Field(default=1024 * 1024, gt=0)
    max_report_reason_length: int = Field(default=500, gt=0)
    max_page_size: int = Field(default=100, gt=0)
    stats_window_days: int = Field(default=7, gt=0, le=366)
    webhook_url: str | None = None
    webhook_timeout_seconds: float = Field(default=5.0, gt=0, le=60)


def load_config(path: Path | str) -> Settings:
    """
    Load settings from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        pydantic.ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return Settings.model_validate(data or {})


def load_config_from_string(content: str) -> Settings:
    """Load settings from a YAML string."""
    data = yaml.safe_load(content)
    return Settings.model_validate(data or {})
