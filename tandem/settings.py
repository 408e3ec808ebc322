"""
tandem.settings
===============

Configuration settings for the Tandem partnership service.

Database and logging knobs are plain module constants read from the
environment; behavioural options of the lifecycle engine live on the
pydantic :class:`Settings` model so they can also come from a ``.env``
file.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------------
# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Database settings
# ---------------------------------------------------------------------------
DB_FILE = os.environ.get("TANDEM_DB_FILE", BASE_DIR / "tandem.db")
DB_URL = os.environ.get("TANDEM_DB_URL", f"sqlite:///{DB_FILE}")
DB_ECHO = os.environ.get("TANDEM_DB_ECHO", "False").lower() == "true"

# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("TANDEM_LOG_LEVEL", "INFO").upper()


class MessagePolicy(str, Enum):
    """Who may post to a partnership conversation."""
    OPEN = "open"        # any status, terminal included
    ACTIVE = "active"    # pending or active partnerships only


# ---------------------------------------------------------------------------
# Pydantic settings model for the lifecycle engine
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Pydantic model for lifecycle settings, loaded from environment variables."""

    message_policy: MessagePolicy = Field(
        MessagePolicy.OPEN,
        description="Whether messages may be appended to closed partnerships",
    )
    event_source: str = Field(
        "partnership-service",
        description="Source name stamped on every published event",
    )
    sweep_batch_limit: Optional[int] = Field(
        None, ge=1, description="Max partnerships refreshed per sweep (unset = all)"
    )

    model_config = SettingsConfigDict(
        env_prefix="TANDEM_",
        env_file=".env",  # load from .env file if present
        case_sensitive=False,  # case-insensitive environment variables
        extra="ignore",
    )

# Initialize settings
settings = Settings()
