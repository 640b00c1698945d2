"""
Homebase — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from homebase/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/homebase.db"

    # Reminders — every time of day is interpreted in this zone
    TIMEZONE: str = "America/Los_Angeles"
    DEFAULT_REMINDER_CHAT_ID: int | None = None  # None → the chat the reminder was created in
    REMINDER_POLL_SECONDS: int = 60

    # Interaction middleware
    SLOW_INTERACTION_MS: int = 2000
    RATE_LIMIT_WINDOW_MS: int = 60_000
    RATE_LIMIT_GENERAL: int = 10
    RATE_LIMIT_COMMAND: int = 15
    RATE_LIMIT_TASK_CREATE: int = 5
    RATE_LIMIT_LIST_MODIFY: int = 20
    RATE_LIMIT_REMINDER_MODIFY: int = 10
    RATE_LIMIT_WARN_REMAINING: int = 3

    LOG_LEVEL: str = "INFO"

    @field_validator("DEFAULT_REMINDER_CHAT_ID", mode="before")
    @classmethod
    def parse_chat_id(cls, v: str | int | None) -> int | None:
        if v is None or isinstance(v, int):
            return v
        if isinstance(v, str) and v.strip():
            return int(v.strip())
        return None

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/homebase.db"),
        TIMEZONE=os.getenv("TIMEZONE", "America/Los_Angeles"),
        DEFAULT_REMINDER_CHAT_ID=os.getenv("DEFAULT_REMINDER_CHAT_ID", ""),
        REMINDER_POLL_SECONDS=os.getenv("REMINDER_POLL_SECONDS", "60"),
        SLOW_INTERACTION_MS=os.getenv("SLOW_INTERACTION_MS", "2000"),
        RATE_LIMIT_WINDOW_MS=os.getenv("RATE_LIMIT_WINDOW_MS", "60000"),
        RATE_LIMIT_GENERAL=os.getenv("RATE_LIMIT_GENERAL", "10"),
        RATE_LIMIT_COMMAND=os.getenv("RATE_LIMIT_COMMAND", "15"),
        RATE_LIMIT_TASK_CREATE=os.getenv("RATE_LIMIT_TASK_CREATE", "5"),
        RATE_LIMIT_LIST_MODIFY=os.getenv("RATE_LIMIT_LIST_MODIFY", "20"),
        RATE_LIMIT_REMINDER_MODIFY=os.getenv("RATE_LIMIT_REMINDER_MODIFY", "10"),
        RATE_LIMIT_WARN_REMAINING=os.getenv("RATE_LIMIT_WARN_REMAINING", "3"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from homebase.config import settings
settings = _load_settings()
