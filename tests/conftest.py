"""Shared test fixtures and configuration.

Sets up fake environment variables so homebase.config doesn't sys.exit(),
and provides common fixtures like a temp DB and controllable clocks.
"""

import os

# Patch env vars BEFORE any homebase imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("DEFAULT_REMINDER_CHAT_ID", "")

import pytest


class FakeClock:
    """Monotonic-style clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_reminders.db")


@pytest.fixture
def reminder_db(tmp_db_path):
    """Return a ReminderDB instance backed by a temp file, in UTC."""
    from homebase.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path, tz_name="UTC")
