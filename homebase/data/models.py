"""
Homebase — Data Models.

Reminders persist in SQLite across bot restarts. Every reminder carries the
absolute instant it should fire next; the trigger scheduler rewrites that
instant each time the reminder fires.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RecurrenceKind(str, Enum):
    """How often a reminder re-fires."""

    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass
class Reminder:
    """A one-shot or recurring reminder delivered to a chat.

    Created via /remind, /daily or /weekly. One-shot reminders are
    deactivated (never deleted) after they fire.
    """

    id: int
    message: str
    time_of_day: str                  # "HH:MM", 24h, in settings.TIMEZONE
    recurrence: RecurrenceKind
    chat_id: int                      # where the reminder is delivered
    user_id: int                      # who created it
    tenant_id: int                    # chat it belongs to
    next_trigger_at: datetime         # aware, UTC
    day_of_week: int | None = None    # 0 = Sunday … 6 = Saturday, weekly only
    active: bool = field(default=True)
