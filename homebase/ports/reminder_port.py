"""Reminder store port — the persistence the trigger scheduler depends on.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from homebase.data.models import Reminder


class ReminderStore(Protocol):
    """Abstract reminder persistence used by the trigger scheduler."""

    def list_due(self, now: datetime) -> list[Reminder]: ...

    def save(self, reminder: Reminder) -> None: ...

    def deactivate(self, reminder: Reminder) -> None: ...
