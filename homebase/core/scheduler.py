"""
Homebase — Reminder Trigger Scheduler.

A coarse polling loop: every tick asks the store for due reminders, delivers
each one, then either retires it (one-shot) or moves its next trigger
forward. Delivery is at-most-once per trigger: a failed send is logged and
not retried, and the reminder still advances.

Ticks never overlap. A tick that fires while the previous one is still
running is skipped, not queued.

This module is provider-agnostic: it depends on the ReminderStore and
NotificationPort protocols, not on specific implementations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from homebase.core.recurrence import compute_next_trigger
from homebase.data.models import RecurrenceKind

if TYPE_CHECKING:
    from homebase.data.models import Reminder
    from homebase.ports.notification_port import NotificationPort
    from homebase.ports.reminder_port import ReminderStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickResult:
    """Outcome of one scheduler tick."""

    due: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: bool = False


def format_reminder_message(reminder: Reminder) -> str:
    return f"⏰ Reminder: {reminder.message}"


class ReminderScheduler:
    """Delivers due reminders and advances their next trigger time."""

    def __init__(
        self,
        store: ReminderStore,
        notifier: NotificationPort,
        tz_name: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._tz_name = tz_name
        self._clock = clock
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def tick(self, now: datetime | None = None) -> TickResult:
        """Run one polling pass. Skips immediately if a pass is in flight."""
        # Check-and-set with no await in between: atomic on the event loop.
        if self._running:
            logger.warning("Reminder tick skipped: previous tick still running")
            return TickResult(skipped=True)
        self._running = True

        try:
            if now is None:
                now = self._clock()
            result = TickResult()

            try:
                due = self._store.list_due(now)
            except Exception as exc:
                logger.error("Reminder tick: failed to load due reminders: %s", exc)
                return result

            result.due = len(due)
            if due:
                logger.info("Processing %d due reminder(s)", len(due))

            for reminder in due:
                if await self._deliver(reminder):
                    result.delivered += 1
                else:
                    result.failed += 1
                self._advance(reminder, now)

            return result
        finally:
            self._running = False

    async def _deliver(self, reminder: Reminder) -> bool:
        """Send one reminder. Returns False on failure; never raises."""
        try:
            await self._notifier.send_message(
                reminder.chat_id, format_reminder_message(reminder),
            )
        except Exception as exc:
            logger.error(
                "Failed to deliver reminder #%d to chat %d: %s",
                reminder.id, reminder.chat_id, exc,
            )
            return False
        logger.info("Reminder #%d delivered to chat %d", reminder.id, reminder.chat_id)
        return True

    def _advance(self, reminder: Reminder, now: datetime) -> None:
        """Retire a one-shot, or reschedule a recurring reminder from now."""
        try:
            if reminder.recurrence is RecurrenceKind.ONCE:
                self._store.deactivate(reminder)
                return

            reminder.next_trigger_at = compute_next_trigger(
                reminder.time_of_day,
                reminder.recurrence,
                reminder.day_of_week,
                self._tz_name,
                now,
            )
            self._store.save(reminder)
            logger.debug(
                "Reminder #%d rescheduled for %s",
                reminder.id, reminder.next_trigger_at.isoformat(),
            )
        except Exception as exc:
            logger.error("Failed to advance reminder #%d: %s", reminder.id, exc)
