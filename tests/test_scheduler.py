"""Tests for homebase.core.scheduler — the reminder trigger loop."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from homebase.core.scheduler import ReminderScheduler, TickResult, format_reminder_message
from homebase.data.models import RecurrenceKind, Reminder
from homebase.ports.notification_port import DeliveryError

UTC = timezone.utc
NOW = datetime(2026, 10, 21, 10, 0, 30, tzinfo=UTC)  # Wednesday


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_reminder(
    reminder_id: int = 1,
    recurrence: RecurrenceKind = RecurrenceKind.DAILY,
    time_of_day: str = "10:00",
    day_of_week: int | None = None,
    chat_id: int = 555,
) -> Reminder:
    return Reminder(
        id=reminder_id,
        message=f"reminder {reminder_id}",
        time_of_day=time_of_day,
        recurrence=recurrence,
        day_of_week=day_of_week,
        chat_id=chat_id,
        user_id=12345,
        tenant_id=555,
        next_trigger_at=datetime(2026, 10, 21, 10, 0, tzinfo=UTC),
    )


def _make_store(due: list[Reminder]) -> MagicMock:
    store = MagicMock()
    store.list_due.return_value = due
    return store


# ---------------------------------------------------------------------------
# tick
# ---------------------------------------------------------------------------


class TestTick:
    @pytest.mark.asyncio
    async def test_no_due_reminders(self):
        store = _make_store([])
        notifier = AsyncMock()
        scheduler = ReminderScheduler(store, notifier, "UTC")

        result = await scheduler.tick(NOW)

        assert result == TickResult(due=0, delivered=0, failed=0, skipped=False)
        store.list_due.assert_called_once_with(NOW)
        notifier.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivers_to_reminder_chat(self):
        reminder = _make_reminder(chat_id=777)
        notifier = AsyncMock()
        scheduler = ReminderScheduler(_make_store([reminder]), notifier, "UTC")

        await scheduler.tick(NOW)

        notifier.send_message.assert_awaited_once_with(777, "⏰ Reminder: reminder 1")

    @pytest.mark.asyncio
    async def test_daily_rescheduled_from_tick_time(self):
        reminder = _make_reminder(recurrence=RecurrenceKind.DAILY, time_of_day="10:00")
        store = _make_store([reminder])
        scheduler = ReminderScheduler(store, AsyncMock(), "UTC")

        await scheduler.tick(NOW)

        assert reminder.next_trigger_at == datetime(2026, 10, 22, 10, 0, tzinfo=UTC)
        store.save.assert_called_once_with(reminder)
        store.deactivate.assert_not_called()

    @pytest.mark.asyncio
    async def test_overdue_daily_skips_missed_days(self):
        # Due three days ago; reschedule from now, not from the old due time
        reminder = _make_reminder(recurrence=RecurrenceKind.DAILY, time_of_day="08:00")
        reminder.next_trigger_at = datetime(2026, 10, 18, 8, 0, tzinfo=UTC)
        scheduler = ReminderScheduler(_make_store([reminder]), AsyncMock(), "UTC")

        await scheduler.tick(NOW)

        assert reminder.next_trigger_at == datetime(2026, 10, 22, 8, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_weekly_rescheduled_to_next_week(self):
        reminder = _make_reminder(
            recurrence=RecurrenceKind.WEEKLY, time_of_day="10:00", day_of_week=3,
        )
        scheduler = ReminderScheduler(_make_store([reminder]), AsyncMock(), "UTC")

        await scheduler.tick(NOW)

        assert reminder.next_trigger_at == datetime(2026, 10, 28, 10, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_one_shot_deactivated(self):
        reminder = _make_reminder(recurrence=RecurrenceKind.ONCE)
        store = _make_store([reminder])
        scheduler = ReminderScheduler(store, AsyncMock(), "UTC")

        result = await scheduler.tick(NOW)

        store.deactivate.assert_called_once_with(reminder)
        store.save.assert_not_called()
        assert result.delivered == 1

    @pytest.mark.asyncio
    async def test_uses_clock_when_now_omitted(self):
        store = _make_store([])
        scheduler = ReminderScheduler(store, AsyncMock(), "UTC", clock=lambda: NOW)

        await scheduler.tick()

        store.list_due.assert_called_once_with(NOW)


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_failed_delivery_still_advances_every_reminder(self):
        reminders = [
            _make_reminder(1, RecurrenceKind.DAILY),
            _make_reminder(2, RecurrenceKind.ONCE),
            _make_reminder(3, RecurrenceKind.DAILY),
            _make_reminder(4, RecurrenceKind.ONCE),
        ]
        store = _make_store(reminders)
        notifier = AsyncMock()

        async def send(chat_id, text):
            if "reminder 2" in text:
                raise DeliveryError("chat not found")

        notifier.send_message.side_effect = send
        scheduler = ReminderScheduler(store, notifier, "UTC")

        result = await scheduler.tick(NOW)

        assert result == TickResult(due=4, delivered=3, failed=1, skipped=False)
        assert notifier.send_message.await_count == 4
        assert store.save.call_count == 2
        assert store.deactivate.call_count == 2
        store.deactivate.assert_any_call(reminders[1])

    @pytest.mark.asyncio
    async def test_failed_delivery_is_not_retried(self):
        reminder = _make_reminder(recurrence=RecurrenceKind.ONCE)
        notifier = AsyncMock()
        notifier.send_message.side_effect = Exception("network down")
        store = _make_store([reminder])
        scheduler = ReminderScheduler(store, notifier, "UTC")

        await scheduler.tick(NOW)

        assert notifier.send_message.await_count == 1
        store.deactivate.assert_called_once_with(reminder)

    @pytest.mark.asyncio
    async def test_store_error_on_one_item_does_not_stop_others(self):
        reminders = [_make_reminder(1), _make_reminder(2)]
        store = _make_store(reminders)
        store.save.side_effect = [Exception("database is locked"), None]
        notifier = AsyncMock()
        scheduler = ReminderScheduler(store, notifier, "UTC")

        result = await scheduler.tick(NOW)

        assert notifier.send_message.await_count == 2
        assert store.save.call_count == 2
        assert result.delivered == 2

    @pytest.mark.asyncio
    async def test_list_due_failure_is_contained(self):
        store = MagicMock()
        store.list_due.side_effect = Exception("database is locked")
        scheduler = ReminderScheduler(store, AsyncMock(), "UTC")

        result = await scheduler.tick(NOW)

        assert result.due == 0
        assert scheduler.running is False


class TestNonReentrancy:
    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self):
        release = asyncio.Event()
        entered = asyncio.Event()
        notifier = AsyncMock()

        async def slow_send(chat_id, text):
            entered.set()
            await release.wait()

        notifier.send_message.side_effect = slow_send
        store = _make_store([_make_reminder()])
        scheduler = ReminderScheduler(store, notifier, "UTC")

        first = asyncio.create_task(scheduler.tick(NOW))
        await entered.wait()
        assert scheduler.running is True

        second = await scheduler.tick(NOW)
        assert second.skipped is True
        assert store.list_due.call_count == 1

        release.set()
        first_result = await first
        assert first_result.skipped is False
        assert first_result.delivered == 1
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_next_tick_runs_after_previous_finishes(self):
        store = _make_store([])
        scheduler = ReminderScheduler(store, AsyncMock(), "UTC")

        await scheduler.tick(NOW)
        result = await scheduler.tick(NOW)

        assert result.skipped is False
        assert store.list_due.call_count == 2


class TestFormatReminderMessage:
    def test_format(self):
        assert format_reminder_message(_make_reminder(9)) == "⏰ Reminder: reminder 9"
