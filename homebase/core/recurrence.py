"""Reminder recurrence calculator — pure business logic.

Computes the next absolute instant a reminder should fire from its time of
day, recurrence kind and weekday, in the configured timezone. Also parses
and validates the user-facing pieces of a recurrence definition.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from homebase.data.models import RecurrenceKind, Reminder


# 0 = Sunday, matching the weekday numbers users pick in /weekly
WEEKDAY_NAMES = (
    "sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday",
)

_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_12H = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$", re.IGNORECASE)
_DATE_MDY = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")


def _split_time(time_of_day: str) -> tuple[int, int]:
    """Split a normalized "HH:MM" string into (hour, minute)."""
    match = _TIME_24H.match(time_of_day.strip())
    if not match:
        raise ValueError(f"Time of day must be HH:MM, got {time_of_day!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return hour, minute


def _sunday_based_weekday(d: date) -> int:
    # date.weekday() is Monday=0; isoweekday() is Monday=1 … Sunday=7
    return d.isoweekday() % 7


def compute_next_trigger(
    time_of_day: str,
    recurrence: RecurrenceKind,
    day_of_week: int | None,
    tz_name: str,
    now: datetime,
    target_date: date | None = None,
) -> datetime:
    """Return the next instant (UTC) a reminder should fire, strictly after now.

    Args:
        time_of_day: "HH:MM" in 24-hour format, interpreted in tz_name.
        recurrence: once, daily or weekly.
        day_of_week: 0 (Sunday) … 6 (Saturday); required for weekly.
        tz_name: IANA zone name, e.g. "America/Los_Angeles".
        now: Timezone-aware reference instant.
        target_date: Calendar date for a one-shot reminder. Without it a
            one-shot behaves like daily: today if still ahead, else tomorrow.

    Day advancement is calendar arithmetic in tz_name, so a 09:00 reminder
    keeps firing at 09:00 local time across DST changes.

    Raises ValueError on malformed input or a target_date already in the past.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    hour, minute = _split_time(time_of_day)
    tz = ZoneInfo(tz_name)
    now_utc = now.astimezone(timezone.utc)
    today = now.astimezone(tz).date()
    at = time(hour, minute)

    def _at(day: date) -> datetime:
        return datetime.combine(day, at, tzinfo=tz).astimezone(timezone.utc)

    recurrence = RecurrenceKind(recurrence)

    if target_date is not None:
        if recurrence is not RecurrenceKind.ONCE:
            raise ValueError("target_date only applies to one-shot reminders")
        trigger = _at(target_date)
        if trigger <= now_utc:
            raise ValueError(f"{target_date.isoformat()} {time_of_day} is already in the past")
        return trigger

    candidate = _at(today)

    if recurrence is RecurrenceKind.WEEKLY:
        validate_recurrence(recurrence, day_of_week)
        delta = (day_of_week - _sunday_based_weekday(today) + 7) % 7
        if delta == 0 and candidate <= now_utc:
            delta = 7
        return _at(today + timedelta(days=delta))

    if candidate <= now_utc:
        return _at(today + timedelta(days=1))
    return candidate


def validate_recurrence(recurrence: RecurrenceKind, day_of_week: int | None) -> None:
    """Reject recurrence definitions the calculator cannot handle."""
    recurrence = RecurrenceKind(recurrence)
    if recurrence is RecurrenceKind.WEEKLY:
        if day_of_week is None:
            raise ValueError("Weekly reminders need a day of the week")
        if not 0 <= day_of_week <= 6:
            raise ValueError(f"Day of week must be 0-6, got {day_of_week}")
    elif day_of_week is not None:
        raise ValueError(f"{recurrence.value} reminders take no day of the week")


# ---------------------------------------------------------------------------
# User input parsing
# ---------------------------------------------------------------------------


def parse_time_of_day(text: str) -> str:
    """Parse "14:30", "2:30pm", "2:30 PM" or "9am" into "HH:MM".

    Raises ValueError on anything else.
    """
    raw = text.strip()
    match = _TIME_24H.match(raw)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Hour/minute out of range: {raw!r}")
        return f"{hour:02d}:{minute:02d}"

    match = _TIME_12H.match(raw)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not (1 <= hour <= 12 and 0 <= minute <= 59):
            raise ValueError(f"Hour/minute out of range: {raw!r}")
        period = match.group(3).lower()
        if period == "pm" and hour != 12:
            hour += 12
        elif period == "am" and hour == 12:
            hour = 0
        return f"{hour:02d}:{minute:02d}"

    raise ValueError(f"Unrecognized time: {raw!r}")


def parse_weekday(text: str) -> int:
    """Parse "mon", "Monday" or "1" into a Sunday-based weekday number."""
    raw = text.strip().lower()
    if raw.isdigit():
        value = int(raw)
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Day of week must be 0-6, got {value}")
    if len(raw) >= 3:
        for index, name in enumerate(WEEKDAY_NAMES):
            if name.startswith(raw):
                return index
    raise ValueError(f"Unrecognized day of week: {text!r}")


def is_target_date(text: str) -> bool:
    """True if text has the shape of a date parse_target_date accepts."""
    raw = text.strip().lower()
    return raw in ("today", "tomorrow") or _DATE_MDY.match(raw) is not None


def parse_target_date(text: str, tz_name: str, now: datetime) -> date:
    """Parse "today", "tomorrow" or "MM-DD-YYYY" relative to now in tz_name."""
    raw = text.strip().lower()
    today = now.astimezone(ZoneInfo(tz_name)).date()
    if raw == "today":
        return today
    if raw == "tomorrow":
        return today + timedelta(days=1)

    match = _DATE_MDY.match(raw)
    if not match:
        raise ValueError(f"Unrecognized date: {text!r} (use MM-DD-YYYY or 'tomorrow')")
    month, day, year = (int(g) for g in match.groups())
    return date(year, month, day)


def describe_schedule(reminder: Reminder) -> str:
    """Human-readable schedule label, e.g. "every Monday at 09:00"."""
    if reminder.recurrence is RecurrenceKind.DAILY:
        return f"daily at {reminder.time_of_day}"
    if reminder.recurrence is RecurrenceKind.WEEKLY and reminder.day_of_week is not None:
        return f"every {WEEKDAY_NAMES[reminder.day_of_week].capitalize()} at {reminder.time_of_day}"
    return f"once at {reminder.time_of_day}"
