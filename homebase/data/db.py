"""
Homebase — Reminder Database.

Reminders persist in SQLite across bot restarts. The trigger scheduler reads
due reminders from here every tick and writes back their next trigger time.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

from homebase.core.recurrence import compute_next_trigger, validate_recurrence
from homebase.data.models import RecurrenceKind, Reminder

logger = logging.getLogger(__name__)

# Longest reminder text accepted at creation
MAX_REMINDER_LENGTH = 200


def _to_db_time(value: datetime) -> str:
    """Store instants as second-precision UTC ISO strings so they sort as text."""
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


class ReminderDB:
    """SQLite-backed storage for reminders. Implements ReminderStore."""

    def __init__(self, db_path: str | None = None, tz_name: str | None = None) -> None:
        if db_path is None or tz_name is None:
            from homebase.config import settings
            db_path = db_path or settings.DATABASE_PATH
            tz_name = tz_name or settings.TIMEZONE

        self._db_path = db_path
        self._tz_name = tz_name
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the reminders table if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    message         TEXT    NOT NULL,
                    time_of_day     TEXT    NOT NULL,
                    recurrence      TEXT    NOT NULL DEFAULT 'once',
                    day_of_week     INTEGER,
                    chat_id         INTEGER NOT NULL,
                    user_id         INTEGER NOT NULL,
                    tenant_id       INTEGER NOT NULL,
                    active          INTEGER NOT NULL DEFAULT 1,
                    next_trigger_at TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_reminders_due
                    ON reminders (active, next_trigger_at)
            """)
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            message=row["message"],
            time_of_day=row["time_of_day"],
            recurrence=RecurrenceKind(row["recurrence"]),
            day_of_week=row["day_of_week"],
            chat_id=row["chat_id"],
            user_id=row["user_id"],
            tenant_id=row["tenant_id"],
            active=bool(row["active"]),
            next_trigger_at=_from_db_time(row["next_trigger_at"]),
        )

    def add_reminder(
        self,
        message: str,
        time_of_day: str,
        recurrence: RecurrenceKind,
        chat_id: int,
        user_id: int,
        tenant_id: int,
        day_of_week: int | None = None,
        target_date: date | None = None,
        now: datetime | None = None,
    ) -> Reminder:
        """Insert a new reminder with its first trigger time already computed."""
        if len(message) > MAX_REMINDER_LENGTH:
            raise ValueError(
                f"Reminder text is too long (max {MAX_REMINDER_LENGTH} characters)"
            )
        validate_recurrence(recurrence, day_of_week)
        if now is None:
            now = datetime.now(timezone.utc)
        next_trigger_at = compute_next_trigger(
            time_of_day, recurrence, day_of_week, self._tz_name, now,
            target_date=target_date,
        )

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reminders
                    (message, time_of_day, recurrence, day_of_week,
                     chat_id, user_id, tenant_id, active, next_trigger_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    message, time_of_day, RecurrenceKind(recurrence).value, day_of_week,
                    chat_id, user_id, tenant_id, _to_db_time(next_trigger_at),
                ),
            )
            reminder_id = cursor.lastrowid

        reminder = Reminder(
            id=reminder_id,
            message=message,
            time_of_day=time_of_day,
            recurrence=RecurrenceKind(recurrence),
            day_of_week=day_of_week,
            chat_id=chat_id,
            user_id=user_id,
            tenant_id=tenant_id,
            active=True,
            next_trigger_at=next_trigger_at.replace(microsecond=0),
        )
        logger.info(
            "Reminder added: #%d %s at %s, next trigger %s",
            reminder_id, reminder.recurrence.value, time_of_day,
            _to_db_time(next_trigger_at),
        )
        return reminder

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        """Fetch a single reminder by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def list_due(self, now: datetime) -> list[Reminder]:
        """Return all active reminders whose next trigger is at or before now."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE active = 1 AND next_trigger_at <= ?
                ORDER BY next_trigger_at
                """,
                (_to_db_time(now),),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def list_for_tenant(self, tenant_id: int, active_only: bool = True) -> list[Reminder]:
        """List a chat's reminders, soonest first."""
        query = "SELECT * FROM reminders WHERE tenant_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY next_trigger_at"
        with self._connect() as conn:
            rows = conn.execute(query, (tenant_id,)).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def save(self, reminder: Reminder) -> None:
        """Persist a reminder's mutable fields (next trigger and active flag)."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE reminders SET next_trigger_at = ?, active = ? WHERE id = ?",
                (_to_db_time(reminder.next_trigger_at), int(reminder.active), reminder.id),
            )
        logger.debug(
            "Reminder #%d saved, next trigger %s",
            reminder.id, _to_db_time(reminder.next_trigger_at),
        )

    def deactivate(self, reminder: Reminder) -> None:
        """Retire a reminder so it never fires again."""
        reminder.active = False
        with self._connect() as conn:
            conn.execute(
                "UPDATE reminders SET active = 0 WHERE id = ?", (reminder.id,),
            )
        logger.info("Reminder #%d deactivated", reminder.id)

    def delete_reminder(self, reminder_id: int, tenant_id: int) -> bool:
        """Soft-delete a reminder owned by tenant_id (set active = False)."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET active = 0 WHERE id = ? AND tenant_id = ? AND active = 1",
                (reminder_id, tenant_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Reminder #%d soft-deleted", reminder_id)
        return deleted
