"""
Homebase — Telegram Bot.

Telegram is the chat interface to Homebase. Every inbound update passes
through the interaction middleware chain (logging, then rate limiting)
before it reaches its handler, and a repeating job drives the reminder
trigger scheduler.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)

from homebase.config import settings
from homebase.core.recurrence import (
    describe_schedule,
    is_target_date,
    parse_target_date,
    parse_time_of_day,
    parse_weekday,
)
from homebase.data.models import RecurrenceKind
from homebase.middleware.context import InteractionContext

if TYPE_CHECKING:
    from homebase.core.rate_limiter import RateLimitStore
    from homebase.data.db import ReminderDB
    from homebase.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Middleware: run every handler through the interaction chain
# ---------------------------------------------------------------------------


def with_middleware(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that runs a handler through the application's middleware chain.

    Without a chain in bot_data (e.g. in isolated handler tests) the handler
    runs directly.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chain = context.bot_data.get("middleware")
        if chain is None:
            return await func(update, context)
        ctx = InteractionContext.from_update(update, context.bot)
        return await chain.run(ctx, lambda: func(update, context))

    return wrapper


# ---------------------------------------------------------------------------
# Reminder argument parsing
# ---------------------------------------------------------------------------


def _take_time(args: list[str]) -> tuple[str, list[str]]:
    """Pop a time off the front of args; "2:30 PM" may span two tokens."""
    if not args:
        raise ValueError("Missing time")
    if len(args) >= 2 and args[1].lower() in ("am", "pm"):
        return parse_time_of_day(f"{args[0]} {args[1]}"), args[2:]
    return parse_time_of_day(args[0]), args[1:]


def _take_message(args: list[str]) -> str:
    message = " ".join(args).strip()
    if not message:
        raise ValueError("Missing reminder message")
    return message


def parse_remind_args(args: list[str], now: datetime) -> dict:
    """Parse `/remind <time> [today|tomorrow|MM-DD-YYYY] <message>`."""
    time_of_day, rest = _take_time(args)
    target_date = None
    if rest and is_target_date(rest[0]):
        target_date = parse_target_date(rest[0], settings.TIMEZONE, now)
        rest = rest[1:]
    return {
        "time_of_day": time_of_day,
        "recurrence": RecurrenceKind.ONCE,
        "day_of_week": None,
        "target_date": target_date,
        "message": _take_message(rest),
    }


def parse_daily_args(args: list[str]) -> dict:
    """Parse `/daily <time> <message>`."""
    time_of_day, rest = _take_time(args)
    return {
        "time_of_day": time_of_day,
        "recurrence": RecurrenceKind.DAILY,
        "day_of_week": None,
        "target_date": None,
        "message": _take_message(rest),
    }


def parse_weekly_args(args: list[str]) -> dict:
    """Parse `/weekly <day> <time> <message>`."""
    if not args:
        raise ValueError("Missing day of week")
    day_of_week = parse_weekday(args[0])
    time_of_day, rest = _take_time(args[1:])
    return {
        "time_of_day": time_of_day,
        "recurrence": RecurrenceKind.WEEKLY,
        "day_of_week": day_of_week,
        "target_date": None,
        "message": _take_message(rest),
    }


_USAGE = {
    RecurrenceKind.ONCE: "Usage: /remind <time> [tomorrow|MM-DD-YYYY] <message>\n"
                         "Example: /remind 2:30pm tomorrow Call the dentist",
    RecurrenceKind.DAILY: "Usage: /daily <time> <message>\nExample: /daily 09:00 Take vitamins",
    RecurrenceKind.WEEKLY: "Usage: /weekly <day> <time> <message>\n"
                           "Example: /weekly monday 18:00 Put the bins out",
}


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@with_middleware
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Homebase*!\n\n"
        "I keep this chat's reminders:\n"
        "• /remind for a one-time reminder\n"
        "• /daily and /weekly for recurring ones\n"
        "• /reminders to list them, /delreminder to remove one\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@with_middleware
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/remind <time> [tomorrow|MM-DD-YYYY] <message> — One-time reminder\n"
        "/daily <time> <message> — Daily reminder\n"
        "/weekly <day> <time> <message> — Weekly reminder\n"
        "/reminders — List this chat's reminders\n"
        "/delreminder <id> — Delete a reminder\n"
        "/help — Show this message\n\n"
        f"Times are in {settings.TIMEZONE}.",
        parse_mode="Markdown",
    )


async def _create_reminder(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    recurrence: RecurrenceKind,
) -> None:
    """Shared logic for /remind, /daily and /weekly."""
    db: ReminderDB = context.bot_data["reminder_db"]
    now = datetime.now(timezone.utc)
    args = list(context.args or [])

    try:
        if recurrence is RecurrenceKind.DAILY:
            parsed = parse_daily_args(args)
        elif recurrence is RecurrenceKind.WEEKLY:
            parsed = parse_weekly_args(args)
        else:
            parsed = parse_remind_args(args, now)
    except ValueError as exc:
        await update.message.reply_text(f"❌ {exc}\n\n{_USAGE[recurrence]}")
        return

    chat_id = settings.DEFAULT_REMINDER_CHAT_ID or update.effective_chat.id
    try:
        reminder = db.add_reminder(
            message=parsed["message"],
            time_of_day=parsed["time_of_day"],
            recurrence=recurrence,
            chat_id=chat_id,
            user_id=update.effective_user.id,
            tenant_id=update.effective_chat.id,
            day_of_week=parsed["day_of_week"],
            target_date=parsed["target_date"],
            now=now,
        )
    except ValueError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    local = reminder.next_trigger_at.astimezone(ZoneInfo(settings.TIMEZONE))
    await update.message.reply_text(
        f"✅ Reminder `{reminder.id}` set {describe_schedule(reminder)}: {reminder.message}\n"
        f"Next: {local:%a %b %d, %H:%M}",
        parse_mode="Markdown",
    )


@with_middleware
async def cmd_remind(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /remind — one-time reminder."""
    await _create_reminder(update, context, RecurrenceKind.ONCE)


@with_middleware
async def cmd_daily(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /daily — daily reminder."""
    await _create_reminder(update, context, RecurrenceKind.DAILY)


@with_middleware
async def cmd_weekly(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /weekly — weekly reminder."""
    await _create_reminder(update, context, RecurrenceKind.WEEKLY)


@with_middleware
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders — list this chat's active reminders with delete buttons."""
    db: ReminderDB = context.bot_data["reminder_db"]
    reminders = db.list_for_tenant(update.effective_chat.id)

    if not reminders:
        await update.message.reply_text("No active reminders. Create one with /remind.")
        return

    tz = ZoneInfo(settings.TIMEZONE)
    lines = ["*Active reminders:*\n"]
    for r in reminders:
        local = r.next_trigger_at.astimezone(tz)
        lines.append(
            f"`{r.id}` — {r.message} ({describe_schedule(r)}, next {local:%a %b %d %H:%M})"
        )
    keyboard = [
        [InlineKeyboardButton(f"🗑 {r.id}: {r.message[:30]}", callback_data=f"reminder_delete:{r.id}")]
        for r in reminders
    ]
    await update.message.reply_text(
        "\n".join(lines),
        parse_mode="Markdown",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


@with_middleware
async def cmd_delreminder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delreminder <id> — soft-delete a reminder in this chat."""
    db: ReminderDB = context.bot_data["reminder_db"]

    args = context.args
    if not args:
        await update.message.reply_text("Usage: /delreminder <id>\nUse /reminders to see IDs.")
        return

    try:
        reminder_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid reminder ID. Use /reminders to see valid IDs.")
        return

    if db.delete_reminder(reminder_id, update.effective_chat.id):
        await update.message.reply_text(f"✅ Reminder `{reminder_id}` deleted.", parse_mode="Markdown")
    else:
        await update.message.reply_text(f"Reminder {reminder_id} not found or already deleted.")


@with_middleware
async def handle_reminder_delete_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the inline button tap to delete a reminder."""
    db: ReminderDB = context.bot_data["reminder_db"]

    query = update.callback_query
    await query.answer()

    reminder_id = int(query.data.split(":")[1])
    if db.delete_reminder(reminder_id, update.effective_chat.id):
        await query.edit_message_text(f"✅ Reminder {reminder_id} deleted.")
    else:
        await query.edit_message_text("Reminder not found or already deleted.")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Last stop for handler errors: log, then tell the user something broke."""
    logger.error("Unhandled error while processing update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_chat is not None:
        try:
            await context.bot.send_message(
                chat_id=update.effective_chat.id,
                text="❌ Something went wrong. Please try again.",
            )
        except Exception as exc:
            logger.error("Failed to send error message to chat %s: %s",
                         update.effective_chat.id, exc)


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


def build_app(
    reminder_db: ReminderDB | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        reminder_db: Reminder store. Defaults to ReminderDB at DATABASE_PATH.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    from homebase.core.rate_limiter import RateLimitStore, rate_limits_from_settings
    from homebase.middleware.chain import build_default_chain

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if reminder_db is None:
        from homebase.data.db import ReminderDB
        reminder_db = ReminderDB()

    if notifier is None:
        from homebase.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    rate_limits = RateLimitStore()

    app.bot_data["reminder_db"] = reminder_db
    app.bot_data["notifier"] = notifier
    app.bot_data["rate_limits"] = rate_limits
    app.bot_data["middleware"] = build_default_chain(
        rate_limits,
        rate_limits_from_settings(settings),
        slow_threshold_ms=settings.SLOW_INTERACTION_MS,
        warn_remaining=settings.RATE_LIMIT_WARN_REMAINING,
    )

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("remind", cmd_remind))
    app.add_handler(CommandHandler("daily", cmd_daily))
    app.add_handler(CommandHandler("weekly", cmd_weekly))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CommandHandler("delreminder", cmd_delreminder))
    app.add_handler(
        CallbackQueryHandler(handle_reminder_delete_callback, pattern=r"^reminder_delete:\d+$")
    )
    app.add_error_handler(on_error)

    _setup_reminder_polling(app, reminder_db, notifier)
    _setup_rate_limit_cleanup(app, rate_limits)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_reminder_polling(
    app: Application,
    reminder_db: ReminderDB,
    notifier: NotificationPort,
) -> None:
    """Register the repeating reminder tick on the job queue."""
    from homebase.core.scheduler import ReminderScheduler

    scheduler = ReminderScheduler(reminder_db, notifier, settings.TIMEZONE)
    app.bot_data["scheduler"] = scheduler

    async def _reminder_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await scheduler.tick()

    app.job_queue.run_repeating(
        _reminder_job_callback,
        interval=settings.REMINDER_POLL_SECONDS,
        first=5,
        name="reminder_tick",
    )

    logger.info(
        "Reminder polling every %ds (%s)",
        settings.REMINDER_POLL_SECONDS,
        settings.TIMEZONE,
    )


def _setup_rate_limit_cleanup(app: Application, rate_limits: RateLimitStore) -> None:
    """Drop expired rate limit buckets once a minute."""
    window_ms = settings.RATE_LIMIT_WINDOW_MS

    async def _cleanup_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        rate_limits.purge_expired(window_ms)

    app.job_queue.run_repeating(_cleanup_job_callback, interval=60, name="rate_limit_cleanup")


def main() -> None:
    """Entry point: build the app and start polling. Logging is set up by main.py."""
    logger.info("Starting Homebase bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
