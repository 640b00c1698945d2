"""Per-request interaction context passed through the middleware chain.

The interaction kind, its identifying field and its rate-limit category are
derived once, when the context is built from the Telegram update, so the
middleware never re-inspect the raw update.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from telegram import Bot, Update

ReplyFunc = Callable[[str], Awaitable[Any]]

# Longest action id that makes it into logs
_ACTION_ID_LOG_LENGTH = 32


class InteractionKind(str, Enum):
    COMMAND = "command"
    BUTTON = "button"
    INLINE_QUERY = "inline_query"
    VOICE = "voice"
    MESSAGE = "message"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Identity:
    """A user within a tenant (the chat the request came from)."""

    user_id: int
    tenant_id: int | None = None


@dataclass
class InteractionContext:
    """Everything the middleware chain knows about one inbound request."""

    identity: Identity
    kind: InteractionKind = InteractionKind.UNKNOWN
    action_id: str | None = None     # command name or callback data
    category: str | None = None  # derived from kind + action_id when omitted
    reply: ReplyFunc | None = None       # primary reply mechanism
    follow_up: ReplyFunc | None = None   # used when the primary is spent
    start_time: float = field(default_factory=time.monotonic)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.category is None:
            self.category = rate_limit_category(self.kind, self.action_id)

    @property
    def short_action_id(self) -> str | None:
        if self.action_id is None:
            return None
        return self.action_id[:_ACTION_ID_LOG_LENGTH]

    @classmethod
    def from_update(cls, update: Update, bot: Bot | None = None) -> InteractionContext:
        """Build a context from a Telegram update."""
        user = update.effective_user
        chat = update.effective_chat
        # Channel posts carry no user; the posting chat stands in for one
        if user is not None:
            user_id = user.id
        elif chat is not None:
            user_id = chat.id
        else:
            user_id = 0
        identity = Identity(
            user_id=user_id,
            tenant_id=chat.id if chat is not None else None,
        )
        kind, action_id = classify_update(update)

        reply: ReplyFunc | None = None
        query = update.callback_query
        message = update.effective_message
        if query is not None:
            async def reply(text: str) -> Any:
                return await query.answer(text, show_alert=True)
        elif message is not None:
            reply = message.reply_text

        follow_up: ReplyFunc | None = None
        if bot is not None and chat is not None:
            chat_id = chat.id

            async def follow_up(text: str) -> Any:
                return await bot.send_message(chat_id=chat_id, text=text)

        return cls(
            identity=identity,
            kind=kind,
            action_id=action_id,
            reply=reply,
            follow_up=follow_up,
        )


def classify_update(update: Update) -> tuple[InteractionKind, str | None]:
    """Return the interaction kind and its identifying field.

    Exactly one kind matches; anything unrecognized is UNKNOWN.
    """
    if update.callback_query is not None:
        return InteractionKind.BUTTON, update.callback_query.data

    if update.inline_query is not None:
        return InteractionKind.INLINE_QUERY, update.inline_query.query

    message = update.message
    if message is not None:
        text = message.text
        if isinstance(text, str) and text.startswith("/"):
            # "/remind@homebase_bot 9am water" → "remind"
            command = text.split()[0][1:].split("@")[0]
            return InteractionKind.COMMAND, command
        if message.voice is not None:
            return InteractionKind.VOICE, None
        if isinstance(text, str):
            return InteractionKind.MESSAGE, None

    return InteractionKind.UNKNOWN, None


def rate_limit_category(kind: InteractionKind, action_id: str | None) -> str:
    """Map an interaction onto the rate-limit category it counts against."""
    if kind is InteractionKind.COMMAND:
        return "command"

    if kind is InteractionKind.BUTTON and action_id:
        if action_id.startswith("task_add") or "task_create" in action_id:
            return "task_create"
        if action_id.startswith("list_"):
            return "list_modify"
        if action_id.startswith("reminder_"):
            return "reminder_modify"

    return "general"
