"""Logging middleware — start/completion/failure records for every interaction.

Exactly one "completed" or "failed" record is written per request, wherever
the chain stops. Errors are logged and re-raised, never swallowed.
"""

from __future__ import annotations

import logging
import time
import traceback
from typing import TYPE_CHECKING, Any, Callable

from homebase.middleware.chain import Middleware, NextHandler
from homebase.middleware.context import InteractionKind

if TYPE_CHECKING:
    from homebase.middleware.context import InteractionContext

logger = logging.getLogger(__name__)


class LoggingMiddleware(Middleware):
    """Logs each interaction with its duration and flags slow ones."""

    def __init__(
        self,
        slow_threshold_ms: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.slow_threshold_ms = slow_threshold_ms
        self._clock = clock

    @property
    def name(self) -> str:
        return "logging"

    async def __call__(self, ctx: InteractionContext, next: NextHandler) -> Any:
        identity = ctx.identity
        fields = {
            "kind": ctx.kind.value,
            "user_id": identity.user_id,
            "tenant_id": identity.tenant_id,
        }
        if ctx.kind is InteractionKind.COMMAND:
            fields["command"] = ctx.action_id
        elif ctx.action_id is not None:
            fields["action_id"] = ctx.short_action_id

        logger.info(
            "Interaction started: %s user=%s tenant=%s %s",
            ctx.kind.value, identity.user_id, identity.tenant_id,
            fields.get("command") or fields.get("action_id") or "-",
            extra=fields,
        )

        start = self._clock()
        try:
            result = await next()
        except BaseException as exc:
            # Cancellation (shutdown) still gets its terminal record
            duration_ms = round((self._clock() - start) * 1000)
            error = str(exc) or exc.__class__.__name__
            logger.error(
                "Interaction failed: %s user=%s tenant=%s after %dms: %s",
                ctx.kind.value, identity.user_id, identity.tenant_id, duration_ms, error,
                extra={
                    **fields,
                    "duration": f"{duration_ms}ms",
                    "error": error,
                    "stack": traceback.format_exc(),
                },
            )
            raise

        duration_ms = round((self._clock() - start) * 1000)
        ctx.metadata["duration"] = duration_ms
        logger.info(
            "Interaction completed: %s user=%s tenant=%s in %dms",
            ctx.kind.value, identity.user_id, identity.tenant_id, duration_ms,
            extra={**fields, "duration": f"{duration_ms}ms", "success": True},
        )
        if duration_ms > self.slow_threshold_ms:
            logger.warning(
                "Slow interaction: %s user=%s took %dms",
                ctx.kind.value, identity.user_id, duration_ms,
                extra={**fields, "duration": f"{duration_ms}ms"},
            )
        return result
