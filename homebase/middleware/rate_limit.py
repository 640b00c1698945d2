"""Rate limit middleware — per-identity, per-category request throttling.

A throttled request gets a best-effort notice and never reaches its handler.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homebase.core.rate_limiter import rate_limit_key
from homebase.middleware.chain import Middleware, NextHandler

if TYPE_CHECKING:
    from homebase.core.rate_limiter import RateLimitConfig, RateLimitStore
    from homebase.middleware.context import InteractionContext

logger = logging.getLogger(__name__)


class RateLimitMiddleware(Middleware):
    """Rejects requests over their category's limit without calling next()."""

    def __init__(
        self,
        store: RateLimitStore,
        limits: dict[str, RateLimitConfig],
        warn_remaining: int = 3,
    ) -> None:
        if "general" not in limits:
            raise ValueError("limits must define a 'general' category")
        self.store = store
        self.limits = limits
        self.warn_remaining = warn_remaining

    @property
    def name(self) -> str:
        return "rate_limit"

    async def __call__(self, ctx: InteractionContext, next: NextHandler) -> Any:
        category = ctx.category if ctx.category in self.limits else "general"
        config = self.limits[category]
        identity = ctx.identity
        key = rate_limit_key(identity.user_id, identity.tenant_id, category)

        if self.store.is_limited(key, config):
            logger.warning(
                "Rate limit exceeded: user=%s tenant=%s category=%s",
                identity.user_id, identity.tenant_id, category,
                extra={
                    "user_id": identity.user_id,
                    "tenant_id": identity.tenant_id,
                    "category": category,
                    "remaining": 0,
                },
            )
            await self._notify_throttled(ctx, f"⏱️ {config.message}")
            return None

        remaining = self.store.get_remaining(key, config)
        ctx.metadata["rate_limit"] = {
            "category": category,
            "remaining": remaining,
            "limit": config.max_requests,
        }
        if remaining < self.warn_remaining:
            logger.warning(
                "User approaching rate limit: user=%s category=%s remaining=%d",
                identity.user_id, category, remaining,
                extra={
                    "user_id": identity.user_id,
                    "tenant_id": identity.tenant_id,
                    "category": category,
                    "remaining": remaining,
                },
            )

        return await next()

    async def _notify_throttled(self, ctx: InteractionContext, text: str) -> None:
        """Try the primary reply, then the fallback; give up quietly after that."""
        if ctx.reply is not None:
            try:
                await ctx.reply(text)
                return
            except Exception as exc:
                logger.debug("Primary reply unavailable for throttle notice: %s", exc)

        if ctx.follow_up is not None:
            try:
                await ctx.follow_up(text)
                return
            except Exception as exc:
                logger.warning("Could not send throttle notice to user %s: %s",
                               ctx.identity.user_id, exc)
