"""
Interaction middleware chain.

Every inbound request runs through an ordered list of middleware before it
reaches its handler. Each unit receives the context and a `next` callable:

    class MyMiddleware(Middleware):
        async def __call__(self, ctx, next):
            if not allowed(ctx):
                return None          # short-circuit: handler never runs
            result = await next()    # rest of the chain, then the handler
            ctx.metadata["seen"] = True
            return result

First registered = outermost. With Logging then RateLimit registered, the
logging unit observes the whole request, including a rate-limit rejection.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator

if TYPE_CHECKING:
    from homebase.core.rate_limiter import RateLimitConfig, RateLimitStore
    from homebase.middleware.context import InteractionContext

logger = logging.getLogger(__name__)

NextHandler = Callable[[], Awaitable[Any]]
Handler = Callable[[], Awaitable[Any]]
MiddlewareFunc = Callable[["InteractionContext", NextHandler], Awaitable[Any]]


class Middleware(ABC):
    """Base class for a unit in the interaction chain.

    A unit may pass through (return `await next()`), wrap (work before and
    after `next()`), or short-circuit (return without calling `next()`).
    Exceptions from downstream propagate unless the unit handles them.
    """

    @abstractmethod
    async def __call__(self, ctx: InteractionContext, next: NextHandler) -> Any:
        ...

    @property
    def name(self) -> str:
        return self.__class__.__name__


class FunctionMiddleware(Middleware):
    """Wraps a plain `async def fn(ctx, next)` as middleware."""

    def __init__(self, func: MiddlewareFunc, name: str | None = None) -> None:
        self._func = func
        self._name = name or func.__name__

    async def __call__(self, ctx: InteractionContext, next: NextHandler) -> Any:
        return await self._func(ctx, next)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(func: MiddlewareFunc) -> FunctionMiddleware:
    """Decorator form of FunctionMiddleware."""
    return FunctionMiddleware(func)


class MiddlewareChain:
    """An ordered list of middleware composed around a terminal handler."""

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []

    def use(self, *middleware: Middleware | MiddlewareFunc) -> MiddlewareChain:
        """Append middleware; plain async functions are wrapped automatically."""
        for mw in middleware:
            if not isinstance(mw, Middleware):
                mw = FunctionMiddleware(mw)
            self._middleware.append(mw)
            logger.debug("Middleware registered: %s", mw.name)
        return self

    def remove(self, name: str) -> bool:
        """Remove every unit with the given name. Returns True if any was removed."""
        before = len(self._middleware)
        self._middleware = [mw for mw in self._middleware if mw.name != name]
        removed = len(self._middleware) < before
        if removed:
            logger.debug("Middleware removed: %s", name)
        return removed

    def clear(self) -> None:
        self._middleware = []

    @property
    def names(self) -> list[str]:
        return [mw.name for mw in self._middleware]

    def build(
        self, handler: Callable[[InteractionContext], Awaitable[Any]],
    ) -> Callable[[InteractionContext], Awaitable[Any]]:
        """Compose the chain around handler into a single `execute(ctx)`.

        The unit list is snapshotted here; later use()/remove() calls do not
        affect an already built executor.
        """
        units = tuple(self._middleware)

        async def execute(ctx: InteractionContext) -> Any:
            async def dispatch(index: int) -> Any:
                if index == len(units):
                    return await handler(ctx)

                unit = units[index]
                called = False

                async def next() -> Any:
                    nonlocal called
                    if called:
                        raise RuntimeError(f"next() called twice by middleware {unit.name}")
                    called = True
                    return await dispatch(index + 1)

                return await unit(ctx, next)

            return await dispatch(0)

        return execute

    async def run(self, ctx: InteractionContext, handler: Handler) -> Any:
        """Run ctx through the chain, ending in a zero-argument handler."""
        return await self.build(lambda _ctx: handler())(ctx)

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middleware)


def build_default_chain(
    store: RateLimitStore,
    limits: dict[str, RateLimitConfig],
    slow_threshold_ms: int = 2000,
    warn_remaining: int = 3,
) -> MiddlewareChain:
    """Logging wraps rate limiting wraps the handler."""
    from homebase.middleware.logging_middleware import LoggingMiddleware
    from homebase.middleware.rate_limit import RateLimitMiddleware

    return MiddlewareChain().use(
        LoggingMiddleware(slow_threshold_ms=slow_threshold_ms),
        RateLimitMiddleware(store, limits, warn_remaining=warn_remaining),
    )
