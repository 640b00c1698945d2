"""Fixed-window request counters, one bucket per (identity, category) key.

The store is an injectable object rather than module state so the bot, the
tests and any future shared backend can each hold their own instance.

Counting order is "count the request, then judge it": the request that
crosses the threshold is itself counted and rejected, and so is every later
request in the same window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from homebase.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Limit for one category: max_requests per window_ms."""

    max_requests: int
    window_ms: int
    message: str = "You are sending requests too quickly. Please wait a moment."


@dataclass
class _Bucket:
    window_start: float  # clock seconds
    count: int = 0


class RateLimitStore:
    """In-process fixed-window rate limit buckets.

    Each read-modify-write on a bucket happens under one lock, so concurrent
    checks for the same key never race. The config is passed per call;
    different categories can share one store as long as their keys differ.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def _current_bucket(self, key: str, config: RateLimitConfig, now: float) -> _Bucket:
        """Return the live bucket for key, starting a new window if expired.

        Caller must hold the lock.
        """
        bucket = self._buckets.get(key)
        if bucket is None or (now - bucket.window_start) * 1000 > config.window_ms:
            bucket = _Bucket(window_start=now)
            self._buckets[key] = bucket
        return bucket

    def is_limited(self, key: str, config: RateLimitConfig) -> bool:
        """Count one request against key and report whether it is over the limit."""
        with self._lock:
            bucket = self._current_bucket(key, config, self._clock())
            bucket.count += 1
            return bucket.count > config.max_requests

    def get_remaining(self, key: str, config: RateLimitConfig) -> int:
        """Requests left in the current window, without counting one."""
        with self._lock:
            bucket = self._current_bucket(key, config, self._clock())
            return max(0, config.max_requests - bucket.count)

    def reset(self, key: str) -> None:
        """Forget the bucket for a single key."""
        with self._lock:
            self._buckets.pop(key, None)

    def purge_expired(self, window_ms: int) -> int:
        """Drop buckets whose window started more than window_ms ago.

        Returns the number of buckets removed.
        """
        now = self._clock()
        with self._lock:
            expired = [
                key for key, bucket in self._buckets.items()
                if (now - bucket.window_start) * 1000 > window_ms
            ]
            for key in expired:
                del self._buckets[key]
        if expired:
            logger.debug("Purged %d expired rate limit buckets", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop every bucket."""
        with self._lock:
            self._buckets.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


def rate_limit_key(user_id: int, tenant_id: int | None, category: str) -> str:
    """Bucket key for an identity and category; DMs share the "dm" tenant."""
    tenant = tenant_id if tenant_id is not None else "dm"
    return f"{user_id}:{tenant}:{category}"


def rate_limits_from_settings(settings: Settings) -> dict[str, RateLimitConfig]:
    """Build the per-category limit table from settings."""
    window = settings.RATE_LIMIT_WINDOW_MS
    return {
        "general": RateLimitConfig(
            settings.RATE_LIMIT_GENERAL, window,
            "You are sending requests too quickly. Please wait a moment.",
        ),
        "command": RateLimitConfig(
            settings.RATE_LIMIT_COMMAND, window,
            "Too many commands. Please slow down.",
        ),
        "task_create": RateLimitConfig(
            settings.RATE_LIMIT_TASK_CREATE, window,
            f"You can only create {settings.RATE_LIMIT_TASK_CREATE} tasks per minute. Please wait.",
        ),
        "list_modify": RateLimitConfig(
            settings.RATE_LIMIT_LIST_MODIFY, window,
            "Too many list operations. Please wait a moment.",
        ),
        "reminder_modify": RateLimitConfig(
            settings.RATE_LIMIT_REMINDER_MODIFY, window,
            "Too many reminder changes. Please wait a moment.",
        ),
    }
