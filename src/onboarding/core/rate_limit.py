"""Fixed-window rate limiting with optional Redis backend.

Limiters are injected through the ``get_rate_limiter`` dependency so handlers
never touch module-level counters directly, and tests can substitute a fake.

Uses Redis for limits shared across processes when REDIS_URL is configured.
Falls back to in-memory counters (per-process) when Redis is unavailable.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.onboarding.core.config import get_settings
from src.onboarding.core.logging import get_logger
from src.onboarding.core.redis import get_redis

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int  # Seconds until the current window closes


class RateLimiter(ABC):
    """Counts hits per key inside fixed windows of ``window_seconds``."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def _window(self) -> tuple[int, int]:
        """Return (window index, seconds until it closes) for the current time."""
        now = self._clock()
        index = int(now // self.window_seconds)
        closes_at = (index + 1) * self.window_seconds
        return index, max(1, math.ceil(closes_at - now))

    def _result(self, count: int, retry_after: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            retry_after=retry_after,
        )

    @abstractmethod
    async def hit(self, key: str) -> RateLimitResult:
        """Record one request for ``key`` and report whether it is allowed."""


class InMemoryRateLimiter(RateLimiter):
    """Per-process counters guarded by an asyncio.Lock."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(limit, window_seconds, clock)
        self._counters: dict[str, tuple[int, int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> RateLimitResult:
        index, retry_after = self._window()
        async with self._lock:
            window, count = self._counters.get(key, (index, 0))
            if window != index:
                count = 0
            count += 1
            self._counters[key] = (index, count)
            # Drop counters from closed windows so the map stays bounded
            if len(self._counters) > 10_000:
                self._counters = {k: v for k, v in self._counters.items() if v[0] == index}
        return self._result(count, retry_after)

    def reset(self) -> None:
        self._counters.clear()


class RedisRateLimiter(RateLimiter):
    """Counters shared across processes via atomic INCR in a MULTI block.

    Each window gets its own key, so expiry only has to outlive the window.
    Redis errors degrade to the in-memory limiter rather than failing requests.
    """

    def __init__(
        self,
        redis: Redis,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
        prefix: str = "ratelimit",
    ):
        super().__init__(limit, window_seconds, clock)
        self.redis = redis
        self.prefix = prefix
        self._fallback = InMemoryRateLimiter(limit, window_seconds, clock)

    async def hit(self, key: str) -> RateLimitResult:
        index, retry_after = self._window()
        redis_key = f"{self.prefix}:{key}:{index}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, self.window_seconds + 1)
                count, _ = await pipe.execute()
        except (RedisError, OSError) as e:
            logger.warning(
                "Redis rate limit check failed, falling back to in-memory",
                error=str(e),
                key=key,
            )
            return await self._fallback.hit(key)
        return self._result(int(count), retry_after)


_limiter: RateLimiter | None = None


async def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency returning the process-wide limiter.

    Redis-backed when available, in-memory otherwise.
    """
    global _limiter
    if _limiter is None:
        settings = get_settings()
        redis = await get_redis()
        if redis is not None:
            logger.info("Rate limiter using Redis backend")
            _limiter = RedisRateLimiter(
                redis, settings.rate_limit_requests, settings.rate_limit_window_seconds
            )
        else:
            logger.info("Rate limiter using in-memory backend (not distributed)")
            _limiter = InMemoryRateLimiter(
                settings.rate_limit_requests, settings.rate_limit_window_seconds
            )
    return _limiter


def reset_rate_limiter() -> None:
    """Drop the cached limiter (tests, Redis reconnects)."""
    global _limiter
    _limiter = None
