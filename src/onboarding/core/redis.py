"""Optional Redis connection shared by the rate limiter and health check.

Redis is never required: when REDIS_URL is unset or the server cannot be
reached, callers receive None and fall back to in-process state.
"""

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from src.onboarding.core.config import get_settings
from src.onboarding.core.logging import get_logger

logger = get_logger(__name__)

_pool: ConnectionPool | None = None
_redis: Redis | None = None
_connection_attempted: bool = False


async def get_redis() -> Redis | None:
    """Return the shared Redis client, connecting lazily on first use.

    A failed connection is not retried until close_redis() resets the state.
    """
    global _pool, _redis, _connection_attempted

    if _redis is not None:
        return _redis
    if _connection_attempted:
        return None

    _connection_attempted = True
    settings = get_settings()
    if not settings.redis_url:
        logger.info("Redis not configured, using in-process rate limiting")
        return None

    pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_pool_size,
        decode_responses=True,
    )
    client = Redis(connection_pool=pool)
    try:
        await client.ping()  # type: ignore[misc]
    except (RedisError, OSError) as e:
        logger.warning("Redis connection failed, using in-process rate limiting", error=str(e))
        await client.aclose()
        await pool.disconnect()
        return None

    _pool, _redis = pool, client
    logger.info("Redis connected")
    return _redis


async def redis_status() -> str:
    """Describe Redis health for the /health endpoint."""
    client = await get_redis()
    if client is None:
        return "not_configured" if not get_settings().redis_url else "unavailable"
    try:
        await client.ping()  # type: ignore[misc]
        return "healthy"
    except (RedisError, OSError) as e:
        return f"unhealthy: {e}"


async def close_redis() -> None:
    """Close the connection pool. Called during application shutdown."""
    if _redis is not None:
        await _redis.aclose()
        logger.info("Redis connection closed")
    if _pool is not None:
        await _pool.disconnect()
    reset_redis_state()


def reset_redis_state() -> None:
    """Forget the cached client so the next call reconnects. For tests."""
    global _pool, _redis, _connection_attempted
    _redis = None
    _pool = None
    _connection_attempted = False
