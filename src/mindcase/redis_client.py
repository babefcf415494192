"""Redis connection pool.

Redis only holds the rate-limit window counters. It is optional at runtime:
when the pool is missing or Redis stops answering, the rate limiter lets
requests through and ``/ready`` reports the outage. Socket timeouts are kept
short so an unreachable Redis costs each request milliseconds, not seconds.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()

_pool: redis.Redis | None = None


async def init_redis(url: str, timeout_seconds: float = 0.5) -> None:
    """Initialize the Redis connection pool."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
        socket_connect_timeout=timeout_seconds,
        socket_timeout=timeout_seconds,
        health_check_interval=30,
    )


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None
        logger.info("redis_closed")


def get_redis() -> redis.Redis:
    """Get the Redis client.

    Raises:
        RuntimeError: When ``init_redis`` has not run (tests, one-off scripts).
    """
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


async def redis_status() -> str:
    """``ok`` or ``error: <reason>`` for the readiness check."""
    try:
        await get_redis().ping()
    except (RuntimeError, RedisError) as exc:
        return f"error: {exc}"
    return "ok"
