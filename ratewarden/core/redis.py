"""Shared Redis client for the stores and helpers that need one."""

from typing import Any, Optional

import redis.asyncio as aioredis

from ratewarden.core.config import settings

_redis_client: Optional[Any] = None


def get_redis(redis_url: Optional[str] = None) -> Any:
    """Get the process-wide Redis client, creating it on first use.

    The client manages its own connection pool, so one instance is shared by
    every throttle and bucket in the process.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            redis_url or settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
        )
    return _redis_client


async def close_redis() -> None:
    """Close the process-wide Redis client if one was created."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def reset_redis() -> None:
    """Forget the process-wide Redis client without closing it (tests)."""
    global _redis_client
    _redis_client = None
