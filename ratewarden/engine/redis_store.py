"""Redis-backed bucket store for multi-process deployments."""

import math
from typing import Any, Optional

import redis.asyncio as aioredis

from ratewarden.core.config import settings
from ratewarden.core.logging import get_logger
from ratewarden.core.redis import get_redis
from ratewarden.engine import scripts
from ratewarden.engine.base import BucketStore
from ratewarden.engine.models import ApplyResult, BucketKeys, PeekResult

logger = get_logger(__name__)


def _to_float(value: Any) -> float:
    if isinstance(value, bytes):
        value = value.decode("ascii")
    return float(value)


class RedisBucketStore(BucketStore):
    """Bucket store running the engine as Lua scripts inside Redis.

    Redis key format (per bucket):
    - <prefix>.bucket_level - current level, TTL = time to leak empty
    - <prefix>.last_updated - time of the last write, same TTL
    - <prefix>.block - lockout expiry time, TTL = lockout duration

    Redis errors are not caught here. Whether a broken store means "allow"
    or "deny" is the calling application's decision.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        ttl_margin: Optional[int] = None,
    ) -> None:
        self._redis = redis_client
        self._redis_url = redis_url
        self._owns_client = False
        self._ttl_margin = (
            settings.bucket_ttl_margin_seconds if ttl_margin is None else ttl_margin
        )

    def _get_redis(self) -> Any:
        """Get the Redis client.

        A store given its own URL owns a dedicated client; otherwise the
        process-wide client is shared.
        """
        if self._redis is None:
            if self._redis_url is not None:
                self._redis = aioredis.from_url(
                    self._redis_url,
                    socket_timeout=settings.redis_socket_timeout,
                )
                self._owns_client = True
            else:
                self._redis = get_redis()
        return self._redis

    async def apply(
        self,
        keys: BucketKeys,
        capacity: float,
        leak_rate: float,
        block_for: float,
        n_tokens: float,
    ) -> ApplyResult:
        remaining, level = await scripts.APPLY.invoke(
            self._get_redis(),
            keys=keys.as_list(),
            args=[capacity, leak_rate, block_for or 0, n_tokens, self._ttl_margin],
        )
        return ApplyResult(
            remaining_block_seconds=_to_float(remaining),
            level=_to_float(level),
        )

    async def peek(self, keys: BucketKeys, leak_rate: float) -> PeekResult:
        blocked, remaining, level = await scripts.PEEK.invoke(
            self._get_redis(),
            keys=keys.as_list(),
            args=[leak_rate],
        )
        return PeekResult(
            blocked=bool(int(blocked)),
            remaining_block_seconds=_to_float(remaining),
            level=_to_float(level),
        )

    async def set_block(self, key: str, duration: float) -> None:
        if duration <= 0:
            await self._get_redis().delete(key)
            return
        await self._get_redis().set(key, 1, px=max(1, math.ceil(duration * 1000)))

    async def is_blocked(self, key: str) -> bool:
        return bool(await self._get_redis().exists(key))

    async def ensure_loaded(self) -> dict[str, str]:
        """Install the engine scripts ahead of the first call."""
        return await scripts.ensure_scripts_loaded(self._get_redis())

    async def close(self) -> None:
        """Close the client if this store created it."""
        if self._redis is not None and self._owns_client:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")
        self._redis = None
        self._owns_client = False
