"""In-memory bucket store for single-process use and tests."""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from ratewarden.core.config import settings
from ratewarden.core.logging import get_logger
from ratewarden.engine.algorithm import apply_tokens, bucket_ttl, leak, remaining_block
from ratewarden.engine.base import BucketStore
from ratewarden.engine.models import ApplyResult, BucketKeys, PeekResult

logger = get_logger(__name__)


@dataclass
class _Entry:
    """Stored value with TTL tracking."""

    value: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class InMemoryBucketStore(BucketStore):
    """Bucket store keeping keys in a dict guarded by an asyncio.Lock.

    Keys expire like Redis keys do, measured on ``clock``. The state is
    local to the process, so this store does not limit across a fleet.

    Memory bounds:
    - Expired keys are swept on the first write after ``cleanup_interval``
      seconds, or as soon as the store holds more than ``max_entries`` keys
    - If live keys alone exceed ``max_entries``, the least recently written
      20% are evicted
    """

    DEFAULT_MAX_ENTRIES = 100_000
    DEFAULT_CLEANUP_INTERVAL = 60.0

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        ttl_margin: Optional[int] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
    ) -> None:
        self._clock = clock
        self._ttl_margin = (
            settings.bucket_ttl_margin_seconds if ttl_margin is None else ttl_margin
        )
        self._max_entries = max_entries
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = asyncio.Lock()

    def _get(self, key: str, now: float) -> Optional[float]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._data[key]
            return None
        return entry.value

    def _set(self, key: str, value: float, ttl: float, now: float) -> None:
        self._data[key] = _Entry(value=value, expires_at=now + ttl)
        self._data.move_to_end(key)

    def _remove_expired(self, now: float) -> int:
        expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._data[key]
        self._last_cleanup = now
        return len(expired_keys)

    def _enforce_limits(self, now: float) -> None:
        """Sweep expired keys when due, then cap the number of live keys."""
        if (
            now - self._last_cleanup >= self._cleanup_interval
            or len(self._data) > self._max_entries
        ):
            self._remove_expired(now)
        if len(self._data) > self._max_entries:
            # Remove the least recently written 20% of keys
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(remove_count):
                self._data.popitem(last=False)
            logger.warning(
                f"In-memory bucket store exceeded {self._max_entries} keys, "
                f"evicted {remove_count} least recently written"
            )

    async def apply(
        self,
        keys: BucketKeys,
        capacity: float,
        leak_rate: float,
        block_for: float,
        n_tokens: float,
    ) -> ApplyResult:
        async with self._lock:
            now = self._clock()
            level = self._get(keys.level, now)

            blocked_for = remaining_block(self._get(keys.block, now), now)
            if blocked_for > 0:
                return ApplyResult(remaining_block_seconds=blocked_for, level=level or 0.0)

            transition = apply_tokens(
                level=level,
                last_updated=self._get(keys.last_updated, now),
                now=now,
                capacity=capacity,
                leak_rate=leak_rate,
                block_for=block_for or 0,
                n_tokens=n_tokens,
            )
            ttl = bucket_ttl(capacity, leak_rate, self._ttl_margin)
            self._set(keys.level, transition.level, ttl, now)
            self._set(keys.last_updated, transition.last_updated, ttl, now)
            if transition.starts_block:
                self._set(keys.block, transition.block_expires_at, block_for, now)
            self._enforce_limits(now)

            return ApplyResult(
                remaining_block_seconds=transition.remaining_block_seconds,
                level=transition.level,
            )

    async def peek(self, keys: BucketKeys, leak_rate: float) -> PeekResult:
        async with self._lock:
            now = self._clock()
            level = self._get(keys.level, now) or 0.0

            blocked_for = remaining_block(self._get(keys.block, now), now)
            if blocked_for > 0:
                return PeekResult(blocked=True, remaining_block_seconds=blocked_for, level=level)

            last_updated = self._get(keys.last_updated, now)
            if last_updated is None:
                last_updated = now
            return PeekResult(
                blocked=False,
                remaining_block_seconds=0.0,
                level=leak(level, last_updated, now, leak_rate),
            )

    async def set_block(self, key: str, duration: float) -> None:
        async with self._lock:
            now = self._clock()
            if duration <= 0:
                self._data.pop(key, None)
                return
            self._set(key, 1.0, duration, now)
            self._enforce_limits(now)

    async def is_blocked(self, key: str) -> bool:
        async with self._lock:
            return self._get(key, self._clock()) is not None

    async def exists(self, key: str) -> bool:
        """Check whether a key is present and not yet expired."""
        async with self._lock:
            return self._get(key, self._clock()) is not None

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None if it is absent."""
        async with self._lock:
            now = self._clock()
            if self._get(key, now) is None:
                return None
            return self._data[key].expires_at - now

    async def cleanup_expired(self) -> int:
        """Remove all expired keys from the store.

        Returns:
            Number of keys removed.
        """
        async with self._lock:
            return self._remove_expired(self._clock())

    def __len__(self) -> int:
        """Number of stored keys, expired ones included until swept."""
        return len(self._data)

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()
