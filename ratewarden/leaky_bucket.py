"""A plain leaky bucket without discriminators or lockouts.

Useful wherever something needs a level that rises with use and drains at a
steady rate, for example tracking how saturated a downstream resource is.
"""

from dataclasses import dataclass
from typing import Optional

from ratewarden.core.config import settings
from ratewarden.engine import BucketKeys, BucketStore, get_default_store
from ratewarden.exceptions import MisconfiguredThrottle


@dataclass(frozen=True)
class BucketState:
    """State of a bucket right after an operation on it.

    No tokens leak between the operation and the creation of this object.

    Attributes:
        level: Bucket level as a float
        full: Whether the bucket was at capacity
    """
    level: float
    full: bool

    def __float__(self) -> float:
        return float(self.level)

    def __int__(self) -> int:
        return int(self.level)


class LeakyBucket:
    """Leaky bucket stored under ``redis_key_prefix``.

    Two keys are written: one for the level and one for the time it was last
    updated. Both expire once the bucket could have leaked empty, so idle
    buckets clean up after themselves.

    Example:
        >>> bucket = LeakyBucket("uploads:user-42", leak_rate=0.8, bucket_capacity=2)
        >>> state = await bucket.put(1)
        >>> state.full
        False
    """

    def __init__(
        self,
        redis_key_prefix: str,
        leak_rate: float,
        bucket_capacity: float,
        store: Optional[BucketStore] = None,
    ):
        """Initialize a leaky bucket.

        Args:
            redis_key_prefix: Prefix of the store keys. Mix in whatever the
                bucket is specific to, such as a user id or an address.
            leak_rate: Tokens leaked per second
            bucket_capacity: Level the bucket is capped at. Putting in more
                tokens than fit leaves the bucket exactly full.
            store: Bucket store, defaults to the process-wide store

        Raises:
            MisconfiguredThrottle: If leak_rate or bucket_capacity is not positive
        """
        if leak_rate <= 0 or bucket_capacity <= 0:
            raise MisconfiguredThrottle("Bucket leak rate and capacity must be positive")
        self._redis_key_prefix = redis_key_prefix
        self._leak_rate = float(leak_rate)
        self._capacity = float(bucket_capacity)
        self._keys = BucketKeys.for_prefix(redis_key_prefix)
        self._store = store

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def leak_rate(self) -> float:
        return self._leak_rate

    @property
    def leaky_bucket_key(self) -> str:
        """Store key of the bucket level.

        The key only holds a value if the bucket was filled recently.
        """
        return self._keys.level

    @property
    def last_updated_key(self) -> str:
        """Store key of the last update time, with the same lifecycle."""
        return self._keys.last_updated

    def _get_store(self) -> BucketStore:
        if self._store is None:
            self._store = get_default_store()
        return self._store

    def _is_full(self, level: float) -> bool:
        return level >= self._capacity * (1 - settings.full_tolerance)

    async def put(self, n_tokens: float) -> BucketState:
        """Put ``n_tokens`` into the bucket; negative values take tokens out.

        Returns:
            The state of the bucket after the operation
        """
        result = await self._get_store().apply(
            self._keys,
            capacity=self._capacity,
            leak_rate=self._leak_rate,
            block_for=0,
            n_tokens=float(n_tokens),
        )
        return BucketState(level=result.level, full=self._is_full(result.level))

    async def state(self) -> BucketState:
        """Return the current state of the bucket without changing it."""
        result = await self._get_store().peek(self._keys, leak_rate=self._leak_rate)
        return BucketState(level=result.level, full=self._is_full(result.level))
