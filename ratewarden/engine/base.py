"""Abstract store interface for the bucket-and-block engine."""

from abc import ABC, abstractmethod

from ratewarden.engine.models import ApplyResult, BucketKeys, PeekResult


class BucketStore(ABC):
    """Abstract base class for bucket stores.

    Every operation must be atomic with respect to all other operations on
    the same keys, and must take the current time from the store's own
    clock, never from the caller.
    """

    @abstractmethod
    async def apply(
        self,
        keys: BucketKeys,
        capacity: float,
        leak_rate: float,
        block_for: float,
        n_tokens: float,
    ) -> ApplyResult:
        """Leak the bucket and put ``n_tokens`` into it in one atomic step.

        Args:
            keys: Store keys of the bucket
            capacity: Maximum bucket level
            leak_rate: Tokens leaked per second
            block_for: Lockout started on overflow, in seconds; 0 disables it
            n_tokens: Tokens to add; 0 only refreshes, negative drains

        Returns:
            ApplyResult with the remaining lockout and the new level
        """
        pass

    @abstractmethod
    async def peek(self, keys: BucketKeys, leak_rate: float) -> PeekResult:
        """Report the leaked level and lockout state without writing."""
        pass

    @abstractmethod
    async def set_block(self, key: str, duration: float) -> None:
        """Set a plain lockout marker that expires after ``duration`` seconds.

        A duration of zero or less removes the marker.
        """
        pass

    @abstractmethod
    async def is_blocked(self, key: str) -> bool:
        """Check whether a plain lockout marker is present."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass
