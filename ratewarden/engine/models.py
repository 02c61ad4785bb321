"""Data models for the bucket-and-block engine."""

from dataclasses import dataclass


@dataclass(frozen=True)
class BucketKeys:
    """The three independently expiring store keys of one bucket.

    Attributes:
        level: Current bucket level, as a decimal string
        last_updated: Store timestamp of the last level write
        block: Lockout marker holding the lockout expiry timestamp
    """
    level: str
    last_updated: str
    block: str

    @classmethod
    def for_identity(cls, identity: str) -> "BucketKeys":
        """Keys used by a throttle for a resolved identity."""
        return cls(
            level=f"{identity}.bucket_level",
            last_updated=f"{identity}.last_updated",
            block=f"{identity}.block",
        )

    @classmethod
    def for_prefix(cls, prefix: str) -> "BucketKeys":
        """Keys used by a plain leaky bucket under a caller-chosen prefix."""
        return cls(
            level=f"{prefix}.leaky_bucket.bucket_level",
            last_updated=f"{prefix}.leaky_bucket.last_updated",
            block=f"{prefix}.leaky_bucket.block",
        )

    def as_list(self) -> list[str]:
        return [self.level, self.last_updated, self.block]


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of putting tokens into a bucket.

    Attributes:
        remaining_block_seconds: Lockout time left, 0 when not blocked
        level: Bucket level after the operation
    """
    remaining_block_seconds: float
    level: float

    @property
    def blocked(self) -> bool:
        return self.remaining_block_seconds > 0


@dataclass(frozen=True)
class PeekResult:
    """Read-only view of a bucket at the store's current time."""
    blocked: bool
    remaining_block_seconds: float
    level: float
