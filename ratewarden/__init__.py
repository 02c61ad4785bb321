"""Distributed rate limiting with leaky buckets and timed lockouts in Redis."""

from ratewarden.block_for import block, is_blocked
from ratewarden.engine import (
    BucketStore,
    InMemoryBucketStore,
    RedisBucketStore,
    ensure_scripts_loaded,
    get_default_store,
    reset_default_store,
)
from ratewarden.exceptions import (
    ConfigurationError,
    MisconfiguredThrottle,
    RateWardenError,
    ScriptHashMismatch,
    Throttled,
)
from ratewarden.leaky_bucket import BucketState, LeakyBucket
from ratewarden.throttle import Status, Throttle

__version__ = "0.1.0"

__all__ = [
    "Throttle",
    "Status",
    "LeakyBucket",
    "BucketState",
    "block",
    "is_blocked",
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "ensure_scripts_loaded",
    "get_default_store",
    "reset_default_store",
    "RateWardenError",
    "ConfigurationError",
    "MisconfiguredThrottle",
    "ScriptHashMismatch",
    "Throttled",
]
