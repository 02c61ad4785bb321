"""Atomic bucket-and-block engine.

The engine keeps a leaky bucket and a lockout marker per identity in a
shared store. Redis is the production store; an in-memory store with the
same semantics serves single-process deployments and tests.
"""

from typing import Optional

from ratewarden.core.config import settings
from ratewarden.core.logging import get_logger
from ratewarden.engine.base import BucketStore
from ratewarden.engine.memory_store import InMemoryBucketStore
from ratewarden.engine.models import ApplyResult, BucketKeys, PeekResult
from ratewarden.engine.redis_store import RedisBucketStore
from ratewarden.engine.scripts import APPLY, PEEK, LuaScript, ensure_scripts_loaded

logger = get_logger(__name__)

__all__ = [
    "ApplyResult",
    "BucketKeys",
    "PeekResult",
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "LuaScript",
    "APPLY",
    "PEEK",
    "ensure_scripts_loaded",
    "get_default_store",
    "reset_default_store",
]

_default_store: Optional[BucketStore] = None


def get_default_store() -> BucketStore:
    """Get the process-wide store, selected by ``settings.redis_enabled``."""
    global _default_store
    if _default_store is None:
        if settings.redis_enabled:
            _default_store = RedisBucketStore()
            logger.debug("Using Redis bucket store")
        else:
            _default_store = InMemoryBucketStore()
            logger.info("Redis disabled, using in-memory bucket store (single process only)")
    return _default_store


def reset_default_store() -> None:
    """Reset the process-wide store."""
    global _default_store
    _default_store = None
