"""Timed blocks independent of any bucket.

Handy when an application decides on its own that a caller should be shut
out for a while, for example after a failed CAPTCHA.
"""

from typing import Optional

from ratewarden.engine import BucketStore, get_default_store


def _block_key(id: str) -> str:
    return f"bl:{id}"


async def block(id: str, duration: float, store: Optional[BucketStore] = None) -> None:
    """Block ``id`` for ``duration`` seconds.

    Blocking an id that is already blocked restarts the block, and a
    duration of zero or less lifts it.
    """
    await (store or get_default_store()).set_block(_block_key(id), duration)


async def is_blocked(id: str, store: Optional[BucketStore] = None) -> bool:
    """Check whether ``id`` is currently blocked."""
    return await (store or get_default_store()).is_blocked(_block_key(id))
