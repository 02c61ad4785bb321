"""Leaky bucket transitions as pure functions.

This is the reference semantics of the atomic routines. The in-memory store
runs it directly under a lock; the Redis store runs the equivalent Lua in
``redis_lua`` inside the server.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Transition:
    """New bucket state computed by ``apply_tokens``.

    ``block_expires_at`` is set only when this transition starts a lockout.
    """
    level: float
    last_updated: float
    remaining_block_seconds: float
    block_expires_at: Optional[float] = None

    @property
    def starts_block(self) -> bool:
        return self.block_expires_at is not None


def leak(level: float, last_updated: float, now: float, leak_rate: float) -> float:
    """Return the level after leaking from ``last_updated`` until ``now``.

    A clock that moved backwards leaks nothing.
    """
    elapsed = max(0.0, now - last_updated)
    return max(0.0, level - elapsed * leak_rate)


def bucket_ttl(capacity: float, leak_rate: float, margin: int = 1) -> int:
    """Seconds until a full bucket has leaked empty, plus ``margin``."""
    return math.ceil(capacity / leak_rate) + margin


def remaining_block(block_expires_at: Optional[float], now: float) -> float:
    """Lockout seconds left, 0 if there is no running lockout."""
    if block_expires_at is None or block_expires_at <= now:
        return 0.0
    return block_expires_at - now


def apply_tokens(
    level: Optional[float],
    last_updated: Optional[float],
    now: float,
    capacity: float,
    leak_rate: float,
    block_for: float,
    n_tokens: float,
) -> Transition:
    """Leak the bucket, then add ``n_tokens`` to it.

    Missing state counts as an empty bucket updated just now. If the new
    level would exceed ``capacity`` the bucket is capped at capacity and,
    when ``block_for`` is positive, a lockout of ``block_for`` seconds
    starts. Negative token counts drain the bucket but never below zero.

    Callers must check for a running lockout first; a locked bucket is not
    touched at all.
    """
    if level is None:
        level = 0.0
    if last_updated is None:
        last_updated = now

    tentative = max(0.0, leak(level, last_updated, now, leak_rate) + n_tokens)

    if tentative > capacity:
        if block_for > 0:
            return Transition(
                level=float(capacity),
                last_updated=now,
                remaining_block_seconds=float(block_for),
                block_expires_at=now + block_for,
            )
        return Transition(level=float(capacity), last_updated=now, remaining_block_seconds=0.0)

    return Transition(level=tentative, last_updated=now, remaining_block_seconds=0.0)
