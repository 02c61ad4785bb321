"""Shared fixtures for ratewarden tests."""

import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import NoScriptError

from ratewarden.core.redis import reset_redis
from ratewarden.engine import InMemoryBucketStore, reset_default_store
from ratewarden.engine.algorithm import apply_tokens, bucket_ttl, leak, remaining_block
from ratewarden.engine.redis_lua import APPLY_SCRIPT, PEEK_SCRIPT


class FakeClock:
    """Manually advanced clock, so time-dependent tests never sleep."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset process-wide stores and clients before and after each test."""
    reset_default_store()
    reset_redis()
    yield
    reset_default_store()
    reset_redis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryBucketStore(clock=clock, ttl_margin=1)


def _fmt(value: float) -> str:
    return "%.6f" % value


@pytest.fixture
def mock_redis(clock):
    """Create a mock Redis client for testing.

    Keys live in ``redis.data`` with expiry times in ``redis.expires``, both
    measured on the ``clock`` fixture. EVALSHA runs a Python rendition of
    the engine scripts, and only after SCRIPT LOAD, like a real server.
    """
    redis = MagicMock()
    redis.data = {}
    redis.expires = {}
    redis.scripts = {}

    def _get(key):
        if key in redis.expires and redis.expires[key] <= clock():
            redis.data.pop(key, None)
            redis.expires.pop(key, None)
        return redis.data.get(key)

    def _set(key, value, ttl):
        redis.data[key] = value
        redis.expires[key] = clock() + ttl

    def _run_apply(keys, argv):
        level_key, updated_key, block_key = keys
        capacity, leak_rate, block_for, n_tokens, margin = (float(a) for a in argv)
        now = clock()

        blocked_until = _get(block_key)
        blocked_for = remaining_block(
            float(blocked_until) if blocked_until is not None else None, now
        )
        if blocked_for > 0:
            current = float(_get(level_key) or 0)
            return [_fmt(blocked_for).encode(), _fmt(current).encode()]

        level = _get(level_key)
        last_updated = _get(updated_key)
        transition = apply_tokens(
            level=float(level) if level is not None else None,
            last_updated=float(last_updated) if last_updated is not None else None,
            now=now,
            capacity=capacity,
            leak_rate=leak_rate,
            block_for=block_for,
            n_tokens=n_tokens,
        )
        ttl = bucket_ttl(capacity, leak_rate, int(margin))
        _set(level_key, _fmt(transition.level), ttl)
        _set(updated_key, _fmt(transition.last_updated), ttl)
        if transition.starts_block:
            _set(block_key, _fmt(transition.block_expires_at), block_for)
        return [
            _fmt(transition.remaining_block_seconds).encode(),
            _fmt(transition.level).encode(),
        ]

    def _run_peek(keys, argv):
        level_key, updated_key, block_key = keys
        leak_rate = float(argv[0])
        now = clock()
        level = float(_get(level_key) or 0)
        blocked_until = _get(block_key)
        blocked_for = remaining_block(
            float(blocked_until) if blocked_until is not None else None, now
        )
        if blocked_for > 0:
            return [1, _fmt(blocked_for).encode(), _fmt(level).encode()]
        last_updated = _get(updated_key)
        last_updated = float(last_updated) if last_updated is not None else now
        return [0, b"0", _fmt(leak(level, last_updated, now, leak_rate)).encode()]

    handlers = {APPLY_SCRIPT: _run_apply, PEEK_SCRIPT: _run_peek}

    async def mock_script_load(source):
        sha = hashlib.sha1(source.encode("utf-8")).hexdigest()
        redis.scripts[sha] = handlers[source]
        return sha

    async def mock_script_exists(*shas):
        return [sha in redis.scripts for sha in shas]

    async def mock_evalsha(sha, num_keys, *args):
        if sha not in redis.scripts:
            raise NoScriptError("No matching script. Please use EVAL.")
        return redis.scripts[sha](list(args[:num_keys]), list(args[num_keys:]))

    async def mock_get(key):
        value = _get(key)
        return value.encode() if isinstance(value, str) else value

    async def mock_set(key, value, px=None, ex=None):
        ttl = px / 1000 if px is not None else ex
        _set(key, str(value), ttl)
        return True

    async def mock_delete(*keys):
        removed = 0
        for key in keys:
            if _get(key) is not None:
                removed += 1
            redis.data.pop(key, None)
            redis.expires.pop(key, None)
        return removed

    async def mock_exists(*keys):
        return sum(1 for key in keys if _get(key) is not None)

    async def mock_pttl(key):
        if _get(key) is None:
            return -2
        return int((redis.expires[key] - clock()) * 1000)

    redis.script_load = AsyncMock(side_effect=mock_script_load)
    redis.script_exists = AsyncMock(side_effect=mock_script_exists)
    redis.evalsha = AsyncMock(side_effect=mock_evalsha)
    redis.get = mock_get
    redis.set = mock_set
    redis.delete = mock_delete
    redis.exists = mock_exists
    redis.pttl = mock_pttl
    redis.aclose = AsyncMock()

    return redis

