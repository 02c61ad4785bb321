"""Tests running the engine's Lua scripts inside fakeredis.

These use the store's own clock (Redis TIME), so assertions on time allow
for the few milliseconds a test takes to run.
"""

import asyncio

import fakeredis
import pytest

from ratewarden.engine import BucketKeys, RedisBucketStore
from ratewarden.engine.scripts import APPLY, PEEK
from ratewarden.exceptions import Throttled
from ratewarden.leaky_bucket import LeakyBucket
from ratewarden.throttle import Throttle


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


@pytest.fixture
def store(redis):
    return RedisBucketStore(redis_client=redis, ttl_margin=1)


def make_throttle(store, **kwargs):
    return Throttle(name="leecher", store=store, **kwargs)


class TestThrottleScenarios:
    @pytest.mark.asyncio
    async def test_throttles_after_limit(self, store, redis):
        t = make_throttle(store, limit=2, period=2, block_for=5)

        assert await t.check() == pytest.approx(1, abs=0.01)
        assert await t.check() == pytest.approx(0, abs=0.01)
        with pytest.raises(Throttled) as exc_info:
            await t.check()

        assert exc_info.value.retry_in_seconds == pytest.approx(5, abs=0.05)
        block_ttl = await redis.pttl(BucketKeys.for_identity(t.identifier).block)
        assert 4900 < block_ttl <= 5000

    @pytest.mark.asyncio
    async def test_remaining_capacity_is_clamped(self, store):
        t = make_throttle(store, limit=8, period=2, block_for=5)

        assert await t.check(n_tokens=0) == 8
        assert await t.check(n_tokens=-2) == 8
        assert await t.check(n_tokens=1) == pytest.approx(7, abs=0.01)

    @pytest.mark.asyncio
    async def test_block_then_release(self, store):
        t = make_throttle(store, limit=4, period=1, block_for=2)

        remaining = [await t.check() for _ in range(4)]
        assert remaining == pytest.approx([3, 2, 1, 0], abs=0.05)
        with pytest.raises(Throttled):
            await t.check()

        await asyncio.sleep(2.1)

        assert await t.check() == pytest.approx(3, abs=0.05)

    @pytest.mark.asyncio
    async def test_negative_tokens_floor_at_zero(self, store):
        t = make_throttle(store, limit=5, period=5, block_for=5)
        await t.check(n_tokens=3)

        assert await t.check(n_tokens=-1_000_000_000) == 5

    @pytest.mark.asyncio
    async def test_lockout_is_not_extended_by_traffic(self, store, redis):
        t = make_throttle(store, limit=1, period=1, block_for=1)
        await t.check()
        with pytest.raises(Throttled):
            await t.check()

        await asyncio.sleep(0.3)
        with pytest.raises(Throttled) as exc_info:
            await t.check(n_tokens=5)

        assert exc_info.value.retry_in_seconds == pytest.approx(0.7, abs=0.1)
        assert await redis.pttl(BucketKeys.for_identity(t.identifier).block) <= 750

    @pytest.mark.asyncio
    async def test_ping_never_triggers_lockout(self, store):
        t = make_throttle(store, limit=2, period=200, block_for=5)
        await t.check(n_tokens=2)

        for _ in range(5):
            await t.check(n_tokens=0)

        assert not (await t.status()).is_blocked

    @pytest.mark.asyncio
    async def test_status_reports_lockout(self, store):
        t = make_throttle(store, limit=1, period=1, block_for=30)
        assert not (await t.status()).is_blocked

        await t.check()
        with pytest.raises(Throttled):
            await t.check()

        status = await t.status()
        assert status.is_blocked
        assert status.remaining_block_seconds == pytest.approx(30, abs=0.1)


class TestLeakyBucketScript:
    @pytest.mark.asyncio
    async def test_keys_expire_once_bucket_could_be_empty(self, store, redis):
        bucket = LeakyBucket("uploads", leak_rate=0.8, bucket_capacity=2, store=store)

        await bucket.put(1)

        # ceil(2 / 0.8) plus a one second margin
        for key in (bucket.leaky_bucket_key, bucket.last_updated_key):
            assert 3000 < await redis.pttl(key) <= 4000

    @pytest.mark.asyncio
    async def test_fill_caps_at_capacity(self, store):
        bucket = LeakyBucket("uploads", leak_rate=0.8, bucket_capacity=2, store=store)

        state = await bucket.put(5)

        assert state.full
        assert state.level == pytest.approx(2)

    @pytest.mark.asyncio
    async def test_state_writes_nothing(self, store, redis):
        bucket = LeakyBucket("uploads", leak_rate=0.8, bucket_capacity=2, store=store)

        state = await bucket.state()

        assert state.level == 0
        assert await redis.keys("*") == []

    @pytest.mark.asyncio
    async def test_overflow_does_not_block(self, store, redis):
        bucket = LeakyBucket("uploads", leak_rate=0.8, bucket_capacity=2, store=store)

        await bucket.put(5)

        assert not await redis.exists("uploads.leaky_bucket.block")


class TestScriptInstallation:
    @pytest.mark.asyncio
    async def test_installs_scripts_on_first_use(self, store, redis):
        assert await redis.script_exists(APPLY.sha, PEEK.sha) == [False, False]

        await make_throttle(store, limit=1, period=1, block_for=1).check()

        assert await redis.script_exists(APPLY.sha) == [True]

    @pytest.mark.asyncio
    async def test_reinstalls_after_script_flush(self, store, redis):
        t = make_throttle(store, limit=5, period=5, block_for=5)
        await t.check()

        await redis.script_flush()
        assert await redis.script_exists(APPLY.sha) == [False]

        assert await t.check() == pytest.approx(3, abs=0.01)
        assert await redis.script_exists(APPLY.sha) == [True]

    @pytest.mark.asyncio
    async def test_server_hash_matches_local_hash(self, store):
        shas = await store.ensure_loaded()

        assert shas == {"bucket_apply": APPLY.sha, "bucket_peek": PEEK.sha}
