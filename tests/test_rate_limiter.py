import pytest

from app.modules.quotechat.services.rate_limiter import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
)
from fakes import FakeClock, FakeRedis


@pytest.mark.asyncio
async def test_memory_limiter_blocks_after_max_and_resets():
    clock = FakeClock()
    limiter = InMemoryRateLimiter("chat", max_requests=3, window_seconds=60, clock=clock)

    results = [await limiter.check("1.2.3.4") for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].retry_after(now=clock.now) == 60

    clock.now = 61
    assert (await limiter.check("1.2.3.4")).allowed


@pytest.mark.asyncio
async def test_memory_limiter_tracks_clients_separately():
    limiter = InMemoryRateLimiter("chat", max_requests=1, window_seconds=60, clock=FakeClock())
    assert (await limiter.check("a")).allowed
    assert not (await limiter.check("a")).allowed
    assert (await limiter.check("b")).allowed


@pytest.mark.asyncio
async def test_redis_limiter_counts_with_incr_and_expire():
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis, "recover", max_requests=2, window_seconds=60, clock=lambda: 1000.0)

    first = await limiter.check("ip")
    second = await limiter.check("ip")
    third = await limiter.check("ip")

    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert redis.counters["ratelimit:recover:ip"] == 3
    assert redis.ttls["ratelimit:recover:ip"] == 60
    assert third.reset_at == 1060.0
    assert third.headers() == {
        "X-RateLimit-Limit": "2",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "1060",
    }


@pytest.mark.asyncio
async def test_redis_outage_allows_requests():
    redis = FakeRedis()
    redis.fail = True
    limiter = RedisRateLimiter(redis, "chat", max_requests=1, window_seconds=60)
    assert (await limiter.check("ip")).allowed
    assert (await limiter.check("ip")).allowed


def test_factory_picks_backend():
    assert isinstance(create_rate_limiter(None, "chat", 10, 60), InMemoryRateLimiter)
    assert isinstance(create_rate_limiter(FakeRedis(), "chat", 10, 60), RedisRateLimiter)
