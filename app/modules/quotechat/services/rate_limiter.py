"""
Fixed-window request limits per client.

Redis keeps the counters when configured so limits hold across instances; the
in-memory limiter covers single-process development. A Redis outage lets
requests through rather than blocking every user.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(1, math.ceil(self.reset_at - now))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class RateLimiter(ABC):
    def __init__(self, prefix: str, max_requests: int, window_seconds: int):
        self.prefix = prefix
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def _key(self, identifier: str) -> str:
        return f"ratelimit:{self.prefix}:{identifier}"

    @abstractmethod
    async def check(self, identifier: str) -> RateLimitResult:
        ...


class InMemoryRateLimiter(RateLimiter):
    def __init__(
        self,
        prefix: str,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(prefix, max_requests, window_seconds)
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}

    async def check(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        key = self._key(identifier)
        count, reset_at = self._windows.get(key, (0, 0.0))

        if reset_at <= now:
            # stale windows are dropped whenever a new one opens
            self._windows = {k: v for k, v in self._windows.items() if v[1] > now}
            count, reset_at = 0, now + self.window_seconds

        if count >= self.max_requests:
            return RateLimitResult(False, self.max_requests, 0, reset_at)

        count += 1
        self._windows[key] = (count, reset_at)
        return RateLimitResult(True, self.max_requests, self.max_requests - count, reset_at)


class RedisRateLimiter(RateLimiter):
    def __init__(
        self,
        client: redis.Redis,
        prefix: str,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(prefix, max_requests, window_seconds)
        self._r = client
        self._clock = clock

    async def check(self, identifier: str) -> RateLimitResult:
        key = self._key(identifier)
        now = self._clock()
        try:
            count = int(await self._r.incr(key))
            if count == 1:
                await self._r.expire(key, self.window_seconds)
            ttl = int(await self._r.ttl(key))
            if ttl < 0:
                # counter lost its expiry (crash between INCR and EXPIRE)
                await self._r.expire(key, self.window_seconds)
                ttl = self.window_seconds
        except Exception as exc:
            logger.warning(f"Rate limit check failed for {key}, allowing request: {exc}")
            return RateLimitResult(True, self.max_requests, self.max_requests, now + self.window_seconds)

        reset_at = now + ttl
        if count > self.max_requests:
            return RateLimitResult(False, self.max_requests, 0, reset_at)
        return RateLimitResult(True, self.max_requests, self.max_requests - count, reset_at)


def create_rate_limiter(
    redis_client: Optional[redis.Redis],
    prefix: str,
    max_requests: int,
    window_seconds: int,
) -> RateLimiter:
    if redis_client is not None:
        return RedisRateLimiter(redis_client, prefix, max_requests, window_seconds)
    return InMemoryRateLimiter(prefix, max_requests, window_seconds)
