"""
Replay log of emitted events, keyed by response id.

Two backends share one interface: Redis for multi-instance deployments and an
in-process store for local development. Both keep a sliding TTL so a response
that is still streaming is never evicted mid-flight.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from app.modules.quotechat.schema.events import CachedEvent, CachedResponse, build_cached_response

logger = logging.getLogger(__name__)

KEY_PREFIX = "chat:"

# strong references so detached writers are not garbage collected mid-flight
_writer_tasks: Set[asyncio.Task] = set()


class ResponseCache(ABC):
    backend: str = "unknown"

    @abstractmethod
    async def append(self, response_id: str, event: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def get(self, response_id: str) -> Optional[CachedResponse]:
        ...

    async def close(self) -> None:
        return None

    def recorder(self, response_id: str) -> "ResponseRecorder":
        return ResponseRecorder(self, response_id)


class RedisResponseCache(ResponseCache):
    backend = "redis"

    def __init__(self, client: redis.Redis, ttl_seconds: int):
        self._r = client
        self._ttl = ttl_seconds
        self._failed_ids: Set[str] = set()

    @staticmethod
    def _key(response_id: str) -> str:
        return f"{KEY_PREFIX}{response_id}"

    async def append(self, response_id: str, event: str, data: Dict[str, Any]) -> None:
        key = self._key(response_id)
        item = json.dumps({"event": event, "data": data}, ensure_ascii=False)
        try:
            async with self._r.pipeline(transaction=True) as pipe:
                pipe.rpush(key, item)
                pipe.expire(key, self._ttl)
                await pipe.execute()
        except Exception as exc:
            # one warning per response, the stream keeps going
            if response_id not in self._failed_ids:
                self._failed_ids.add(response_id)
                logger.warning(f"Redis append failed for {response_id}: {exc}")

    async def get(self, response_id: str) -> Optional[CachedResponse]:
        try:
            raw_items = await self._r.lrange(self._key(response_id), 0, -1)
        except Exception as exc:
            logger.error(f"Redis read failed for {response_id}: {exc}")
            return None

        events: List[CachedEvent] = []
        for raw in raw_items:
            try:
                events.append(CachedEvent.model_validate(json.loads(raw)))
            except (ValueError, ValidationError) as exc:
                logger.warning(f"Dropping unreadable cache entry for {response_id}: {exc}")
        return build_cached_response(events)


@dataclass
class _LocalEntry:
    events: List[CachedEvent] = field(default_factory=list)
    expires_at: float = 0.0


class InMemoryResponseCache(ResponseCache):
    backend = "memory"

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _LocalEntry]" = OrderedDict()

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[key]

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    async def append(self, response_id: str, event: str, data: Dict[str, Any]) -> None:
        self._purge_expired()
        entry = self._entries.get(response_id)
        if entry is None:
            while len(self._entries) >= self._max:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached response {evicted}")
            entry = self._entries[response_id] = _LocalEntry()
        entry.events.append(CachedEvent(event=event, data=data))
        entry.expires_at = self._clock() + self._ttl

    async def get(self, response_id: str) -> Optional[CachedResponse]:
        self._purge_expired()
        entry = self._entries.get(response_id)
        if entry is None:
            return None
        return build_cached_response(list(entry.events))

    async def close(self) -> None:
        self._entries.clear()


class ResponseRecorder:
    """
    Ordered, detached writer for one response.

    ``record`` returns immediately. A single drain task performs the appends
    in the order they were recorded, so the cache sees events in the same
    order as the live stream (issued-before, not completed-before). Append
    failures are logged and never reach the caller.
    """

    def __init__(self, cache: ResponseCache, response_id: str):
        self._cache = cache
        self.response_id = response_id
        self._queue: Deque[Tuple[str, Dict[str, Any]]] = deque()
        self._task: Optional[asyncio.Task] = None

    def record(self, event: str, data: Dict[str, Any]) -> None:
        self._queue.append((event, data))
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain_queue())
            _writer_tasks.add(self._task)
            self._task.add_done_callback(self._on_done)

    async def _drain_queue(self) -> None:
        while self._queue:
            event, data = self._queue.popleft()
            try:
                await self._cache.append(self.response_id, event, data)
            except Exception as exc:
                logger.error(f"Cache append failed for {self.response_id} ({event}): {exc}")

    def _on_done(self, task: asyncio.Task) -> None:
        _writer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Cache writer for {self.response_id} crashed: {task.exception()}")

    async def drain(self) -> None:
        """Wait until every recorded event has been handed to the cache."""
        while self._task is not None and not self._task.done():
            await self._task


async def drain_writers() -> None:
    """Wait for every detached cache writer in this process."""
    while _writer_tasks:
        await asyncio.gather(*list(_writer_tasks), return_exceptions=True)


def create_response_cache(settings, redis_client: Optional[redis.Redis] = None) -> ResponseCache:
    if redis_client is not None:
        logger.info("Response cache backend: redis")
        return RedisResponseCache(redis_client, settings.RESPONSE_CACHE_TTL_SECONDS)
    logger.info("Response cache backend: in-memory (set REDIS_URL for durable replay)")
    return InMemoryResponseCache(
        ttl_seconds=settings.RESPONSE_CACHE_TTL_SECONDS,
        max_entries=settings.RESPONSE_CACHE_MAX_LOCAL,
    )
