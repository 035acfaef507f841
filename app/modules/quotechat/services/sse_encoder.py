"""
Server-sent event framing and the live transport.

The orchestrator never writes to the HTTP response directly. It pushes frames
into an ``EventChannel`` which the StreamingResponse body drains, so a client
disconnect only closes the channel and never cancels generation.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream"


def encode_event(name: str, data: Dict[str, Any]) -> bytes:
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {name}\ndata: {payload}\n\n".encode("utf-8")


def encode_comment(text: str) -> bytes:
    return f": {text}\n\n".encode("utf-8")


class TransportClosed(Exception):
    """Raised when a frame is pushed into a channel that has been closed."""


class EventChannel:
    """Frame queue between the producing task and the HTTP response body."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._closed = False
        self._aborted = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, frame: bytes) -> None:
        if self._closed:
            raise TransportClosed("event channel is closed")
        self._queue.put_nowait(frame)

    def close(self) -> None:
        """Producer is done; the reader finishes after the queued frames."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def abort(self) -> None:
        """Reader went away; drop queued frames and refuse new ones."""
        self._aborted = True
        self.close()

    async def frames(self) -> AsyncIterator[bytes]:
        try:
            while True:
                frame = await self._queue.get()
                if frame is None or self._aborted:
                    return
                yield frame
        finally:
            # generator closed early means the client disconnected
            if not self._closed:
                logger.info("SSE client disconnected before end of stream")
            self.abort()


class SSESender:
    """Writes events to a channel; transport failures are never propagated."""

    def __init__(self, channel: EventChannel) -> None:
        self._channel = channel

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        try:
            self._channel.put(encode_event(event, data))
        except Exception as exc:
            logger.debug(f"Dropping '{event}' event: {exc}")

    async def comment(self, text: str) -> None:
        try:
            self._channel.put(encode_comment(text))
        except Exception as exc:
            logger.debug(f"Dropping comment frame: {exc}")

    def close(self) -> None:
        self._channel.close()


class Heartbeat:
    """Periodic comment frames that keep idle connections open."""

    def __init__(
        self,
        sender: SSESender,
        interval: float,
        comment: str = "heartbeat",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sender = sender
        self._interval = interval
        self._comment = comment
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            await self._sender.comment(self._comment)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
