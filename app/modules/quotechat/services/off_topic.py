"""Canned reply for questions outside the corpus. No search, no generation."""

import asyncio
from typing import Awaitable, Callable, Dict, Any

from app.modules.quotechat.schema.events import (
    EVENT_CHUNK,
    EVENT_DONE,
    EVENT_META,
    EVENT_SUGGESTIONS,
    MetaEvent,
    SuggestionsEvent,
    TextChunk,
)

OFF_TOPIC_MESSAGE = (
    "That's outside my focus on the Ra Material, but I'd be happy to explore any "
    "Law of One topics with you. Is there something about consciousness, spiritual "
    "evolution, or Ra's teachings you're curious about?"
)
OFF_TOPIC_SUGGESTIONS = [
    "What is the Law of One?",
    "Tell me about densities",
    "What topics can I explore?",
]

Send = Callable[[str, Dict[str, Any]], Awaitable[None]]


async def stream_off_topic_response(send: Send, chunk_size: int = 10, chunk_delay: float = 0.01) -> None:
    await send(
        EVENT_META,
        MetaEvent(quotes=[], intent="off-topic", confidence="high").model_dump(),
    )
    # small chunks so the client renders it like a generated answer
    for i in range(0, len(OFF_TOPIC_MESSAGE), chunk_size):
        piece = OFF_TOPIC_MESSAGE[i:i + chunk_size]
        if piece.strip():
            await send(EVENT_CHUNK, TextChunk(content=piece).model_dump())
        if chunk_delay:
            await asyncio.sleep(chunk_delay)
    await send(EVENT_SUGGESTIONS, SuggestionsEvent(items=list(OFF_TOPIC_SUGGESTIONS)).model_dump())
    await send(EVENT_DONE, {})
