"""
Streaming marker substitution.

Upstream text arrives in arbitrary fragments. Plain text is batched in
``pending`` and flushed once per marker boundary; the unclassified tail lives
in ``buffer`` until it either completes a marker or can no longer become one.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, List, Optional

from app.modules.quotechat.schema.chat import Passage
from app.modules.quotechat.schema.events import EVENT_CHUNK, QuoteChunk, TextChunk
from app.modules.quotechat.schema.llm import StreamFragment, TokenUsage
from app.modules.quotechat.services.quote_markers import (
    MAX_PARTIAL_MARKER_LENGTH,
    MarkerMatch,
    is_possible_prefix,
    match_complete,
)
from app.modules.quotechat.services.quote_text import apply_sentence_range, format_whole_quote
from core.config import settings

logger = logging.getLogger(__name__)

EventSink = Callable[[str, Dict[str, Any]], Awaitable[None]]


class QuoteResolutionError(Exception):
    """A resolved passage could not be turned into a quote chunk."""


@dataclass
class StreamResult:
    full_output: str
    usage: Optional[TokenUsage] = None


def _split_trailing_prefix(buffer: str) -> int:
    """Index where the longest possible-marker suffix of ``buffer`` begins."""
    window_start = max(0, len(buffer) - MAX_PARTIAL_MARKER_LENGTH)
    for i in range(window_start, len(buffer)):
        if is_possible_prefix(buffer[i:]):
            return i
    return len(buffer)


def _render_quote(match: MarkerMatch, passage: Passage) -> QuoteChunk:
    try:
        if match.has_range:
            text = apply_sentence_range(passage.text, match.sentence_start, match.sentence_end)
        else:
            text = format_whole_quote(passage.text)
    except Exception as exc:
        raise QuoteResolutionError(f"failed to format quote {passage.reference}") from exc
    return QuoteChunk(text=text, reference=passage.reference, url=passage.url)


async def process_stream(
    fragments: AsyncIterable[StreamFragment],
    passages: List[Passage],
    emit: EventSink,
) -> StreamResult:
    """
    Consume ``fragments``, emitting text and quote chunks through ``emit``.

    Markers whose index falls outside ``passages`` (1-indexed) vanish without
    an event. Malformed or truncated markers are passed through as text.
    """
    buffer = ""
    pending = ""
    full_output: List[str] = []
    usage: Optional[TokenUsage] = None

    async def flush_pending() -> None:
        nonlocal pending
        if pending.strip():
            await emit(EVENT_CHUNK, TextChunk(content=pending).model_dump())
        pending = ""

    async for fragment in fragments:
        if fragment.usage is not None:
            usage = fragment.usage
        if not fragment.content:
            continue

        full_output.append(fragment.content)
        buffer += fragment.content

        while True:
            match = match_complete(buffer)
            if match is not None:
                pending += buffer[: match.start]
                await flush_pending()

                if 1 <= match.index <= len(passages):
                    quote = _render_quote(match, passages[match.index - 1])
                    await emit(EVENT_CHUNK, quote.model_dump())
                elif settings.DEBUG_RAG:
                    logger.debug(f"[MARKER] dropped out-of-range index {match.index} ({len(passages)} passages)")

                buffer = buffer[match.end:]
                continue

            split_at = _split_trailing_prefix(buffer)
            pending += buffer[:split_at]
            buffer = buffer[split_at:]
            break

    pending += buffer
    await flush_pending()

    return StreamResult(full_output="".join(full_output), usage=usage)
