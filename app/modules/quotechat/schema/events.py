"""
Wire-level event payloads and the cached replay log.

The event names on the wire are: meta, chunk, suggestions, error, done
(plus the live-only session event that carries the response id).
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.modules.quotechat.schema.chat import Passage

EVENT_META = "meta"
EVENT_CHUNK = "chunk"
EVENT_SUGGESTIONS = "suggestions"
EVENT_ERROR = "error"
EVENT_DONE = "done"
EVENT_SESSION = "session"

TERMINAL_EVENTS = frozenset({EVENT_DONE, EVENT_ERROR})


class MetaEvent(BaseModel):
    quotes: List[Passage]
    intent: str
    confidence: str
    concepts: List[str] = Field(default_factory=list)


class TextChunk(BaseModel):
    type: Literal["text"] = "text"
    content: str


class QuoteChunk(BaseModel):
    type: Literal["quote"] = "quote"
    text: str
    reference: str
    url: str


class SuggestionsEvent(BaseModel):
    items: List[str]


class ErrorEvent(BaseModel):
    code: str
    message: str
    retryable: bool


class CachedEvent(BaseModel):
    """One entry of a response's replay log."""

    model_config = ConfigDict(frozen=True)

    event: str
    data: Dict[str, Any]


class CachedResponse(BaseModel):
    events: List[CachedEvent]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def complete(self) -> bool:
        return any(e.event == EVENT_DONE for e in self.events)


def build_cached_response(events: List[CachedEvent]) -> Optional[CachedResponse]:
    """Wrap a raw log, dropping anything recorded after the first done event."""
    if not events:
        return None
    kept: List[CachedEvent] = []
    for entry in events:
        kept.append(entry)
        if entry.event == EVENT_DONE:
            break
    return CachedResponse(events=kept)
