"""Collaborator contracts consumed by the chat orchestrator."""

from typing import AsyncIterator, Dict, List, Optional, Protocol

from app.modules.quotechat.schema.chat import ConceptDetection, Passage, SessionReference
from app.modules.quotechat.schema.llm import StreamFragment
from app.modules.quotechat.services.retry import RetryConfig

ChatMessages = List[Dict[str, str]]


class PassageSearcher(Protocol):
    async def search(self, query: str, session_ref: Optional[SessionReference] = None) -> List[Passage]:
        ...


class CompletionProvider(Protocol):
    def stream(self, messages: ChatMessages, thinking_mode: bool = False) -> AsyncIterator[StreamFragment]:
        ...

    async def complete(self, messages: ChatMessages, retry: Optional[RetryConfig] = None) -> str:
        ...


class ConceptDetector(Protocol):
    async def detect(self, message: str) -> ConceptDetection:
        ...


class NoConceptDetector:
    """Default detector used when no concept graph is wired in."""

    async def detect(self, message: str) -> ConceptDetection:
        return ConceptDetection()
