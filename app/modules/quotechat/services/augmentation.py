"""
Intent classification and query expansion ahead of vector search.

A failed augmentation call never fails the request: the original message is
searched with intent ``conceptual`` and confidence ``low``.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from app.modules.quotechat.schema.chat import (
    VALID_CONFIDENCES,
    VALID_INTENTS,
    ConceptDetection,
    SessionReference,
)
from app.modules.quotechat.schema.llm import parse_augmentation_response
from app.modules.quotechat.services.errors import ChatError, ChatErrorCode
from app.modules.quotechat.services.interfaces import CompletionProvider
from app.modules.quotechat.services.prompts import QUERY_AUGMENTATION_PROMPT
from app.modules.quotechat.services.retry import AUGMENTATION_RETRY

logger = logging.getLogger(__name__)

MAX_SESSION = 106

_SESSION_QUESTION = re.compile(r"\bsession\s+([0-9]{1,3})\s*,?\s*(?:question|q)\s*([0-9]{1,3})\b", re.I)
_DOTTED_REFERENCE = re.compile(r"(?<![0-9.])([0-9]{1,3})\.([0-9]{1,3})(?![0-9.])")
_SESSION_ONLY = re.compile(r"\bsession\s+([0-9]{1,3})\b", re.I)


@dataclass
class AugmentationResult:
    intent: str
    augmented_query: str
    confidence: str
    session_ref: Optional[SessionReference] = None
    concepts: List[str] = field(default_factory=list)
    prompt_context: str = ""


def _valid_session(n: int) -> bool:
    return 1 <= n <= MAX_SESSION


def parse_session_reference(message: str) -> Optional[SessionReference]:
    """
    Find an explicit reference such as "session 12 question 3", "49.8" or
    "session 49". Session numbers outside the corpus are ignored.
    """
    m = _SESSION_QUESTION.search(message)
    if m and _valid_session(int(m.group(1))):
        return SessionReference(session=int(m.group(1)), question=int(m.group(2)))

    m = _DOTTED_REFERENCE.search(message)
    if m and _valid_session(int(m.group(1))):
        return SessionReference(session=int(m.group(1)), question=int(m.group(2)))

    m = _SESSION_ONLY.search(message)
    if m and _valid_session(int(m.group(1))):
        return SessionReference(session=int(m.group(1)))
    return None


def build_query_with_concepts(message: str, search_terms: List[str]) -> str:
    if not search_terms:
        return message
    return f"{message} [Related concepts: {', '.join(search_terms[:5])}]"


async def augment_query(llm: CompletionProvider, message: str) -> AugmentationResult:
    """Ask the model for intent, confidence and an expanded search query."""
    try:
        raw = await llm.complete(
            [
                {"role": "system", "content": QUERY_AUGMENTATION_PROMPT},
                {"role": "user", "content": f"MESSAGE: {message}"},
            ],
            retry=AUGMENTATION_RETRY,
        )
        parsed = parse_augmentation_response(raw)
        if not parsed.ok:
            raise ValueError(parsed.error)
    except Exception as exc:
        err = ChatError(ChatErrorCode.AUGMENTATION_FAILED, cause=exc)
        logger.warning(f"Query augmentation failed, using original message: {err}")
        return AugmentationResult(intent="conceptual", augmented_query=message, confidence="low")

    payload = parsed.value
    intent = payload.intent if payload.intent in VALID_INTENTS else "conceptual"
    confidence = payload.confidence if payload.confidence in VALID_CONFIDENCES else "medium"
    return AugmentationResult(
        intent=intent,
        augmented_query=payload.augmented_query or message,
        confidence=confidence,
    )


async def perform_augmentation(
    llm: CompletionProvider,
    message: str,
    concepts: ConceptDetection,
) -> AugmentationResult:
    session_ref = parse_session_reference(message)
    if session_ref:
        logger.info(f"Detected session reference: {session_ref}")

    result = await augment_query(llm, build_query_with_concepts(message, concepts.search_terms))
    result.concepts = list(concepts.concepts)
    result.prompt_context = concepts.prompt_context

    if session_ref:
        result.intent = "quote-search"
        result.confidence = "high"
        result.session_ref = session_ref
        if session_ref.question is None:
            result.augmented_query = f"session {session_ref.session} Ra Material"
    return result
