"""
Provider-boundary payloads.

Everything that comes back from the completion provider is validated here once
and turned into a tagged result before any field is trusted downstream.
"""

import json
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """Tagged outcome of validating a provider payload."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TokenUsage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class StreamFragment(BaseModel):
    """One piece of upstream generated text, optionally carrying usage."""

    model_config = ConfigDict(frozen=True)

    content: str = ""
    usage: Optional[TokenUsage] = None


class AugmentationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    intent: str
    augmented_query: str = ""
    confidence: str = "medium"


class SuggestionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    suggestions: List[str] = Field(default_factory=list)


def _parse_json_model(raw: str, model: type[BaseModel]) -> Parsed[Any]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        return Parsed(error=f"invalid JSON: {exc}")
    try:
        return Parsed(value=model.model_validate(data))
    except ValidationError as exc:
        return Parsed(error=f"schema mismatch: {exc.error_count()} error(s)")


def parse_augmentation_response(raw: str) -> Parsed[AugmentationPayload]:
    return _parse_json_model(raw, AugmentationPayload)


def parse_suggestion_response(raw: str) -> Parsed[SuggestionPayload]:
    return _parse_json_model(raw, SuggestionPayload)


def fragment_from_chunk(chunk: Any) -> Parsed[StreamFragment]:
    """
    Convert one streamed chat-completion chunk into a StreamFragment.

    Accepts both SDK objects and plain dicts; usage-only terminal chunks
    (empty choices) are valid and carry no content.
    """
    data = chunk.model_dump() if hasattr(chunk, "model_dump") else chunk
    if not isinstance(data, dict):
        return Parsed(error=f"unexpected chunk type {type(chunk).__name__}")

    content = ""
    choices = data.get("choices") or []
    if choices:
        first = choices[0]
        if not isinstance(first, dict):
            return Parsed(error="choice is not an object")
        delta = first.get("delta") or {}
        if not isinstance(delta, dict):
            return Parsed(error="delta is not an object")
        content = delta.get("content") or ""
        if not isinstance(content, str):
            return Parsed(error="delta content is not a string")

    usage = None
    raw_usage = data.get("usage")
    if raw_usage:
        try:
            usage = TokenUsage.model_validate(raw_usage)
        except ValidationError as exc:
            return Parsed(error=f"invalid usage block: {exc.error_count()} error(s)")

    return Parsed(value=StreamFragment(content=content, usage=usage))
