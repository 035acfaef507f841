from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Intent = Literal[
    "quote-search",
    "conceptual",
    "practical",
    "personal",
    "comparative",
    "meta",
    "off-topic",
]
Confidence = Literal["high", "medium", "low"]

VALID_INTENTS: tuple[str, ...] = (
    "quote-search",
    "conceptual",
    "practical",
    "personal",
    "comparative",
    "meta",
    "off-topic",
)
VALID_CONFIDENCES: tuple[str, ...] = ("high", "medium", "low")


class Passage(BaseModel):
    """A verified corpus excerpt addressed by a stable reference."""

    model_config = ConfigDict(frozen=True)

    reference: str
    text: str
    url: str


class HistoryMessage(BaseModel):
    role: str
    content: str
    quotes_used: List[str] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """Raw request body. Field limits are enforced by services.validation."""

    message: str
    history: List[HistoryMessage] = Field(default_factory=list)
    thinking_mode: bool = False


class SessionReference(BaseModel):
    session: int
    question: Optional[int] = None


class ConceptDetection(BaseModel):
    concepts: List[str] = Field(default_factory=list)
    search_terms: List[str] = Field(default_factory=list)
    prompt_context: str = ""


class ConversationContext(BaseModel):
    turn_count: int
    quotes_used: List[str]
