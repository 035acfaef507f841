"""Client-facing error taxonomy for the chat pipeline."""

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.modules.quotechat.schema.events import ErrorEvent


class ChatErrorCode(str, enum.Enum):
    AUGMENTATION_FAILED = "AUGMENTATION_FAILED"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    SEARCH_FAILED = "SEARCH_FAILED"
    STREAM_FAILED = "STREAM_FAILED"
    QUOTE_PROCESSING_FAILED = "QUOTE_PROCESSING_FAILED"
    SUGGESTIONS_FAILED = "SUGGESTIONS_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class ErrorTemplate:
    user_message: str
    retryable: bool


ERROR_TEMPLATES: Dict[ChatErrorCode, ErrorTemplate] = {
    ChatErrorCode.AUGMENTATION_FAILED: ErrorTemplate(
        "I had trouble understanding your question. Please try rephrasing it.", True
    ),
    ChatErrorCode.EMBEDDING_FAILED: ErrorTemplate(
        "I couldn't process your message. Please try again.", True
    ),
    ChatErrorCode.SEARCH_FAILED: ErrorTemplate(
        "I couldn't search the source material. Please try again in a moment.", True
    ),
    ChatErrorCode.STREAM_FAILED: ErrorTemplate(
        "I encountered an error generating my response. Please try again.", True
    ),
    ChatErrorCode.QUOTE_PROCESSING_FAILED: ErrorTemplate(
        "I had trouble formatting a quote. The response may be incomplete.", False
    ),
    # suggestions degrade to fallbacks, the client never sees this one
    ChatErrorCode.SUGGESTIONS_FAILED: ErrorTemplate("", False),
    ChatErrorCode.RATE_LIMITED: ErrorTemplate(
        "Too many requests. Please wait before trying again.", True
    ),
    ChatErrorCode.VALIDATION_ERROR: ErrorTemplate(
        "Invalid request. Please check your message and try again.", False
    ),
    ChatErrorCode.UNKNOWN_ERROR: ErrorTemplate("Something went wrong. Please try again.", True),
}


class ChatError(Exception):
    """Pipeline failure carrying a taxonomy code. ``cause`` is for logs only."""

    def __init__(self, code: ChatErrorCode, cause: Optional[BaseException] = None):
        self.code = code
        self.cause = cause
        template = ERROR_TEMPLATES[code]
        self.user_message = template.user_message
        self.retryable = template.retryable
        super().__init__(f"{code.value}: {cause!r}" if cause else code.value)


def to_chat_error(
    exc: BaseException, default: ChatErrorCode = ChatErrorCode.UNKNOWN_ERROR
) -> ChatError:
    if isinstance(exc, ChatError):
        return exc
    return ChatError(default, cause=exc)


def error_payload(code: ChatErrorCode) -> Dict[str, Any]:
    """Data of the terminal ``error`` event for ``code``."""
    template = ERROR_TEMPLATES[code]
    return ErrorEvent(code=code.value, message=template.user_message, retryable=template.retryable).model_dump()


def http_error_body(code: ChatErrorCode) -> Dict[str, Any]:
    template = ERROR_TEMPLATES[code]
    return {"error": template.user_message, "code": code.value, "retryable": template.retryable}
