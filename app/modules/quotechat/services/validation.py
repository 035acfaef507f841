"""Request body checks for the chat endpoint."""

from typing import Any

from app.modules.quotechat.schema.chat import ChatRequest, HistoryMessage

VALID_ROLES = ("user", "assistant")


class RequestValidationFailed(ValueError):
    """The request body is malformed. ``str(exc)`` says why."""


def validate_message(message: Any, max_length: int) -> str:
    if not isinstance(message, str):
        raise RequestValidationFailed("Message is required and must be a string")
    if not message:
        raise RequestValidationFailed("Message cannot be empty")
    if len(message) > max_length:
        raise RequestValidationFailed(f"Message too long. Maximum {max_length} characters.")
    return message


def validate_history(history: Any, max_items: int, max_item_length: int) -> list[HistoryMessage]:
    if history is None:
        return []
    if not isinstance(history, list):
        raise RequestValidationFailed("History must be an array")
    if len(history) > max_items:
        raise RequestValidationFailed(f"History too long. Maximum {max_items} messages.")

    validated = []
    for item in history:
        if not isinstance(item, dict):
            raise RequestValidationFailed("Invalid history format")
        if item.get("role") not in VALID_ROLES:
            raise RequestValidationFailed("Invalid message role in history")
        content = item.get("content")
        if not isinstance(content, str) or not content:
            raise RequestValidationFailed("Invalid message content in history")
        if len(content) > max_item_length:
            raise RequestValidationFailed("Message in history too long")

        quotes_used = item.get("quotes_used", item.get("quotesUsed")) or []
        if not isinstance(quotes_used, list):
            quotes_used = []
        validated.append(
            HistoryMessage(
                role=item["role"],
                content=content,
                quotes_used=[q for q in quotes_used if isinstance(q, str) and q],
            )
        )
    return validated


def validate_chat_request(body: Any, settings) -> ChatRequest:
    if not isinstance(body, dict):
        raise RequestValidationFailed("Request body must be a JSON object")
    message = validate_message(body.get("message"), settings.MAX_MESSAGE_LENGTH)
    history = validate_history(
        body.get("history"),
        settings.MAX_HISTORY_LENGTH,
        settings.MAX_HISTORY_MESSAGE_LENGTH,
    )
    thinking_mode = body.get("thinking_mode", body.get("thinkingMode", False))
    return ChatRequest(message=message, history=history, thinking_mode=thinking_mode is True)
