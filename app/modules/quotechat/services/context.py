from typing import List

from app.modules.quotechat.schema.chat import ConversationContext, HistoryMessage


def build_conversation_context(history: List[HistoryMessage]) -> ConversationContext:
    """Turn number (previous user messages + the current one) and references already shown."""
    turn_count = sum(1 for m in history if m.role == "user") + 1
    quotes_used = [q for m in history for q in m.quotes_used if q]
    return ConversationContext(turn_count=turn_count, quotes_used=quotes_used)


def recent_history(history: List[HistoryMessage], count: int) -> List[HistoryMessage]:
    if count <= 0:
        return []
    return history[-count:]
