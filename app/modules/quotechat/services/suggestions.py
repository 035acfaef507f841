"""
Follow-up suggestions shown after an answer.

Suggestions are an enhancement: any failure here is logged and replaced with a
fixed per-intent list, and never reaches the client as an error.
"""

import logging
import re
from typing import Dict, List

from app.modules.quotechat.schema.llm import parse_suggestion_response
from app.modules.quotechat.services.errors import ChatError, ChatErrorCode
from app.modules.quotechat.services.interfaces import CompletionProvider
from app.modules.quotechat.services.prompts import SUGGESTION_GENERATION_PROMPT
from app.modules.quotechat.services.retry import SUGGESTIONS_RETRY

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3
MAX_SUGGESTION_LENGTH = 100

_PRACTICE_PATTERN = re.compile(r"\b(meditat|journal|practice|routine|daily|exercise|try this)\b", re.I)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

FALLBACK_SUGGESTIONS: Dict[str, List[str]] = {
    "quote-search": [
        "Show me the full passage",
        "What else does Ra say about this?",
        "Which session is this from?",
    ],
    "conceptual": [
        "How does this connect to other concepts?",
        "Can you explain this further?",
        "What's the context for this teaching?",
    ],
    "practical": [
        "What's the first step?",
        "Are there other approaches?",
        "How do I know if it's working?",
    ],
    "personal": [
        "What does Ra say about this?",
        "Is there more to explore here?",
        "I'd like to discuss something else",
    ],
    "comparative": [
        "What are the key differences?",
        "Are there other parallels?",
        "How is Ra's view unique?",
    ],
    "meta": [
        "What topics can I explore?",
        "What is the Law of One?",
        "How do I search for quotes?",
    ],
    "off-topic": [
        "What is the Law of One?",
        "Tell me about densities",
        "What topics can I explore?",
    ],
}


def get_fallback_suggestions(intent: str, existing: List[str]) -> List[str]:
    fallbacks = FALLBACK_SUGGESTIONS.get(intent, FALLBACK_SUGGESTIONS["conceptual"])
    return [f for f in fallbacks if f not in existing]


def extract_ai_questions(response: str) -> List[str]:
    sentences = _SENTENCE_SPLIT.split(response)
    return [s for s in sentences if s.strip().endswith("?")][-3:]


def filter_suggestions(raw: List[str], intent: str) -> List[str]:
    """Length-filter, cap, drop practice prompts for personal intent, then pad with fallbacks."""
    valid = [s for s in raw if 0 < len(s) <= MAX_SUGGESTION_LENGTH][:MAX_SUGGESTIONS]
    if intent == "personal":
        valid = [s for s in valid if not _PRACTICE_PATTERN.search(s)]
    if len(valid) < MAX_SUGGESTIONS:
        valid = (valid + get_fallback_suggestions(intent, valid))[:MAX_SUGGESTIONS]
    return valid


def build_suggestion_context(user_message: str, assistant_response: str, intent: str, turn_count: int) -> str:
    if len(assistant_response) > 1200:
        response_block = (
            f"[Response summary - about {round(len(assistant_response) / 4)} words on the topic]\n\n"
            f"...{assistant_response[-700:]}"
        )
    else:
        response_block = assistant_response

    if turn_count >= 5:
        depth_note = " (deep conversation - consider offering a breadth option)"
    elif turn_count >= 3:
        depth_note = " (established conversation)"
    else:
        depth_note = ""

    questions = extract_ai_questions(assistant_response)
    questions_block = ""
    if questions:
        listed = "\n".join(f'- "{q.strip()}"' for q in questions)
        questions_block = f"\n\nAI QUESTIONS (do not echo these):\n{listed}"

    intent_note = " (emotional/vulnerable - be gentle with suggestions)" if intent == "personal" else ""
    return "\n".join([
        f"DETECTED INTENT: {intent}{intent_note}",
        f"CONVERSATION DEPTH: Turn {turn_count}{depth_note}",
        "",
        f"USER'S MESSAGE: {user_message}",
        "",
        "ASSISTANT'S RESPONSE:",
        response_block,
        questions_block,
    ])


async def generate_suggestions(
    llm: CompletionProvider,
    user_message: str,
    assistant_response: str,
    intent: str,
    turn_count: int,
) -> List[str]:
    try:
        raw = await llm.complete(
            [
                {"role": "system", "content": SUGGESTION_GENERATION_PROMPT},
                {
                    "role": "user",
                    "content": build_suggestion_context(user_message, assistant_response, intent, turn_count),
                },
            ],
            retry=SUGGESTIONS_RETRY,
        )
        parsed = parse_suggestion_response(raw)
        if not parsed.ok:
            raise ValueError(f"suggestion response rejected: {parsed.error}")
        return filter_suggestions(parsed.value.suggestions, intent)
    except Exception as exc:
        err = ChatError(ChatErrorCode.SUGGESTIONS_FAILED, cause=exc)
        logger.error(f"Suggestion generation failed (intent={intent}, turn={turn_count}): {err}")
        return get_fallback_suggestions(intent, [])
