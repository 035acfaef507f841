# Prompt templates for the quote chat pipeline.

from .augmentation import QUERY_AUGMENTATION_PROMPT
from .response import RESPONSE_PROMPT, build_context_from_quotes
from .suggestions import SUGGESTION_GENERATION_PROMPT

__all__ = [
    "QUERY_AUGMENTATION_PROMPT",
    "RESPONSE_PROMPT",
    "SUGGESTION_GENERATION_PROMPT",
    "build_context_from_quotes",
]
