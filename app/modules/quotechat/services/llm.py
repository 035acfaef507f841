import logging
import re
from typing import Any, AsyncIterator, Dict, Optional

from openai import AsyncOpenAI

from app.modules.quotechat.schema.llm import StreamFragment, fragment_from_chunk
from app.modules.quotechat.services.errors import ChatError, ChatErrorCode
from app.modules.quotechat.services.interfaces import ChatMessages
from app.modules.quotechat.services.retry import DEFAULT_RETRY, RetryConfig, with_retry
from core.utils.perf import profile_stage

logger = logging.getLogger(__name__)


def _normalize_model(name: str) -> str:
    """Normalize model name by removing spaces and lowercasing."""
    return re.sub(r"\s+", "", (name or "")).lower()


def _supports_reasoning(model: str) -> bool:
    """gpt-5 and o-series models accept reasoning_effort."""
    m = _normalize_model(model)
    return m.startswith("gpt-5") or re.match(r"^o[0-9]", m) is not None


def estimate_cost(prompt_tokens: int, completion_tokens: int, settings) -> float:
    return (
        prompt_tokens * settings.INPUT_COST_PER_1M / 1_000_000
        + completion_tokens * settings.OUTPUT_COST_PER_1M / 1_000_000
    )


class OpenAICompletionProvider:
    """Chat-completions client for streamed answers and small JSON utility calls."""

    def __init__(self, client: AsyncOpenAI, settings):
        self._client = client
        self._settings = settings

    def _request_kwargs(self, reasoning_effort: str) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self._settings.LLM_MODEL}
        if _supports_reasoning(self._settings.LLM_MODEL):
            kwargs["reasoning_effort"] = reasoning_effort
        return kwargs

    async def stream(self, messages: ChatMessages, thinking_mode: bool = False) -> AsyncIterator[StreamFragment]:
        effort = (
            self._settings.LLM_THINKING_REASONING_EFFORT
            if thinking_mode
            else self._settings.LLM_REASONING_EFFORT
        )
        try:
            response = await self._client.chat.completions.create(
                messages=messages,
                stream=True,
                stream_options={"include_usage": True},
                **self._request_kwargs(effort),
            )
        except Exception as exc:
            raise ChatError(ChatErrorCode.STREAM_FAILED, cause=exc) from exc

        skipped = 0
        async for chunk in response:
            parsed = fragment_from_chunk(chunk)
            if not parsed.ok:
                skipped += 1
                logger.warning(f"Skipping malformed stream chunk: {parsed.error}")
                continue
            yield parsed.value

        if skipped:
            logger.info(f"Stream finished with {skipped} malformed chunk(s) skipped")

    @profile_stage("llm_complete")
    async def complete(self, messages: ChatMessages, retry: Optional[RetryConfig] = None) -> str:
        """Non-streaming call with JSON output, retried on transient failures."""

        async def _call():
            return await self._client.chat.completions.create(
                messages=messages,
                response_format={"type": "json_object"},
                **self._request_kwargs(self._settings.UTILITY_REASONING_EFFORT),
            )

        response = await with_retry(_call, retry or DEFAULT_RETRY, name="llm_complete")
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
