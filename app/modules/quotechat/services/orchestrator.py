"""
Chat pipeline orchestration.

Stages run strictly in order: context, augmentation, off-topic short-circuit,
search, meta, generation (streamed through the marker processor), suggestions,
done. Any stage failure ends the response with a single ``error`` event.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from app.modules.quotechat.schema.chat import ChatRequest, ConceptDetection, Passage
from app.modules.quotechat.schema.events import (
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_META,
    EVENT_SUGGESTIONS,
    TERMINAL_EVENTS,
    MetaEvent,
    SuggestionsEvent,
)
from app.modules.quotechat.services.augmentation import AugmentationResult, perform_augmentation
from app.modules.quotechat.services.context import build_conversation_context, recent_history
from app.modules.quotechat.services.errors import (
    ChatError,
    ChatErrorCode,
    error_payload,
    to_chat_error,
)
from app.modules.quotechat.services.interfaces import (
    ChatMessages,
    CompletionProvider,
    ConceptDetector,
    NoConceptDetector,
    PassageSearcher,
)
from app.modules.quotechat.services.llm import estimate_cost
from app.modules.quotechat.services.off_topic import stream_off_topic_response
from app.modules.quotechat.services.prompts import RESPONSE_PROMPT, build_context_from_quotes
from app.modules.quotechat.services.response_cache import ResponseCache, ResponseRecorder
from app.modules.quotechat.services.sse_encoder import Heartbeat, SSESender
from app.modules.quotechat.services.stream_processor import (
    QuoteResolutionError,
    StreamResult,
    process_stream,
)
from app.modules.quotechat.services.suggestions import generate_suggestions
from core.utils.perf import elapsed_ms

logger = logging.getLogger(__name__)


class ResponseEmitter:
    """
    Sends each event to the live client, then records it for replay.

    Nothing is sent after a terminal event, so a log holds at most one
    ``done`` and never an event after an ``error``.
    """

    def __init__(self, sender: SSESender, recorder: ResponseRecorder):
        self._sender = sender
        self._recorder = recorder
        self.terminal_event: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.terminal_event is not None

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        if self.finished:
            logger.debug(f"Ignoring '{event}' after terminal '{self.terminal_event}'")
            return
        await self._sender.send(event, data)
        self._recorder.record(event, data)
        if event in TERMINAL_EVENTS:
            self.terminal_event = event


def build_llm_messages(
    request: ChatRequest,
    augmentation: AugmentationResult,
    passages: List[Passage],
    turn_count: int,
    quotes_used: List[str],
    history_count: int,
) -> ChatMessages:
    exclusion = ""
    if quotes_used:
        exclusion = f"\n\nQUOTES ALREADY SHOWN (do not reuse these references): {', '.join(quotes_used)}"
    concept_block = f"\n\n{augmentation.prompt_context}" if augmentation.prompt_context else ""

    user_content = (
        f"[Intent: {augmentation.intent}] [Confidence: {augmentation.confidence}] [Turn: {turn_count}]\n\n"
        f"{request.message}\n\n"
        f"Here are relevant Ra passages:\n\n{build_context_from_quotes(passages)}"
        f"{exclusion}{concept_block}\n\n"
        "Respond to the user, using {{QUOTE:N}} format to include quotes."
    )

    messages: ChatMessages = [{"role": "system", "content": RESPONSE_PROMPT}]
    messages.extend(
        {"role": m.role, "content": m.content}
        for m in recent_history(request.history, history_count)
    )
    messages.append({"role": "user", "content": user_content})
    return messages


class ChatOrchestrator:
    def __init__(
        self,
        llm: CompletionProvider,
        searcher: PassageSearcher,
        cache: ResponseCache,
        settings,
        concept_detector: Optional[ConceptDetector] = None,
    ):
        self.llm = llm
        self.searcher = searcher
        self.cache = cache
        self.settings = settings
        self.concept_detector = concept_detector or NoConceptDetector()
        self._tasks: Set[asyncio.Task] = set()

    def launch(self, request: ChatRequest, response_id: str, sender: SSESender) -> asyncio.Task:
        """
        Run ``execute`` as a detached task.

        The task is owned here, not by the HTTP response, so a client
        disconnect does not cancel generation.
        """
        task = asyncio.create_task(self.execute(request, response_id, sender))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def execute(self, request: ChatRequest, response_id: str, sender: SSESender) -> None:
        """Run the full pipeline for one response. Never raises."""
        recorder = self.cache.recorder(response_id)
        emitter = ResponseEmitter(sender, recorder)
        heartbeat = Heartbeat(sender, self.settings.HEARTBEAT_INTERVAL_SECONDS)
        heartbeat.start()
        t0 = time.perf_counter()

        try:
            await self._run(request, emitter)
        except Exception as exc:
            err = to_chat_error(exc)
            logger.error(
                f"Chat pipeline failed for {response_id} with {err.code.value}",
                exc_info=err.cause or err,
            )
            await emitter.send(EVENT_ERROR, error_payload(err.code))
        finally:
            await heartbeat.stop()
            sender.close()
            logger.info(
                f"Response {response_id} finished ({emitter.terminal_event or 'no terminal event'}) "
                f"in {elapsed_ms(t0):.0f} ms"
            )

    async def _detect_concepts(self, message: str) -> ConceptDetection:
        try:
            return await self.concept_detector.detect(message)
        except Exception as exc:
            logger.warning(f"Concept detection failed, continuing without concepts: {exc}")
            return ConceptDetection()

    async def _search(self, augmentation: AugmentationResult) -> List[Passage]:
        try:
            return await self.searcher.search(augmentation.augmented_query, augmentation.session_ref)
        except ChatError:
            raise
        except Exception as exc:
            raise ChatError(ChatErrorCode.SEARCH_FAILED, cause=exc) from exc

    async def _generate(
        self,
        messages: ChatMessages,
        passages: List[Passage],
        emitter: ResponseEmitter,
        thinking_mode: bool,
    ) -> StreamResult:
        try:
            return await process_stream(self.llm.stream(messages, thinking_mode), passages, emitter.send)
        except QuoteResolutionError as exc:
            raise ChatError(ChatErrorCode.QUOTE_PROCESSING_FAILED, cause=exc) from exc
        except ChatError:
            raise
        except Exception as exc:
            raise ChatError(ChatErrorCode.STREAM_FAILED, cause=exc) from exc

    def _log_usage(self, result: StreamResult, intent: str, passage_count: int) -> None:
        usage = result.usage
        if usage is None:
            return
        prompt_tokens = usage.prompt_tokens or 0
        completion_tokens = usage.completion_tokens or 0
        cost = estimate_cost(prompt_tokens, completion_tokens, self.settings)
        logger.info(
            f"[USAGE] model={self.settings.LLM_MODEL} intent={intent} passages={passage_count} "
            f"prompt={prompt_tokens} completion={completion_tokens} cost=${cost:.6f}"
        )

    async def _run(self, request: ChatRequest, emitter: ResponseEmitter) -> None:
        context = build_conversation_context(request.history)
        concepts = await self._detect_concepts(request.message)
        augmentation = await perform_augmentation(self.llm, request.message, concepts)
        logger.info(
            f"Augmentation: intent={augmentation.intent} confidence={augmentation.confidence} "
            f"turn={context.turn_count} session_ref={augmentation.session_ref}"
        )

        if augmentation.intent == "off-topic":
            await stream_off_topic_response(emitter.send)
            return

        passages = await self._search(augmentation)
        await emitter.send(
            EVENT_META,
            MetaEvent(
                quotes=passages,
                intent=augmentation.intent,
                confidence=augmentation.confidence,
                concepts=augmentation.concepts,
            ).model_dump(),
        )

        messages = build_llm_messages(
            request,
            augmentation,
            passages,
            context.turn_count,
            context.quotes_used,
            self.settings.RECENT_HISTORY_COUNT,
        )
        if self.settings.DEBUG_RAG:
            logger.debug(f"[PROMPT] {messages[-1]['content']}")

        result = await self._generate(messages, passages, emitter, request.thinking_mode)
        self._log_usage(result, augmentation.intent, len(passages))

        suggestions = await generate_suggestions(
            self.llm,
            request.message,
            result.full_output,
            augmentation.intent,
            context.turn_count,
        )
        if suggestions:
            await emitter.send(EVENT_SUGGESTIONS, SuggestionsEvent(items=suggestions).model_dump())

        await emitter.send(EVENT_DONE, {})
