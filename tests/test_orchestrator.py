import json

import pytest

from app.modules.quotechat.schema.chat import ChatRequest, HistoryMessage, Passage
from app.modules.quotechat.services import stream_processor
from app.modules.quotechat.services.errors import ChatErrorCode, error_payload
from app.modules.quotechat.services.off_topic import OFF_TOPIC_SUGGESTIONS
from app.modules.quotechat.services.orchestrator import ChatOrchestrator
from app.modules.quotechat.services.response_cache import InMemoryResponseCache, drain_writers
from app.modules.quotechat.services.sse_encoder import EventChannel, SSESender
from app.modules.quotechat.services.suggestions import get_fallback_suggestions
from fakes import FakeLLM, FakeSearcher, make_settings, usage_fragment

RID = "5d0c2a1e-8b7f-4c3d-9e6a-1f2b3c4d5e6f"
PASSAGE = Passage(reference="1.1", text="Ra: I am Ra. Example.", url="https://example.org/1#1")
ANSWER = ["Answer: ", "{{QUOTE:", "1}}", " done.", usage_fragment(100, 20)]


def make_orchestrator(llm=None, searcher=None, cache=None, **settings_overrides):
    settings_overrides.setdefault("HEARTBEAT_INTERVAL_SECONDS", 3600)
    return ChatOrchestrator(
        llm=llm or FakeLLM(fragments=list(ANSWER)),
        searcher=searcher or FakeSearcher([PASSAGE]),
        cache=cache or InMemoryResponseCache(ttl_seconds=300),
        settings=make_settings(**settings_overrides),
    )


def parse_frames(frames):
    events = []
    for frame in frames:
        text = frame.decode("utf-8")
        if text.startswith(":"):
            continue
        name_line, data_line = text.strip().split("\n")
        events.append((name_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return events


async def run(orchestrator, request=None):
    channel = EventChannel()
    await orchestrator.execute(request or ChatRequest(message="What is love?"), RID, SSESender(channel))
    live = parse_frames([frame async for frame in channel.frames()])
    await drain_writers()
    cached = await orchestrator.cache.get(RID)
    return live, cached


def names(events):
    return [name for name, _ in events]


@pytest.mark.asyncio
async def test_happy_path_event_order_and_replay():
    orchestrator = make_orchestrator()
    live, cached = await run(orchestrator)

    assert names(live) == ["meta", "chunk", "chunk", "chunk", "suggestions", "done"]
    meta = live[0][1]
    assert meta["quotes"] == [PASSAGE.model_dump()]
    assert (meta["intent"], meta["confidence"]) == ("conceptual", "high")
    assert live[2][1] == {"type": "quote", "text": PASSAGE.text, "reference": "1.1", "url": PASSAGE.url}
    assert live[4][1] == {"items": ["One?", "Two?", "Three?"]}

    assert [(e.event, e.data) for e in cached.events] == live
    assert cached.complete


@pytest.mark.asyncio
async def test_prompt_carries_history_and_shown_quotes():
    llm = FakeLLM(fragments=["ok"])
    request = ChatRequest(
        message="Tell me more",
        history=[
            HistoryMessage(role="user", content="What is love?"),
            HistoryMessage(role="assistant", content="Love is...", quotes_used=["1.1"]),
        ],
        thinking_mode=True,
    )
    await run(make_orchestrator(llm=llm), request)

    call = llm.stream_calls[0]
    assert call["thinking_mode"] is True
    messages = call["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert "[Turn: 2]" in messages[-1]["content"]
    assert "QUOTES ALREADY SHOWN (do not reuse these references): 1.1" in messages[-1]["content"]


@pytest.mark.asyncio
async def test_off_topic_skips_search_and_generation():
    llm = FakeLLM(augmentation='{"intent": "off-topic", "augmented_query": "x", "confidence": "high"}')
    searcher = FakeSearcher([PASSAGE])
    live, cached = await run(make_orchestrator(llm=llm, searcher=searcher))

    assert live[0] == ("meta", {"quotes": [], "intent": "off-topic", "confidence": "high", "concepts": []})
    assert names(live)[-2:] == ["suggestions", "done"]
    assert live[-2][1] == {"items": OFF_TOPIC_SUGGESTIONS}
    assert searcher.calls == []
    assert llm.stream_calls == []
    assert cached.complete


@pytest.mark.asyncio
async def test_search_failure_ends_with_single_error():
    live, cached = await run(make_orchestrator(searcher=FakeSearcher(error=RuntimeError("qdrant down"))))

    assert live == [("error", error_payload(ChatErrorCode.SEARCH_FAILED))]
    assert [e.event for e in cached.events] == ["error"]
    assert not cached.complete


@pytest.mark.asyncio
async def test_stream_failure_after_partial_output():
    llm = FakeLLM(fragments=["partial ", "{{QUOTE:1}}"], stream_error=RuntimeError("connection reset"))
    live, cached = await run(make_orchestrator(llm=llm))

    assert names(live)[0] == "meta"
    assert live[-1] == ("error", error_payload(ChatErrorCode.STREAM_FAILED))
    assert "done" not in names(live)
    assert not cached.complete


@pytest.mark.asyncio
async def test_quote_failure_is_not_retryable(monkeypatch):
    def boom(text):
        raise ValueError("unparseable passage")

    monkeypatch.setattr(stream_processor, "format_whole_quote", boom)
    live, _ = await run(make_orchestrator())

    name, data = live[-1]
    assert name == "error"
    assert data["code"] == "QUOTE_PROCESSING_FAILED"
    assert data["retryable"] is False


@pytest.mark.asyncio
async def test_suggestion_failure_falls_back_and_still_finishes():
    llm = FakeLLM(fragments=list(ANSWER), suggestions="not json")
    live, cached = await run(make_orchestrator(llm=llm))

    assert names(live)[-2:] == ["suggestions", "done"]
    assert live[-2][1] == {"items": get_fallback_suggestions("conceptual", [])}
    assert cached.complete


@pytest.mark.asyncio
async def test_client_disconnect_does_not_stop_generation():
    orchestrator = make_orchestrator()
    channel = EventChannel()
    channel.abort()

    await orchestrator.execute(ChatRequest(message="What is love?"), RID, SSESender(channel))
    await drain_writers()

    cached = await orchestrator.cache.get(RID)
    assert names((e.event, e.data) for e in cached.events) == [
        "meta", "chunk", "chunk", "chunk", "suggestions", "done",
    ]
    assert cached.complete


@pytest.mark.asyncio
async def test_launch_runs_detached_until_idle():
    orchestrator = make_orchestrator()
    channel = EventChannel()

    orchestrator.launch(ChatRequest(message="What is love?"), RID, SSESender(channel))
    await orchestrator.wait_idle()
    await drain_writers()

    assert channel.closed
    live = parse_frames([frame async for frame in channel.frames()])
    assert names(live)[-1] == "done"
