import inspect
from types import SimpleNamespace

import pytest

from app.modules.quotechat.schema.llm import (
    fragment_from_chunk,
    parse_augmentation_response,
    parse_suggestion_response,
)
from app.modules.quotechat.services.errors import ChatError, ChatErrorCode
from app.modules.quotechat.services.interfaces import CompletionProvider
from app.modules.quotechat.services.llm import OpenAICompletionProvider, estimate_cost
from fakes import make_settings


def chunk(content=None, usage=None, choices=True):
    data = {"choices": [{"delta": {"content": content}}] if choices else [], "usage": usage}
    return data


def test_fragment_from_content_chunk():
    parsed = fragment_from_chunk(chunk("Hello"))
    assert parsed.ok
    assert parsed.value.content == "Hello"
    assert parsed.value.usage is None


def test_fragment_from_usage_only_chunk():
    parsed = fragment_from_chunk(chunk(choices=False, usage={"prompt_tokens": 5, "completion_tokens": 7}))
    assert parsed.ok
    assert parsed.value.content == ""
    assert parsed.value.usage.completion_tokens == 7


@pytest.mark.parametrize(
    "raw",
    [
        "not a chunk",
        {"choices": ["x"]},
        {"choices": [{"delta": "x"}]},
        {"choices": [{"delta": {"content": 5}}]},
        {"choices": [], "usage": {"prompt_tokens": "many"}},
    ],
)
def test_malformed_chunks_are_tagged_invalid(raw):
    parsed = fragment_from_chunk(raw)
    assert not parsed.ok
    assert parsed.value is None


def test_parse_payloads():
    assert parse_augmentation_response('{"intent": "meta"}').value.confidence == "medium"
    assert not parse_augmentation_response("{").ok
    assert parse_suggestion_response('{"suggestions": ["a"]}').value.suggestions == ["a"]


def test_estimate_cost():
    settings = make_settings(INPUT_COST_PER_1M=1.0, OUTPUT_COST_PER_1M=4.0)
    assert estimate_cost(1_000_000, 500_000, settings) == pytest.approx(3.0)


class FakeCompletions:
    def __init__(self, stream_chunks=None, reply="{}", error=None):
        self.stream_chunks = stream_chunks or []
        self.reply = reply
        self.error = error
        self.kwargs = []

    async def create(self, **kwargs):
        self.kwargs.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            return self._iterate()
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    async def _iterate(self):
        for item in self.stream_chunks:
            yield item


def provider(completions, **settings_overrides):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICompletionProvider(client, make_settings(**settings_overrides))


@pytest.mark.asyncio
async def test_stream_validates_chunks_and_skips_bad_ones():
    completions = FakeCompletions(
        stream_chunks=[chunk("Hi "), {"choices": [{"delta": "bad"}]}, chunk("there"), chunk(choices=False, usage={"total_tokens": 3})]
    )
    fragments = [f async for f in provider(completions).stream([{"role": "user", "content": "q"}], thinking_mode=True)]
    assert [f.content for f in fragments] == ["Hi ", "there", ""]
    assert fragments[-1].usage.total_tokens == 3

    sent = completions.kwargs[0]
    assert sent["stream"] is True
    assert sent["stream_options"] == {"include_usage": True}
    assert sent["reasoning_effort"] == "high"


@pytest.mark.asyncio
async def test_stream_open_failure_is_stream_failed():
    completions = FakeCompletions(error=RuntimeError("down"))
    with pytest.raises(ChatError) as exc_info:
        async for _ in provider(completions).stream([]):
            pass
    assert exc_info.value.code is ChatErrorCode.STREAM_FAILED


@pytest.mark.asyncio
async def test_complete_returns_message_content_without_reasoning_for_older_models():
    completions = FakeCompletions(reply='{"ok": true}')
    text = await provider(completions, LLM_MODEL="gpt-4o-mini").complete([{"role": "user", "content": "q"}])
    assert text == '{"ok": true}'
    assert "reasoning_effort" not in completions.kwargs[0]
    assert completions.kwargs[0]["response_format"] == {"type": "json_object"}


def test_provider_matches_completion_protocol_signature():
    for name in ("stream", "complete"):
        expected = inspect.signature(getattr(CompletionProvider, name)).parameters
        actual = inspect.signature(getattr(OpenAICompletionProvider, name)).parameters
        assert list(actual) == list(expected), name
    assert "retry" in inspect.signature(CompletionProvider.complete).parameters
