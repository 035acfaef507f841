import pytest

from app.modules.quotechat.schema.chat import Passage
from app.modules.quotechat.schema.llm import StreamFragment
from app.modules.quotechat.services import stream_processor
from app.modules.quotechat.services.stream_processor import QuoteResolutionError, process_stream
from fakes import usage_fragment

PASSAGE = Passage(reference="1.1", text="Ra: I am Ra. Example.", url="u")
SECOND = Passage(reference="2.2", text="Ra: Second passage.", url="v")
RANGED = Passage(reference="3.3", text="Ra: First part.Second part.", url="w")


async def _fragments(items):
    for item in items:
        yield item if isinstance(item, StreamFragment) else StreamFragment(content=item)


async def run(items, passages):
    events = []

    async def emit(event, data):
        events.append((event, data))

    result = await process_stream(_fragments(items), passages, emit)
    return events, result


def text(content):
    return ("chunk", {"type": "text", "content": content})


def quote(passage, body=None):
    return (
        "chunk",
        {"type": "quote", "text": body or passage.text, "reference": passage.reference, "url": passage.url},
    )


@pytest.mark.asyncio
async def test_marker_split_across_fragments():
    """Here:/marker/end arrives in four pieces and yields text, quote, text"""
    events, result = await run(["Here: ", "{{QUOTE:", "1}}", " end."], [PASSAGE])
    assert events == [text("Here: "), quote(PASSAGE), text(" end.")]
    assert result.full_output == "Here: {{QUOTE:1}} end."


@pytest.mark.asyncio
async def test_out_of_range_marker_emits_nothing():
    events, _ = await run(["{{QUOTE:99}}"], [PASSAGE])
    assert events == []


@pytest.mark.asyncio
async def test_index_zero_is_dropped_and_text_stays_continuous():
    events, _ = await run(["before ", "{{QUOTE:0}}", "after"], [PASSAGE])
    assert events == [text("before "), text("after")]


@pytest.mark.asyncio
async def test_markers_are_one_indexed():
    events, _ = await run(["{{QUOTE:2}}{{QUOTE:1}}"], [PASSAGE, SECOND])
    assert events == [quote(SECOND), quote(PASSAGE)]


@pytest.mark.asyncio
@pytest.mark.parametrize("marker", ["{{QUOTE:1}}", "{{QUOTE:2:s1:s1}}", "{{QUOTE:3:s999:s999}}"])
async def test_split_invariance(marker):
    """Splitting a marker at any boundary gives the same events as sending it whole"""
    full = f"Intro text {marker} closing words."
    expected, _ = await run([full], [PASSAGE, SECOND, RANGED])

    start = full.index(marker)
    for cut in range(start + 1, start + len(marker)):
        events, _ = await run([full[:cut], full[cut:]], [PASSAGE, SECOND, RANGED])
        assert events == expected, cut


@pytest.mark.asyncio
async def test_character_by_character_stream():
    full = "A {{QUOTE:1}} B"
    events, _ = await run(list(full), [PASSAGE])
    assert events == [text("A "), quote(PASSAGE), text(" B")]


@pytest.mark.asyncio
async def test_no_blank_text_chunks():
    events, _ = await run(["  ", "{{QUOTE:1}}", "\n\n", "{{QUOTE:1}}", "   "], [PASSAGE])
    assert events == [quote(PASSAGE), quote(PASSAGE)]
    for event, data in events:
        if data["type"] == "text":
            assert data["content"].strip()


@pytest.mark.asyncio
async def test_truncated_marker_is_flushed_as_text():
    events, _ = await run(["Trailing ", "{{QUOTE:1"], [PASSAGE])
    assert events == [text("Trailing {{QUOTE:1")]


@pytest.mark.asyncio
async def test_malformed_marker_passes_through():
    events, _ = await run(["a {{QUOTE:x}} b"], [PASSAGE])
    assert events == [text("a {{QUOTE:x}} b")]


@pytest.mark.asyncio
async def test_cite_marker_is_not_substituted():
    events, _ = await run(["see {{CITE:", "1}} here"], [PASSAGE])
    assert events == [text("see {{CITE:1}} here")]


@pytest.mark.asyncio
async def test_sentence_range_quote_is_trimmed():
    events, _ = await run(["{{QUOTE:1:s2:s2}}"], [RANGED])
    assert events == [quote(RANGED, "...\n\nRa: Second part.")]


@pytest.mark.asyncio
async def test_latest_usage_wins():
    _, result = await run(["hi", usage_fragment(1, 2), usage_fragment(10, 20)], [])
    assert result.usage.prompt_tokens == 10
    assert result.usage.completion_tokens == 20


@pytest.mark.asyncio
async def test_formatting_failure_raises_quote_resolution_error(monkeypatch):
    def boom(text):
        raise RuntimeError("bad passage")

    monkeypatch.setattr(stream_processor, "format_whole_quote", boom)
    with pytest.raises(QuoteResolutionError):
        await run(["{{QUOTE:1}}"], [PASSAGE])


@pytest.mark.asyncio
async def test_whole_quote_keeps_paragraph_breaks():
    events, _ = await run(["{{QUOTE:1}}"], [RANGED])
    assert events == [quote(RANGED, "Ra: First part. \n\n Second part.")]


@pytest.mark.asyncio
async def test_overlong_sentence_number_is_plain_text():
    events, _ = await run(["a {{QUOTE:1:s10000", ":s1}} b"], [PASSAGE])
    assert events == [text("a {{QUOTE:1:s10000:s1}} b")]
