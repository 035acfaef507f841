import pytest

from app.modules.quotechat.schema.chat import ConceptDetection, SessionReference
from app.modules.quotechat.services.augmentation import (
    augment_query,
    build_query_with_concepts,
    parse_session_reference,
    perform_augmentation,
)
from app.modules.quotechat.services.retry import AUGMENTATION_RETRY
from fakes import FakeLLM


@pytest.mark.parametrize(
    "message, expected",
    [
        ("What does session 12 question 3 say?", SessionReference(session=12, question=3)),
        ("session 12, q 3", SessionReference(session=12, question=3)),
        ("Show me 49.8", SessionReference(session=49, question=8)),
        ("Summarize Session 49", SessionReference(session=49)),
        ("What is love?", None),
        ("session 400", None),
        ("version 1.2.3", None),
    ],
)
def test_parse_session_reference(message, expected):
    assert parse_session_reference(message) == expected


def test_build_query_with_concepts():
    assert build_query_with_concepts("q", []) == "q"
    terms = ["a", "b", "c", "d", "e", "f"]
    assert build_query_with_concepts("q", terms) == "q [Related concepts: a, b, c, d, e]"


@pytest.mark.asyncio
async def test_augment_query_parses_model_json():
    llm = FakeLLM(augmentation='{"intent": "practical", "augmented_query": "meditation", "confidence": "high"}')
    result = await augment_query(llm, "how do I meditate")
    assert (result.intent, result.augmented_query, result.confidence) == ("practical", "meditation", "high")
    assert llm.complete_retries == [AUGMENTATION_RETRY]


@pytest.mark.asyncio
async def test_invalid_intent_and_confidence_get_defaults():
    llm = FakeLLM(augmentation='{"intent": "weird", "augmented_query": "", "confidence": "sure"}')
    result = await augment_query(llm, "original")
    assert (result.intent, result.augmented_query, result.confidence) == ("conceptual", "original", "medium")


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", ["not json", '{"augmented_query": "x"}'])
async def test_unparseable_reply_falls_back(reply):
    result = await augment_query(FakeLLM(augmentation=reply), "original")
    assert (result.intent, result.augmented_query, result.confidence) == ("conceptual", "original", "low")


@pytest.mark.asyncio
async def test_provider_error_falls_back():
    result = await augment_query(FakeLLM(complete_error=TimeoutError()), "original")
    assert result.confidence == "low"


@pytest.mark.asyncio
async def test_session_reference_forces_quote_search():
    llm = FakeLLM(augmentation='{"intent": "conceptual", "augmented_query": "x", "confidence": "low"}')
    result = await perform_augmentation(llm, "What happens in session 17?", ConceptDetection(concepts=["harvest"]))
    assert result.intent == "quote-search"
    assert result.confidence == "high"
    assert result.session_ref == SessionReference(session=17)
    assert result.augmented_query == "session 17 Ra Material"
    assert result.concepts == ["harvest"]


@pytest.mark.asyncio
async def test_concept_terms_reach_the_model():
    llm = FakeLLM()
    await perform_augmentation(llm, "what is it", ConceptDetection(search_terms=["veil"]))
    assert llm.complete_calls[0][1]["content"] == "MESSAGE: what is it [Related concepts: veil]"
