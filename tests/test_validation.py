import pytest

from app.modules.quotechat.services.validation import RequestValidationFailed, validate_chat_request
from fakes import make_settings

SETTINGS = make_settings()


def test_valid_request():
    req = validate_chat_request(
        {
            "message": "What is harvest?",
            "history": [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello", "quotesUsed": ["1.1", 3]},
            ],
            "thinking_mode": True,
        },
        SETTINGS,
    )
    assert req.message == "What is harvest?"
    assert req.thinking_mode is True
    assert req.history[1].quotes_used == ["1.1"]


def test_history_defaults_to_empty():
    assert validate_chat_request({"message": "hi"}, SETTINGS).history == []


@pytest.mark.parametrize(
    "body, reason",
    [
        ([], "JSON object"),
        ({}, "required"),
        ({"message": 5}, "required"),
        ({"message": ""}, "empty"),
        ({"message": "x" * 5001}, "too long"),
        ({"message": "hi", "history": "nope"}, "array"),
        ({"message": "hi", "history": [{"role": "user", "content": "x"}] * 21}, "History too long"),
        ({"message": "hi", "history": ["text"]}, "format"),
        ({"message": "hi", "history": [{"role": "system", "content": "x"}]}, "role"),
        ({"message": "hi", "history": [{"role": "user", "content": ""}]}, "content"),
        ({"message": "hi", "history": [{"role": "user", "content": "x" * 10001}]}, "too long"),
    ],
)
def test_invalid_requests(body, reason):
    with pytest.raises(RequestValidationFailed) as exc_info:
        validate_chat_request(body, SETTINGS)
    assert reason in str(exc_info.value)


def test_limits_are_inclusive():
    history = [{"role": "user", "content": "x" * 10000}] * 20
    req = validate_chat_request({"message": "x" * 5000, "history": history}, SETTINGS)
    assert len(req.history) == 20
