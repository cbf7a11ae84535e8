from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors, types

import analysis
from analysis import (
    EMOTION_LABELS,
    SAFETY_SETTINGS,
    ConfigurationError,
    ContentBlockedError,
    MalformedResponseError,
    ProviderError,
    RateLimitError,
    TransportError,
    build_prompt,
    request_analysis,
    validate_submission,
)
from tests.conftest import FakeGenaiClient

DREAM = "I was walking across a glass bridge over a dark ocean, and it began to crack."


def _api_error(cls, code, status):
    return cls(code, {"error": {"code": code, "message": status.lower(), "status": status}})


def test_prompt_contains_dream_and_emotions_in_order():
    prompt = build_prompt(DREAM, ["Fear", "Confusion", "Peace"])

    assert DREAM in prompt
    assert "Fear, Confusion, Peace" in prompt


def test_emotion_labels():
    assert EMOTION_LABELS == [
        "Joy", "Fear", "Sadness", "Anxiety", "Peace", "Confusion", "Excitement", "Anger",
    ]


@pytest.mark.parametrize("dream, emotions", [
    ("", ["Joy"]),
    ("   ", ["Joy"]),
    (DREAM, []),
    (DREAM, ["Nostalgia"]),
    (DREAM, [1]),
])
def test_validate_submission_rejects_unusable_input(dream, emotions):
    assert validate_submission(dream, emotions)


def test_validate_submission_accepts_good_input():
    assert validate_submission(DREAM, ["Anxiety", "Fear"]) is None


def test_safety_settings_block_medium_and_above():
    categories = {s.category for s in SAFETY_SETTINGS}

    assert categories == {
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    }
    assert all(
        s.threshold == types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE for s in SAFETY_SETTINGS
    )


def test_request_analysis_returns_raw_text():
    raw = "**Interpretation**: The bridge may reflect a fragile transition."
    client = FakeGenaiClient(text=raw)

    result = request_analysis(DREAM, ["Fear"], client=client)

    assert result == raw
    assert len(client.models.calls) == 1
    call = client.models.calls[0]
    assert call["model"] == analysis.config.GEMINI_MODEL
    assert call["contents"] == build_prompt(DREAM, ["Fear"])
    assert call["config"].safety_settings == SAFETY_SETTINGS


def test_rate_limit_is_classified():
    client = FakeGenaiClient(error=_api_error(errors.ClientError, 429, "RESOURCE_EXHAUSTED"))

    with pytest.raises(RateLimitError) as exc_info:
        request_analysis(DREAM, ["Fear"], client=client)
    assert exc_info.value.kind == "rate_limited"
    assert exc_info.value.retryable


def test_server_error_is_retryable_provider_error():
    client = FakeGenaiClient(error=_api_error(errors.ServerError, 503, "UNAVAILABLE"))

    with pytest.raises(ProviderError) as exc_info:
        request_analysis(DREAM, ["Fear"], client=client)
    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable


def test_bad_key_is_terminal_provider_error():
    client = FakeGenaiClient(error=_api_error(errors.ClientError, 403, "PERMISSION_DENIED"))

    with pytest.raises(ProviderError) as exc_info:
        request_analysis(DREAM, ["Fear"], client=client)
    assert not exc_info.value.retryable


def test_network_failure_is_transport_error():
    client = FakeGenaiClient(error=httpx.ConnectError("connection refused"))

    with pytest.raises(TransportError):
        request_analysis(DREAM, ["Fear"], client=client)


def test_blocked_prompt_is_content_blocked():
    response = SimpleNamespace(
        text=None,
        prompt_feedback=SimpleNamespace(block_reason="SAFETY"),
        candidates=[],
    )
    client = FakeGenaiClient(response=response)

    with pytest.raises(ContentBlockedError) as exc_info:
        request_analysis(DREAM, ["Fear"], client=client)
    assert not exc_info.value.retryable


def test_blocked_candidate_is_content_blocked():
    response = SimpleNamespace(
        text=None,
        prompt_feedback=None,
        candidates=[SimpleNamespace(finish_reason=types.FinishReason.SAFETY)],
    )

    with pytest.raises(ContentBlockedError):
        request_analysis(DREAM, ["Fear"], client=FakeGenaiClient(response=response))


def test_empty_text_is_malformed():
    with pytest.raises(MalformedResponseError):
        request_analysis(DREAM, ["Fear"], client=FakeGenaiClient(text="   "))


def test_unknown_api_response_is_malformed():
    client = FakeGenaiClient(error=errors.UnknownApiResponseError("unexpected payload"))

    with pytest.raises(MalformedResponseError):
        request_analysis(DREAM, ["Fear"], client=client)


def test_missing_api_key_is_configuration_error(monkeypatch):
    def no_key(api_key=None):
        raise ValueError("No API key was provided")

    monkeypatch.setattr(analysis, "_client", None)
    monkeypatch.setattr(analysis.genai, "Client", no_key)

    with pytest.raises(ConfigurationError) as exc_info:
        request_analysis(DREAM, ["Fear"])
    assert exc_info.value.kind == "configuration"
    assert not exc_info.value.retryable
