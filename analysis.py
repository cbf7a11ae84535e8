"""
Dream analysis requests against the Gemini completion API.

One prompt in, raw text out. Formatting for display lives in normalizer.py.
"""

import logging
from enum import Enum
from typing import Any, List, Optional, Sequence

import httpx
from google import genai
from google.genai import errors, types

import config

log = logging.getLogger(__name__)


class Emotion(str, Enum):
    JOY = "Joy"
    FEAR = "Fear"
    SADNESS = "Sadness"
    ANXIETY = "Anxiety"
    PEACE = "Peace"
    CONFUSION = "Confusion"
    EXCITEMENT = "Excitement"
    ANGER = "Anger"


EMOTION_LABELS: List[str] = [e.value for e in Emotion]


# ---------------------------
# Errors
# ---------------------------

class AnalysisError(Exception):
    """Base class for failed analysis requests."""

    kind = "unknown"
    retryable = False
    user_message = "We couldn't analyze your dream right now. Please try again."


class TransportError(AnalysisError):
    kind = "transport"
    retryable = True
    user_message = "We couldn't reach the analysis service. Please try again in a moment."


class RateLimitError(AnalysisError):
    kind = "rate_limited"
    retryable = True
    user_message = "The analysis service is busy. Please wait a minute and try again."


class ContentBlockedError(AnalysisError):
    kind = "content_blocked"
    user_message = (
        "This dream couldn't be analyzed because it tripped the content safety "
        "filters. Try rephrasing it."
    )


class MalformedResponseError(AnalysisError):
    kind = "malformed_response"
    retryable = True
    user_message = "The analysis came back empty. Please try again."


class ConfigurationError(AnalysisError):
    """The provider client could not be built, e.g. no API key is set."""

    kind = "configuration"


class ProviderError(AnalysisError):
    """The provider rejected the call for a reason other than quota or safety."""

    kind = "provider"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = status_code is not None and status_code >= 500


# ---------------------------
# Model configuration
# ---------------------------

_SAFETY_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)

SAFETY_SETTINGS = [
    types.SafetySetting(
        category=category,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    )
    for category in _SAFETY_CATEGORIES
]

_BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}

_client = None


def _get_client():
    """Lazily build the Gemini client so imports work without credentials."""
    global _client
    if _client is None:
        _client = genai.Client(api_key=config.GOOGLE_API_KEY)
    return _client


# ---------------------------
# Prompt
# ---------------------------

PROMPT_TEMPLATE = """You are a thoughtful dream analyst grounded in psychology.
Interpret the dream below through three lenses, in this order:
1. Psychological interpretation: what the dream may say about the dreamer's current inner life.
2. Symbolism: the key images or events and what they could represent.
3. Emotional reflection: how the emotions the dreamer felt connect to the dream.

Keep the whole answer under {word_target} words. Use tentative language
("may suggest", "could reflect") and avoid fortune-telling.

Emotions the dreamer felt: {emotions}

Dream: {dream}"""


def build_prompt(dream_text: str, emotions: Sequence[str]) -> str:
    return PROMPT_TEMPLATE.format(
        word_target=config.ANALYSIS_WORD_TARGET,
        emotions=", ".join(emotions),
        dream=dream_text,
    )


def validate_submission(dream_text: str, emotions: Sequence[str]) -> Optional[str]:
    """Return an error message for unusable input, or None if it can be sent."""
    if not dream_text or not dream_text.strip():
        return "Please describe your dream before analyzing."
    if not emotions:
        return "Please select at least one emotion you felt."
    unknown = [e for e in emotions if not isinstance(e, str) or e not in EMOTION_LABELS]
    if unknown:
        return f"Unknown emotion: {', '.join(map(str, unknown))}"
    return None


# ---------------------------
# Model execution
# ---------------------------

def _reason_name(value: Any) -> str:
    if value is None:
        return ""
    return getattr(value, "name", None) or str(value)


def _extract_text(response: Any) -> str:
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = _reason_name(getattr(feedback, "block_reason", None))
    if block_reason:
        raise ContentBlockedError(f"Prompt blocked: {block_reason}")

    candidates = getattr(response, "candidates", None) or []
    if candidates:
        finish_reason = _reason_name(getattr(candidates[0], "finish_reason", None))
        if finish_reason in _BLOCKED_FINISH_REASONS:
            raise ContentBlockedError(f"Response blocked: {finish_reason}")

    text = getattr(response, "text", None)
    if not text or not text.strip():
        raise MalformedResponseError("Model returned no text")
    return text


def request_analysis(dream_text: str, emotions: Sequence[str], client=None) -> str:
    """
    Ask the model to interpret a dream.

    Makes exactly one provider call and returns the completion text as-is.
    Raises an AnalysisError subclass describing why the call failed.
    """
    prompt = build_prompt(dream_text, emotions)

    try:
        client = client or _get_client()
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    try:
        response = client.models.generate_content(
            model=config.GEMINI_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(safety_settings=SAFETY_SETTINGS),
        )
    except errors.APIError as exc:
        if exc.code == 429:
            raise RateLimitError(str(exc)) from exc
        raise ProviderError(str(exc), status_code=exc.code) from exc
    except errors.UnknownApiResponseError as exc:
        raise MalformedResponseError(str(exc)) from exc
    except httpx.TransportError as exc:
        raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    text = _extract_text(response)
    log.info("Analysis received (%d chars, model=%s)", len(text), config.GEMINI_MODEL)
    return text
