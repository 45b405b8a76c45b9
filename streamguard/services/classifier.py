"""
StreamGuard - Message Classifier
================================

Adapter boundary between the moderation engine and an external
toxicity/sentiment classification service.

DESIGN:
    The engine only ever sees a ClassifierResult or None. Everything that
    can go wrong at the boundary (missing key, HTTP errors, slow responses,
    malformed JSON, out-of-range scores) is turned into None by
    GuardedClassifier, so moderation fails open: a broken classifier never
    causes a punishment and never blocks the other violation checks.

    - ClassifierResult: strict pydantic decode of the service response
    - Classifier: protocol any backend implements
    - OpenAIClassifier: chat-completion backed implementation
    - GuardedClassifier: timeout + circuit breaker + TTL cache wrapper
"""

import asyncio
import hashlib
from datetime import timedelta
from typing import Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI, OpenAIError
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from streamguard.core.errors import ClassifierError
from streamguard.core.logger import logger
from streamguard.utils.cache import TTLCache
from streamguard.utils.circuit_breaker import CircuitBreaker, CircuitOpenError


# =============================================================================
# Constants
# =============================================================================

MAX_MESSAGE_LENGTH = 500
MAX_TOKENS = 150
TEMPERATURE = 0.2

CLASSIFICATION_CACHE_SIZE = 500
CLASSIFICATION_CACHE_TTL = timedelta(minutes=10)

SYSTEM_PROMPT = (
    "You are a chat moderation classifier for a live stream. "
    "Rate the toxicity of the user's message and name its dominant emotion. "
    "Respond with ONLY a JSON object, no markdown: "
    '{"toxicity": <number 0-1>, "emotion": "<anger|sadness|joy|fear|neutral>"}'
)

USER_PROMPT_TEMPLATE = 'Message from {username}: "{message}"'


# =============================================================================
# Result Model
# =============================================================================

class ClassifierResult(BaseModel):
    """
    Decoded classifier output.

    Either toxicity (0..1) or sentiment (-1..1) must be present. A strongly
    negative sentiment counts as toxicity of the same magnitude.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    toxicity: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("toxicity", "toxicityScore", "toxicity_score"),
    )
    sentiment: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    emotion: str = "neutral"

    @model_validator(mode="after")
    def _require_score(self) -> "ClassifierResult":
        if self.toxicity is None and self.sentiment is None:
            raise ValueError("classifier result has neither toxicity nor sentiment")
        return self

    @property
    def toxicity_score(self) -> float:
        """Toxicity on a 0..1 scale regardless of which field the backend filled."""
        if self.toxicity is not None:
            return self.toxicity
        return max(0.0, -self.sentiment)


def decode_classifier_response(text: str) -> ClassifierResult:
    """
    Strictly decode a classifier JSON response.

    Markdown code fences around the JSON are tolerated; anything else that
    is not a valid object with an in-range score is rejected.

    Raises:
        ClassifierError: If the text cannot be decoded.
    """
    json_text = text.strip()
    if json_text.startswith("```"):
        parts = json_text.split("```")
        if len(parts) >= 2:
            json_text = parts[1]
            if json_text.startswith("json"):
                json_text = json_text[4:]
            json_text = json_text.strip()

    try:
        return ClassifierResult.model_validate_json(json_text)
    except ValidationError as e:
        raise ClassifierError(f"Malformed classifier response: {e.error_count()} error(s)") from e


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class Classifier(Protocol):
    """Anything that can classify one chat message."""

    async def classify(self, message: str, username: str) -> ClassifierResult:
        """Classify a message; may raise on failure."""
        ...


# =============================================================================
# OpenAI Backend
# =============================================================================

class OpenAIClassifier:
    """
    OpenAI-powered toxicity classifier.

    Attributes:
        model: Chat model name.
        enabled: Whether an API key was supplied.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        request_timeout: float = 10.0,
    ) -> None:
        self.model = model
        self._client: Optional[AsyncOpenAI] = None

        if not api_key:
            logger.warning("Classifier Disabled", [
                ("Reason", "OPENAI_API_KEY not set"),
            ])
            return

        self._client = AsyncOpenAI(api_key=api_key, timeout=request_timeout, max_retries=1)
        logger.tree("Classifier Initialized", [
            ("Model", model),
            ("Max Tokens", str(MAX_TOKENS)),
            ("Temperature", str(TEMPERATURE)),
        ], emoji="🤖")

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def classify(self, message: str, username: str) -> ClassifierResult:
        """
        Classify message content.

        Raises:
            ClassifierError: If disabled, the API call fails, or the
                response cannot be decoded.
        """
        if self._client is None:
            raise ClassifierError("Classifier disabled")

        if len(message) > MAX_MESSAGE_LENGTH:
            message = message[:MAX_MESSAGE_LENGTH] + "..."

        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_PROMPT_TEMPLATE.format(
                        username=username, message=message,
                    )},
                ],
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
            )
        except OpenAIError as e:
            raise ClassifierError(f"OpenAI request failed: {type(e).__name__}") from e

        if not completion.choices or not completion.choices[0].message.content:
            raise ClassifierError("Empty classifier response")

        return decode_classifier_response(completion.choices[0].message.content)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


# =============================================================================
# Guarded Wrapper
# =============================================================================

class GuardedClassifier:
    """
    Fail-open wrapper around any Classifier.

    classify() never raises: timeouts, open circuit, backend errors and
    decode failures all yield None.
    """

    def __init__(
        self,
        classifier: Optional[Classifier],
        timeout: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
        cache_ttl: timedelta = CLASSIFICATION_CACHE_TTL,
        cache_size: int = CLASSIFICATION_CACHE_SIZE,
    ) -> None:
        self._classifier = classifier
        self._timeout = timeout
        self._breaker = breaker or CircuitBreaker("classifier")
        self._cache: TTLCache[str, ClassifierResult] = TTLCache(cache_ttl, cache_size)

    @property
    def enabled(self) -> bool:
        if self._classifier is None:
            return False
        return getattr(self._classifier, "enabled", True)

    def cleanup(self) -> int:
        """Drop expired cached results. Returns how many were removed."""
        return self._cache.cleanup_expired()

    @staticmethod
    def _cache_key(message: str, username: str) -> str:
        return hashlib.sha256(f"{username}:{message}".encode("utf-8")).hexdigest()

    async def classify(self, message: str, username: str) -> Optional[ClassifierResult]:
        """Classify with timeout, breaker and cache; None on any failure."""
        if not self.enabled:
            return None

        key = self._cache_key(message, username)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            result = await self._breaker.call(self._classify_with_timeout, message, username)
        except CircuitOpenError:
            return None
        except asyncio.TimeoutError:
            logger.warning("Classifier Timeout", [
                ("User", username),
                ("Timeout", f"{self._timeout:g}s"),
            ])
            return None
        except ClassifierError as e:
            logger.warning("Classifier Failed", [
                ("User", username),
                ("Error", str(e)[:100]),
            ])
            return None
        except Exception as e:
            logger.error("Classifier Crashed", [
                ("User", username),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:100]),
            ])
            return None

        if not isinstance(result, ClassifierResult):
            logger.warning("Classifier Returned Unexpected Type", [
                ("Type", type(result).__name__),
            ])
            return None

        self._cache.set(key, result)
        return result

    async def _classify_with_timeout(self, message: str, username: str) -> ClassifierResult:
        return await asyncio.wait_for(
            self._classifier.classify(message, username),
            timeout=self._timeout,
        )


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "ClassifierResult",
    "Classifier",
    "OpenAIClassifier",
    "GuardedClassifier",
    "decode_classifier_response",
]
