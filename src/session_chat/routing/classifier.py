"""
Mode classification for incoming user messages.

Classifiers decide whether a message should move its session into the
specialized mode. Every implementation raises ClassificationError when it
cannot produce an answer; the orchestrator treats that as "no change".
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..clients import BaseClient, ClientError
from ..config.settings import AppSettings, get_settings
from ..core.errors import ClassificationError
from ..core.models import ClassificationResult, Message, ModelRequest
from ..utils.client_factory import ClientFactoryError, create_client_from_config

logger = logging.getLogger(__name__)

# Cache for repeated classifications, keyed by model and normalized text
_classification_cache: dict[str, ClassificationResult] = {}


class ModeClassifier(ABC):
    """Port for deciding whether a message triggers the specialized mode."""

    @abstractmethod
    async def classify(self, text: str) -> ClassificationResult:
        """
        Classify one user message.

        Raises:
            ClassificationError: If no answer could be produced
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the classifier."""
        pass


class LLMModeClassifier(ModeClassifier):
    """Classification through a small language model."""

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        client: BaseClient | None = None,
        confidence_threshold: float = 0.7,
        settings: AppSettings | None = None,
    ):
        """
        Initialize the classifier.

        Args:
            model: Classification model to use
            client: Client to call; created from configuration on first use if omitted
            confidence_threshold: Minimum confidence for a specialized answer to count
            settings: Settings used to create the client
        """
        self.model = model
        self.confidence_threshold = confidence_threshold
        self.settings = settings
        self._client = client
        self.classification_prompt = self._get_classification_prompt()

    def _get_classification_prompt(self) -> str:
        """Get multi-shot classification prompt with clear examples."""
        return """You decide whether a chat message should be handled in SPECIALIZED mode.

SPECIALIZED mode is for messages about emotional distress or mental health:
anxiety, depression, loneliness, grief, panic, burnout, feeling overwhelmed,
or asking for therapeutic support. Everything else is not specialized.

EXAMPLES:

Message: "I feel anxious all the time and can't sleep"
{"specialized": true, "confidence": 0.95}

Message: "Ever since the breakup I've been really lonely"
{"specialized": true, "confidence": 0.9}

Message: "I'm so overwhelmed at work I can't think straight"
{"specialized": true, "confidence": 0.85}

Message: "What's the weather like in Paris tomorrow?"
{"specialized": false, "confidence": 0.98}

Message: "Help me write a cover letter"
{"specialized": false, "confidence": 0.95}

Message: "The stock market had a panic sell-off today, explain why"
{"specialized": false, "confidence": 0.8}

OUTPUT FORMAT:
Respond with ONLY a JSON object in this exact format:
{"specialized": true, "confidence": 0.95}

Where confidence is a number between 0.0 and 1.0 indicating classification certainty.

Message: """

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            try:
                self._client = create_client_from_config(settings=self.settings)
            except ClientFactoryError as e:
                raise ClassificationError(f"Classifier client unavailable: {e}") from e
        return self._client

    async def classify(self, text: str) -> ClassificationResult:
        query = " ".join(text.split()).lower()
        cache_key = f"{self.model}|{query}"

        if cache_key in _classification_cache:
            logger.debug(f"Mode classification cache hit for message: {text[:50]}...")
            return _classification_cache[cache_key]

        request = ModelRequest(
            model=self.model,
            messages=[Message(role="user", content=f"{self.classification_prompt}{text}")],
            max_tokens=50,
            temperature=0.1,
            system_prompt="You are a precise message classifier. Always respond with valid JSON.",
        )

        try:
            response = await self.client.complete(request)
        except ClientError as e:
            logger.error(f"Mode classification request failed: {e}")
            raise ClassificationError(f"Classifier request failed: {e}") from e

        result = self._parse(response.content)
        _classification_cache[cache_key] = result

        logger.debug(
            f"Classified '{text[:50]}...' as specialized={result.is_specialized} "
            f"(confidence: {result.confidence:.2f})"
        )
        return result

    def _parse(self, content: str) -> ClassificationResult:
        payload = content.strip()
        # Models sometimes wrap JSON in a markdown fence
        if payload.startswith("```"):
            payload = payload.strip("`").removeprefix("json").strip()

        try:
            data = json.loads(payload)
            specialized = data["specialized"]
            confidence = float(data.get("confidence", 0.5))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ClassificationError(
                f"Failed to parse classification response: {e}",
                details={"content": content[:200]},
            ) from e

        if not isinstance(specialized, bool):
            raise ClassificationError(
                f"Classifier returned non-boolean 'specialized': {specialized!r}"
            )

        confidence = max(0.0, min(1.0, confidence))
        if specialized and confidence < self.confidence_threshold:
            logger.info(
                f"Low confidence ({confidence:.2f}) for specialized mode, treating as default"
            )
            specialized = False

        return ClassificationResult(is_specialized=specialized, confidence=confidence)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


class HttpModeClassifier(ModeClassifier):
    """Classification through a dedicated HTTP endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def classify(self, text: str) -> ClassificationResult:
        try:
            response = await self._http_client.post(self.endpoint, json={"text": text})
            response.raise_for_status()
            data: Any = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Classifier endpoint request failed: {e}")
            raise ClassificationError(f"Classifier endpoint request failed: {e}") from e
        except ValueError as e:
            raise ClassificationError(f"Classifier endpoint returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ClassificationError("Classifier endpoint returned a non-object payload")

        # "therapy" is the older name of the flag
        specialized = data.get("isSpecialized", data.get("therapy"))
        if not isinstance(specialized, bool):
            raise ClassificationError(
                "Classifier endpoint response is missing a boolean 'isSpecialized'",
                details={"response": data},
            )

        return ClassificationResult(is_specialized=specialized)

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()


class KeywordModeClassifier(ModeClassifier):
    """Offline classification by whole-word keyword match."""

    def __init__(self, keywords: list[str]):
        self.keywords = [k.strip().lower() for k in keywords if k and k.strip()]
        self._pattern = None
        if self.keywords:
            alternatives = "|".join(re.escape(k) for k in self.keywords)
            self._pattern = re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)

    async def classify(self, text: str) -> ClassificationResult:
        match = self._pattern.search(text) if self._pattern else None
        if match:
            logger.debug(f"Keyword '{match.group(0)}' matched, classifying as specialized")
        return ClassificationResult(is_specialized=match is not None)


def create_mode_classifier(
    settings: AppSettings | None = None, client: BaseClient | None = None
) -> ModeClassifier:
    """
    Pick a classifier from configuration.

    A configured classifier endpoint wins, then an LLM classifier when an API
    key (or client) is available, then the keyword fallback.
    """
    settings = settings or get_settings()
    routing = settings.routing

    if settings.classifier_endpoint:
        logger.debug(f"Using HTTP mode classifier at {settings.classifier_endpoint}")
        return HttpModeClassifier(
            settings.classifier_endpoint, timeout=routing.classification_timeout
        )

    if client is not None or settings.openrouter_api_key:
        logger.debug(f"Using LLM mode classifier with {routing.classifier_model}")
        return LLMModeClassifier(
            model=routing.classifier_model,
            client=client,
            confidence_threshold=routing.confidence_threshold,
            settings=settings,
        )

    logger.info("No API key configured, using keyword mode classifier")
    return KeywordModeClassifier(routing.specialized_keywords)


def clear_classification_cache() -> None:
    """Clear the mode classification cache (useful for testing)."""
    _classification_cache.clear()
    logger.debug("Mode classification cache cleared")
