"""
Response generation for chat turns.

The generator picks a model and parameters from the session mode's profile
and asks it to continue the conversation.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..clients import BaseClient, ClientError
from ..config.settings import AppSettings, RoutingConfig, get_settings
from ..core.errors import GenerationError
from ..core.models import (
    ChatMessage,
    GenerationResult,
    Message,
    ModelRequest,
    SessionMode,
)
from ..utils.client_factory import ClientFactoryError, create_client_from_config

logger = logging.getLogger(__name__)


class ResponseGenerator(ABC):
    """Port for producing the assistant reply of a turn."""

    @abstractmethod
    async def generate(
        self, mode: SessionMode, history: Sequence[ChatMessage]
    ) -> GenerationResult:
        """
        Produce a reply to the conversation so far.

        Args:
            mode: Current session mode
            history: Ordered transcript ending with the latest user message

        Raises:
            GenerationError: If no reply could be produced
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the generator."""
        pass


class LLMResponseGenerator(ResponseGenerator):
    """Generates replies through a chat completion client."""

    def __init__(
        self,
        routing: RoutingConfig,
        client: BaseClient | None = None,
        client_factory: Callable[[], BaseClient] = create_client_from_config,
    ):
        self.routing = routing
        self._client = client
        self._client_factory = client_factory

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except ClientFactoryError as e:
                raise GenerationError(f"Generation client unavailable: {e}") from e
        return self._client

    async def generate(
        self, mode: SessionMode, history: Sequence[ChatMessage]
    ) -> GenerationResult:
        profile = self.routing.profile_for(mode)
        recent = [m for m in history if not m.is_blank][-self.routing.max_history_messages:]

        try:
            request = ModelRequest(
                model=profile.model,
                messages=[Message(role=m.role.value, content=m.content) for m in recent],
                max_tokens=profile.max_tokens,
                temperature=profile.temperature,
                system_prompt=profile.system_prompt,
                metadata={"mode": mode.value},
            )
        except PydanticValidationError as e:
            raise GenerationError(f"Invalid generation request: {e}") from e

        logger.debug(
            f"Generating {mode.value} reply with {profile.model} "
            f"from {len(recent)} message(s)"
        )

        try:
            response = await self.client.complete(request)
        except ClientError as e:
            logger.error(f"Response generation with {profile.model} failed: {e}")
            raise GenerationError(
                f"Response generation failed: {e}", details={"model": profile.model}
            ) from e

        content = response.content.strip()
        if not content:
            raise GenerationError(
                f"Model {response.model} returned an empty reply",
                details={"model": response.model},
            )

        return GenerationResult(content=content, model=response.model)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def create_response_generator(
    settings: AppSettings | None = None, client: BaseClient | None = None
) -> ResponseGenerator:
    """Build the LLM generator from configuration."""
    settings = settings or get_settings()
    return LLMResponseGenerator(
        settings.routing,
        client=client,
        client_factory=lambda: create_client_from_config(settings=settings),
    )
