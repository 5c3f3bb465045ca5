"""
Chat completion client contract.

The mode classifier and the response generator reach models only through a
BaseClient, so transport details (credentials, status mapping, retries) stay
inside this package.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..core.models import ModelRequest, ModelResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ClientError(Exception):
    """A model provider call failed."""

    def __init__(
        self,
        message: str,
        provider: str,
        model: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        source = f"{self.provider}/{self.model}" if self.model else self.provider
        if self.status_code is not None:
            source = f"{source} HTTP {self.status_code}"
        return f"[{source}] {self.message}"


class AuthenticationError(ClientError):
    """Provider rejected the credentials."""

    pass


class RetryableError(ClientError):
    """Transient failure, the same request may succeed later."""

    pass


class RateLimitError(RetryableError):
    """Provider asked the caller to slow down."""

    def __init__(
        self,
        message: str,
        provider: str,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, provider, **kwargs)
        self.retry_after = retry_after


class BaseClient(ABC):
    """
    Chat completion client.

    Subclasses set ``provider_name`` and implement ``complete``. Retries are
    opt-in: with the default ``max_retries=0`` every call is attempted once.
    """

    provider_name = "base"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

        logger.debug(
            f"{self.provider_name} client ready (timeout={timeout}s, retries={max_retries})"
        )

    @abstractmethod
    async def complete(self, request: ModelRequest) -> ModelResponse:
        """
        Run one chat completion.

        Raises:
            ClientError: On any provider or transport failure
        """
        pass

    async def retry_with_backoff(
        self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Await ``operation``, retrying RetryableError up to ``max_retries`` times.

        Any other exception propagates on the first attempt.
        """
        attempt = 0
        while True:
            try:
                return await operation(*args, **kwargs)
            except RetryableError as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff_delay(attempt, e)
                attempt += 1
                logger.warning(
                    f"{self.provider_name} attempt {attempt}/{self.max_retries + 1} "
                    f"failed: {e}. Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

    def backoff_delay(self, attempt: int, error: RetryableError | None = None) -> float:
        """Seconds to wait before the next attempt, capped at ``max_delay``."""
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(float(error.retry_after), self.max_delay)
        return min(self.base_delay * (2**attempt), self.max_delay)

    async def close(self) -> None:
        """Release network resources held by the client."""
        pass

    async def __aenter__(self) -> "BaseClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(provider={self.provider_name!r}, "
            f"max_retries={self.max_retries})"
        )
