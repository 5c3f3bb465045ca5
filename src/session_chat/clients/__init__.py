"""
Model provider clients.

Providers are registered by name in ``PROVIDERS``; ``create_client`` builds
one from keyword configuration.
"""

from typing import Any

from .base import (
    AuthenticationError,
    BaseClient,
    ClientError,
    RateLimitError,
    RetryableError,
)
from .openrouter import OpenRouterClient

__all__ = [
    "BaseClient",
    "ClientError",
    "AuthenticationError",
    "RateLimitError",
    "RetryableError",
    "OpenRouterClient",
    "PROVIDERS",
    "create_client",
    "get_supported_providers",
]

PROVIDERS: dict[str, type[BaseClient]] = {
    "openrouter": OpenRouterClient,
}


def create_client(provider: str, **kwargs: Any) -> BaseClient:
    """
    Instantiate the client registered for ``provider``.

    Raises:
        ValueError: If the provider is unknown or rejects the configuration
    """
    client_cls = PROVIDERS.get(provider.strip().lower())
    if client_cls is None:
        raise ValueError(f"Unsupported provider: {provider}")
    return client_cls(**kwargs)


def get_supported_providers() -> list[str]:
    return sorted(PROVIDERS)
