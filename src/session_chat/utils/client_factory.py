"""
Build model provider clients from application settings.
"""

import logging
from typing import Any

from ..clients import BaseClient, create_client, get_supported_providers
from ..config.settings import AppSettings, get_settings

logger = logging.getLogger(__name__)


class ClientFactoryError(Exception):
    """The settings do not allow building the requested client."""

    pass


def provider_config(provider: str, settings: AppSettings) -> dict[str, Any]:
    """
    Client keyword arguments for ``provider`` taken from settings.

    Raises:
        ClientFactoryError: If the provider is unknown or not configured
    """
    if provider != "openrouter":
        raise ClientFactoryError(f"Unknown provider configuration: {provider}")

    if not settings.openrouter_api_key:
        raise ClientFactoryError(
            "OpenRouter API key not configured. Set OPENROUTER_API_KEY environment variable."
        )

    return {
        "api_key": settings.openrouter_api_key,
        "base_url": settings.api.base_url,
        "timeout": settings.api.timeout,
        "max_retries": settings.api.retries,
        "max_delay": settings.api.max_backoff,
    }


def create_client_from_config(
    provider: str = "openrouter",
    config_overrides: dict[str, Any] | None = None,
    settings: AppSettings | None = None,
) -> BaseClient:
    """
    Create a client for ``provider`` from settings.

    Args:
        provider: Registered provider name
        config_overrides: Keyword arguments that replace configured values
        settings: Settings to read (defaults to the global settings)

    Raises:
        ClientFactoryError: If the client cannot be created
    """
    if provider not in get_supported_providers():
        raise ClientFactoryError(f"Unsupported provider: {provider}")

    config = provider_config(provider, settings or get_settings())
    config.update(config_overrides or {})

    try:
        client = create_client(provider, **config)
    except ValueError as e:
        logger.error(f"Failed to create {provider} client: {e}")
        raise ClientFactoryError(f"Failed to create {provider} client: {e}") from e

    logger.debug(f"Created {provider} client")
    return client


def validate_provider_config(provider: str, settings: AppSettings | None = None) -> bool:
    """Whether ``provider`` has everything it needs in settings."""
    try:
        provider_config(provider, settings or get_settings())
    except ClientFactoryError:
        return False
    return True
