"""
OpenRouter chat completions client.

Speaks the OpenAI-compatible ``/chat/completions`` protocol, so any endpoint
implementing it can be used by overriding ``base_url``.
"""

import logging
from typing import Any

import httpx

from ..core.models import ModelRequest, ModelResponse, TokenUsage
from .base import (
    AuthenticationError,
    BaseClient,
    ClientError,
    RateLimitError,
    RetryableError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
RETRYABLE_STATUS_CODES = frozenset({408, 502, 503})


def _retry_after(headers: Any) -> float | None:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OpenRouterClient(BaseClient):
    """Client for OpenRouter or another OpenAI-compatible endpoint."""

    provider_name = "openrouter"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        app_title: str = "Session Chat",
        **kwargs: Any,
    ) -> None:
        if not api_key:
            raise ValueError("OpenRouter API key is required")
        super().__init__(api_key=api_key, **kwargs)

        if not api_key.startswith("sk-or-"):
            logger.warning("OpenRouter API key should start with 'sk-or-'")

        self.base_url = base_url
        self._http_client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}", "X-Title": app_title},
            timeout=httpx.Timeout(self.timeout),
        )

    async def complete(self, request: ModelRequest) -> ModelResponse:
        payload = self.build_payload(request)

        try:
            data = await self.retry_with_backoff(
                self._post_completion, payload, request.model
            )
        except ClientError as e:
            logger.error(f"OpenRouter completion failed: {e}")
            raise

        return self._to_response(data, request)

    @staticmethod
    def build_payload(request: ModelRequest) -> dict[str, Any]:
        """Chat completions body for a request; unset sampling fields are omitted."""
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in request.messages)

        payload: dict[str, Any] = {"model": request.model, "messages": messages}
        for name in ("max_tokens", "temperature"):
            value = getattr(request, name)
            if value is not None:
                payload[name] = value
        return payload

    async def _post_completion(self, payload: dict[str, Any], model: str) -> dict[str, Any]:
        try:
            response = await self._http_client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise RetryableError(
                f"Request timed out: {e}", self.provider_name, model=model
            ) from e
        except httpx.HTTPError as e:
            raise ClientError(
                f"Transport error: {e}",
                self.provider_name,
                model=model,
                details={"error_type": type(e).__name__},
            ) from e

        if response.status_code != 200:
            raise self._error_for(response, model)

        try:
            return response.json()
        except ValueError as e:
            raise ClientError(
                f"Response is not valid JSON: {e}", self.provider_name, model=model
            ) from e

    def _error_for(self, response: httpx.Response, model: str) -> ClientError:
        """Translate a non-200 response into the matching client error."""
        status = response.status_code
        try:
            error = response.json().get("error") or {}
        except (ValueError, AttributeError):
            error = {}
        if not isinstance(error, dict):
            error = {"message": str(error)}

        message = error.get("message") or f"HTTP {status}"
        common: dict[str, Any] = {
            "model": model,
            "status_code": status,
            "details": error.get("metadata") or {},
        }

        if status == 401:
            return AuthenticationError(
                f"Authentication failed: {message}", self.provider_name, **common
            )
        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded: {message}",
                self.provider_name,
                retry_after=_retry_after(response.headers),
                **common,
            )
        if status in RETRYABLE_STATUS_CODES:
            return RetryableError(
                f"Service temporarily unavailable: {message}", self.provider_name, **common
            )
        return ClientError(f"API error: {message}", self.provider_name, **common)

    def _to_response(self, data: dict[str, Any], request: ModelRequest) -> ModelResponse:
        choices = data.get("choices") or []
        if not choices:
            raise ClientError(
                "No choices in response", self.provider_name, model=request.model
            )

        first = choices[0]
        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)

        return ModelResponse(
            content=(first.get("message") or {}).get("content") or "",
            model=data.get("model") or request.model,
            usage=TokenUsage(
                input_tokens=prompt_tokens,
                output_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            provider=self.provider_name,
            metadata={
                "openrouter_id": data.get("id"),
                "finish_reason": first.get("finish_reason"),
            },
        )

    async def close(self) -> None:
        await self._http_client.aclose()
