"""
Tests for the OpenRouter client.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from session_chat.clients import PROVIDERS, create_client, get_supported_providers
from session_chat.clients.base import (
    AuthenticationError,
    ClientError,
    RateLimitError,
    RetryableError,
)
from session_chat.clients.openrouter import OpenRouterClient
from session_chat.core.models import Message, ModelRequest, ModelResponse

COMPLETION = {
    "id": "gen-123",
    "model": "openai/gpt-3.5-turbo",
    "choices": [{"message": {"content": "Hi! How can I help?"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 10, "completion_tokens": 6, "total_tokens": 16},
}


def http_response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = COMPLETION if body is None else body
    return response


def error_response(status_code, message="error", headers=None):
    return http_response(status_code, {"error": {"message": message}}, headers)


@pytest.fixture
def client():
    client = OpenRouterClient(api_key="sk-or-test123")
    client._http_client = AsyncMock()
    client._http_client.post.return_value = http_response()
    return client


@pytest.fixture
def request_():
    return ModelRequest(
        model="openai/gpt-3.5-turbo",
        messages=[Message(role="user", content="Hello")],
        max_tokens=100,
        temperature=0.7,
    )


class TestConstruction:
    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="OpenRouter API key is required"):
            OpenRouterClient(api_key="")

    def test_warns_on_unexpected_key_format(self):
        with patch("session_chat.clients.openrouter.logger") as mock_logger:
            OpenRouterClient(api_key="invalid-key")
        mock_logger.warning.assert_called_once()

    def test_defaults(self):
        client = OpenRouterClient(api_key="sk-or-test123", timeout=15)

        assert client.provider_name == "openrouter"
        assert client.base_url == "https://openrouter.ai/api/v1"
        assert client.timeout == 15
        assert client.max_retries == 0


class TestPayload:
    def test_system_prompt_goes_first(self):
        request = ModelRequest(
            model="openai/gpt-4",
            messages=[Message(role="user", content="Hello")],
            system_prompt="Be brief.",
        )

        payload = OpenRouterClient.build_payload(request)

        assert payload["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ]
        assert "max_tokens" not in payload
        assert "temperature" not in payload

    @pytest.mark.asyncio
    async def test_posts_sampling_parameters(self, client, request_):
        await client.complete(request_)

        args, kwargs = client._http_client.post.call_args
        assert args[0] == "/chat/completions"
        assert kwargs["json"]["model"] == "openai/gpt-3.5-turbo"
        assert kwargs["json"]["max_tokens"] == 100
        assert kwargs["json"]["temperature"] == 0.7


class TestCompletion:
    @pytest.mark.asyncio
    async def test_parses_completion(self, client, request_):
        response = await client.complete(request_)

        assert isinstance(response, ModelResponse)
        assert response.content == "Hi! How can I help?"
        assert response.provider == "openrouter"
        assert response.usage.total_tokens == 16
        assert response.metadata == {"openrouter_id": "gen-123", "finish_reason": "stop"}

    @pytest.mark.asyncio
    async def test_model_falls_back_to_request(self, client, request_):
        client._http_client.post.return_value = http_response(
            body={"choices": [{"message": {"content": "ok"}}]}
        )

        response = await client.complete(request_)

        assert response.model == "openai/gpt-3.5-turbo"
        assert response.usage.total_tokens == 0

    @pytest.mark.asyncio
    async def test_no_choices(self, client, request_):
        client._http_client.post.return_value = http_response(body={"choices": []})

        with pytest.raises(ClientError, match="No choices"):
            await client.complete(request_)

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, request_):
        response = http_response()
        response.json.side_effect = ValueError("not json")
        client._http_client.post.return_value = response

        with pytest.raises(ClientError, match="not valid JSON"):
            await client.complete(request_)


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (401, AuthenticationError),
            (429, RateLimitError),
            (408, RetryableError),
            (502, RetryableError),
            (503, RetryableError),
            (400, ClientError),
            (500, ClientError),
        ],
    )
    async def test_status_mapping(self, client, request_, status_code, expected):
        client._http_client.post.return_value = error_response(status_code, "nope")

        with pytest.raises(expected) as exc_info:
            await client.complete(request_)

        assert exc_info.value.status_code == status_code
        assert "nope" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_error_without_json_body(self, client, request_):
        response = http_response(500)
        response.json.side_effect = ValueError("html")
        client._http_client.post.return_value = response

        with pytest.raises(ClientError, match="HTTP 500"):
            await client.complete(request_)

    @pytest.mark.asyncio
    async def test_retry_after_header(self, client, request_):
        client._http_client.post.return_value = error_response(
            429, "slow down", headers={"retry-after": "12"}
        )

        with pytest.raises(RateLimitError) as exc_info:
            await client.complete(request_)

        assert exc_info.value.retry_after == 12.0

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, client, request_):
        client._http_client.post.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(RetryableError):
            await client.complete(request_)

    @pytest.mark.asyncio
    async def test_connection_error_is_not_retryable(self, client, request_):
        client._http_client.post.side_effect = httpx.ConnectError("refused")

        with pytest.raises(ClientError) as exc_info:
            await client.complete(request_)

        assert not isinstance(exc_info.value, RetryableError)
        assert exc_info.value.details["error_type"] == "ConnectError"


class TestRetries:
    @pytest.mark.asyncio
    async def test_single_attempt_by_default(self, client, request_):
        client._http_client.post.return_value = error_response(503)

        with pytest.raises(RetryableError):
            await client.complete(request_)

        assert client._http_client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_when_configured(self, client, request_, mock_asyncio_sleep):
        client.max_retries = 2
        client._http_client.post.side_effect = [
            httpx.ReadTimeout("slow"),
            error_response(429, headers={"retry-after": "3"}),
            http_response(),
        ]

        response = await client.complete(request_)

        assert response.content == "Hi! How can I help?"
        assert client._http_client.post.await_count == 3
        delays = [c.args[0] for c in mock_asyncio_sleep.await_args_list]
        assert delays == [1.0, 3.0]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes_http_client(self):
        async with OpenRouterClient(api_key="sk-or-test123") as client:
            client._http_client = AsyncMock()
            http_client = client._http_client

        http_client.aclose.assert_awaited_once()


class TestProviderRegistry:
    def test_supported_providers(self):
        assert get_supported_providers() == ["openrouter"]
        assert PROVIDERS["openrouter"] is OpenRouterClient

    def test_create_client_normalizes_name(self):
        client = create_client(" OpenRouter ", api_key="sk-or-test123", timeout=15)

        assert isinstance(client, OpenRouterClient)
        assert client.timeout == 15

    def test_create_requires_api_key(self):
        with pytest.raises(ValueError, match="API key is required"):
            create_client("openrouter")

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider"):
            create_client("lmstudio")
