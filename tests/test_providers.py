"""Wire-level tests for each provider variant, using httpx.MockTransport."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import openai
import pytest

from voicedrop.enhancement.providers import (
    PROVIDERS,
    ChatCompletionsProvider,
    EnhancementRequest,
    GenerateContentProvider,
    LocalGenerateProvider,
    MessagesProvider,
    classify_status,
    create_provider,
)
from voicedrop.errors import (
    ApiError,
    AuthError,
    ConfigurationError,
    ParseError,
    RateLimitError,
    ServerError,
    TransportError,
)


def make_request(provider_id: str, model: str = "test-model", api_key: str = "sk-test") -> EnhancementRequest:
    return EnhancementRequest(
        provider_id=provider_id,
        system_message="SYSTEM",
        user_message="\n<TRANSCRIPT>\num hello\n</TRANSCRIPT>",
        model=model,
        api_key=api_key,
    )


def chat_completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "test-model",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }


def anthropic_message(text):
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "test-model",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 1, "output_tokens": 1},
    }


class TestClassifyStatus:

    @pytest.mark.parametrize("status, error_type", [
        (401, AuthError),
        (429, RateLimitError),
        (500, ServerError),
        (503, ServerError),
        (599, ServerError),
        (400, ApiError),
        (403, ApiError),
        (404, ApiError),
    ])
    def test_mapping(self, status, error_type):
        error = classify_status(status, "detail")

        assert type(error) is error_type
        assert error.status_code == status

    def test_success(self):
        assert classify_status(200) is None

    def test_retryable_flags(self):
        assert classify_status(429).retryable
        assert classify_status(502).retryable
        assert not classify_status(401).retryable
        assert not classify_status(418).retryable


class TestRegistry:

    def test_variants(self):
        assert isinstance(create_provider(PROVIDERS["openai"]), ChatCompletionsProvider)
        assert isinstance(create_provider(PROVIDERS["groq"]), ChatCompletionsProvider)
        assert isinstance(create_provider(PROVIDERS["gemini"]), GenerateContentProvider)
        assert isinstance(create_provider(PROVIDERS["anthropic"]), MessagesProvider)
        assert isinstance(create_provider(PROVIDERS["ollama"]), LocalGenerateProvider)

    def test_only_local_provider_skips_rate_limit_and_auth(self):
        assert not PROVIDERS["ollama"].requires_api_key
        assert not LocalGenerateProvider.uses_rate_limit
        assert all(PROVIDERS[p].requires_api_key for p in PROVIDERS if p != "ollama")


@pytest.mark.asyncio
class TestChatCompletionsProvider:

    async def test_request_and_response(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=chat_completion("  Hello.  "))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = ChatCompletionsProvider(PROVIDERS["openai"], client)
            result = await provider.send_request(make_request("openai"), timeout=10.0)

        assert result == "Hello."
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["messages"] == [
            {"role": "system", "content": "SYSTEM"},
            {"role": "user", "content": "\n<TRANSCRIPT>\num hello\n</TRANSCRIPT>"},
        ]
        assert body["temperature"] == 0.3

    async def test_status_errors_are_classified(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Incorrect API key"}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = ChatCompletionsProvider(PROVIDERS["openai"], client)
            with pytest.raises(AuthError):
                await provider.send_request(make_request("openai"), timeout=10.0)

    async def test_rate_limit(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "slow down"}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = ChatCompletionsProvider(PROVIDERS["groq"], client)
            with pytest.raises(RateLimitError):
                await provider.send_request(make_request("groq"), timeout=10.0)

    async def test_connection_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = ChatCompletionsProvider(PROVIDERS["openai"], client)
            with pytest.raises(TransportError):
                await provider.send_request(make_request("openai"), timeout=10.0)

    async def test_missing_choices_is_parse_error(self):
        def handler(request):
            body = chat_completion("x")
            body["choices"] = []
            return httpx.Response(200, json=body)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = ChatCompletionsProvider(PROVIDERS["openai"], client)
            with pytest.raises(ParseError):
                await provider.send_request(make_request("openai"), timeout=10.0)

    async def test_other_sdk_errors_are_api_errors(self):
        sdk_client = MagicMock()
        sdk_client.chat.completions.create = AsyncMock(side_effect=openai.APIError(
            "stream ended unexpectedly",
            httpx.Request("POST", "https://api.openai.com/v1/chat/completions"),
            body=None,
        ))

        async with httpx.AsyncClient() as client:
            with patch.object(openai, "AsyncOpenAI", return_value=sdk_client):
                provider = ChatCompletionsProvider(PROVIDERS["openai"], client)
                with pytest.raises(ApiError, match="stream ended"):
                    await provider.send_request(make_request("openai"), timeout=10.0)


@pytest.mark.asyncio
class TestGenerateContentProvider:

    async def test_request_and_response(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Hello."}]}}]
            })

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GenerateContentProvider(PROVIDERS["gemini"], client)
            result = await provider.send_request(make_request("gemini", model="gemini-2.0-flash"), timeout=10.0)

        assert result == "Hello."
        request = seen[0]
        assert request.url.path == "/v1beta/models/gemini-2.0-flash:generateContent"
        assert request.url.params["key"] == "sk-test"
        assert "authorization" not in request.headers
        body = json.loads(request.content)
        assert body["contents"][0]["parts"] == [
            {"text": "SYSTEM"},
            {"text": "\n<TRANSCRIPT>\num hello\n</TRANSCRIPT>"},
        ]
        assert body["generationConfig"]["temperature"] == 0.3

    async def test_unexpected_shape(self):
        def handler(request):
            return httpx.Response(200, json={"candidates": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GenerateContentProvider(PROVIDERS["gemini"], client)
            with pytest.raises(ParseError):
                await provider.send_request(make_request("gemini"), timeout=10.0)

    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GenerateContentProvider(PROVIDERS["gemini"], client)
            with pytest.raises(ParseError):
                await provider.send_request(make_request("gemini"), timeout=10.0)

    async def test_server_error(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GenerateContentProvider(PROVIDERS["gemini"], client)
            with pytest.raises(ServerError):
                await provider.send_request(make_request("gemini"), timeout=10.0)

    async def test_timeout_is_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GenerateContentProvider(PROVIDERS["gemini"], client)
            with pytest.raises(TransportError):
                await provider.send_request(make_request("gemini"), timeout=10.0)

    async def test_undecodable_body_is_parse_error(self):
        def handler(request):
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GenerateContentProvider(PROVIDERS["gemini"], client)
            with pytest.raises(ParseError, match="decode"):
                await provider.send_request(make_request("gemini"), timeout=10.0)


@pytest.mark.asyncio
class TestMessagesProvider:

    async def test_request_and_response(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=anthropic_message("Hello."))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = MessagesProvider(PROVIDERS["anthropic"], client)
            result = await provider.send_request(make_request("anthropic"), timeout=10.0)

        assert result == "Hello."
        request = seen[0]
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "sk-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body["system"] == "SYSTEM"
        assert body["max_tokens"] == 1024
        assert body["messages"] == [{"role": "user", "content": "\n<TRANSCRIPT>\num hello\n</TRANSCRIPT>"}]

    async def test_auth_error(self):
        def handler(request):
            return httpx.Response(401, json={"type": "error", "error": {"type": "authentication_error", "message": "bad key"}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = MessagesProvider(PROVIDERS["anthropic"], client)
            with pytest.raises(AuthError):
                await provider.send_request(make_request("anthropic"), timeout=10.0)

    async def test_empty_content_is_parse_error(self):
        def handler(request):
            body = anthropic_message("x")
            body["content"] = []
            return httpx.Response(200, json=body)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = MessagesProvider(PROVIDERS["anthropic"], client)
            with pytest.raises(ParseError):
                await provider.send_request(make_request("anthropic"), timeout=10.0)

    async def test_other_sdk_errors_are_api_errors(self):
        sdk_client = MagicMock()
        sdk_client.messages.create = AsyncMock(side_effect=anthropic.APIError(
            "stream ended unexpectedly",
            httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
            body=None,
        ))

        async with httpx.AsyncClient() as client:
            with patch.object(anthropic, "AsyncAnthropic", return_value=sdk_client):
                provider = MessagesProvider(PROVIDERS["anthropic"], client)
                with pytest.raises(ApiError, match="stream ended"):
                    await provider.send_request(make_request("anthropic"), timeout=10.0)


@pytest.mark.asyncio
class TestLocalGenerateProvider:

    async def test_request_and_response(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"model": "llama3.2", "response": " Hello. ", "done": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = LocalGenerateProvider(PROVIDERS["ollama"], client)
            result = await provider.send_request(make_request("ollama", model="llama3.2", api_key=""), timeout=10.0)

        assert result == "Hello."
        request = seen[0]
        assert str(request.url) == "http://localhost:11434/api/generate"
        body = json.loads(request.content)
        assert body["model"] == "llama3.2"
        assert body["system"] == "SYSTEM"
        assert body["stream"] is False

    async def test_service_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = LocalGenerateProvider(PROVIDERS["ollama"], client)
            with pytest.raises(ConfigurationError, match="unavailable"):
                await provider.send_request(make_request("ollama"), timeout=10.0)

    async def test_model_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"error": "model not found"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = LocalGenerateProvider(PROVIDERS["ollama"], client)
            with pytest.raises(ApiError, match="not found"):
                await provider.send_request(make_request("ollama", model="missing"), timeout=10.0)

    async def test_server_error(self):
        def handler(request):
            return httpx.Response(500, json={"error": "out of memory"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = LocalGenerateProvider(PROVIDERS["ollama"], client)
            with pytest.raises(ServerError):
                await provider.send_request(make_request("ollama"), timeout=10.0)

    async def test_undecodable_body_is_parse_error(self):
        def handler(request):
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = LocalGenerateProvider(PROVIDERS["ollama"], client)
            with pytest.raises(ParseError):
                await provider.send_request(make_request("ollama"), timeout=10.0)
