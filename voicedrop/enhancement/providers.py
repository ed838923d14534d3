"""
LLM provider implementations for transcript enhancement.

Each provider speaks one wire format and turns every failure into the
shared error taxonomy, so the client's retry loop never sees SDK or httpx
exceptions:

- chat completions (OpenAI and compatible services): bearer auth,
  ``choices[0].message.content``
- generate content (Gemini): API key in the query string,
  ``candidates[0].content.parts[0].text``
- messages (Anthropic): ``x-api-key`` and version headers, ``content[0].text``
- local generate (Ollama): no auth, no rate limiting
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import logging

import anthropic
import httpx
import openai

from ..errors import (
    ApiError,
    AuthError,
    ConfigurationError,
    EnhancementError,
    ParseError,
    RateLimitError,
    ServerError,
    TransportError,
)

logger = logging.getLogger(__name__)

TEMPERATURE = 0.3
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 1024


class ResponseShape(str, Enum):
    CHAT_COMPLETIONS = "chat_completions"
    GENERATE_CONTENT = "generate_content"
    MESSAGES = "messages"
    LOCAL_GENERATE = "local_generate"


class AuthScheme(str, Enum):
    BEARER = "bearer"
    QUERY_KEY = "query_key"
    API_KEY_HEADER = "api_key_header"
    NONE = "none"


@dataclass(frozen=True)
class ProviderConfig:
    """Static description of an enhancement backend."""
    id: str
    name: str
    endpoint: str
    auth: AuthScheme
    default_model: str
    shape: ResponseShape
    api_key_env: Optional[str] = None

    @property
    def requires_api_key(self) -> bool:
        return self.auth is not AuthScheme.NONE


PROVIDERS: Dict[str, ProviderConfig] = {
    config.id: config
    for config in [
        ProviderConfig("openai", "OpenAI", "https://api.openai.com/v1", AuthScheme.BEARER,
                       "gpt-4o-mini", ResponseShape.CHAT_COMPLETIONS, "OPENAI_API_KEY"),
        ProviderConfig("groq", "Groq", "https://api.groq.com/openai/v1", AuthScheme.BEARER,
                       "llama-3.3-70b-versatile", ResponseShape.CHAT_COMPLETIONS, "GROQ_API_KEY"),
        ProviderConfig("deepseek", "Deepseek", "https://api.deepseek.com/v1", AuthScheme.BEARER,
                       "deepseek-chat", ResponseShape.CHAT_COMPLETIONS, "DEEPSEEK_API_KEY"),
        ProviderConfig("openrouter", "OpenRouter", "https://openrouter.ai/api/v1", AuthScheme.BEARER,
                       "openai/gpt-4o-mini", ResponseShape.CHAT_COMPLETIONS, "OPENROUTER_API_KEY"),
        ProviderConfig("gemini", "Gemini", "https://generativelanguage.googleapis.com/v1beta/models",
                       AuthScheme.QUERY_KEY, "gemini-2.0-flash", ResponseShape.GENERATE_CONTENT, "GEMINI_API_KEY"),
        ProviderConfig("anthropic", "Anthropic", "https://api.anthropic.com", AuthScheme.API_KEY_HEADER,
                       "claude-3-5-haiku-latest", ResponseShape.MESSAGES, "ANTHROPIC_API_KEY"),
        ProviderConfig("ollama", "Ollama", "http://localhost:11434", AuthScheme.NONE,
                       "llama3.2", ResponseShape.LOCAL_GENERATE),
    ]
}


@dataclass(frozen=True)
class EnhancementRequest:
    """One call to a provider. ``attempt`` is the 0-based retry counter."""
    provider_id: str
    system_message: str
    user_message: str
    model: str
    api_key: str = ""
    attempt: int = 0


def classify_status(status_code: int, detail: str = "") -> Optional[EnhancementError]:
    """
    Map an HTTP status to the error it represents, or None for 200.

    401 is an authentication failure, 429 a rate limit, 5xx a server error;
    every other non-200 status is a generic API error.
    """
    if status_code == 200:
        return None
    if status_code == 401:
        return AuthError("Authentication failed: check the API key", status_code)
    if status_code == 429:
        return RateLimitError("Rate limit exceeded", status_code)
    if 500 <= status_code <= 599:
        return ServerError(f"Server error (HTTP {status_code}): {detail}".rstrip(": "), status_code)
    return ApiError(f"API error (HTTP {status_code}): {detail}".rstrip(": "), status_code)


def _raise_for_status(response: httpx.Response) -> None:
    error = classify_status(response.status_code, response.text[:200])
    if error is not None:
        if isinstance(error, ServerError):
            logger.error(f"Server error (HTTP {response.status_code}): {response.text[:500]}")
        raise error


def _request_error(provider_name: str, error: httpx.RequestError) -> EnhancementError:
    """Map non-transport httpx failures: undecodable bodies and redirect loops."""
    if isinstance(error, httpx.DecodingError):
        return ParseError(f"Could not decode response from {provider_name}: {error}")
    return ApiError(f"{provider_name} request failed: {error}")


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"Response is not valid JSON: {e}") from e


def _require_text(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ParseError(f"Unexpected response shape: {path} is not text")
    return value.strip()


class EnhancementProvider(ABC):
    """Abstract base class for enhancement providers."""

    uses_rate_limit = True

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    @abstractmethod
    async def send_request(self, request: EnhancementRequest, timeout: float) -> str:
        """Send one request and return the enhanced text."""
        pass

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class ChatCompletionsProvider(EnhancementProvider):
    """OpenAI and OpenAI-compatible chat completions."""

    async def send_request(self, request: EnhancementRequest, timeout: float) -> str:
        client = openai.AsyncOpenAI(
            api_key=request.api_key,
            base_url=self.config.endpoint,
            max_retries=0,
            http_client=self.http_client,
        )
        try:
            response = await client.chat.completions.create(
                model=request.model,
                messages=[
                    {"role": "system", "content": request.system_message},
                    {"role": "user", "content": request.user_message},
                ],
                temperature=TEMPERATURE,
                frequency_penalty=0.0,
                presence_penalty=0.0,
                stream=False,
                timeout=timeout,
            )
        except openai.APIStatusError as e:
            raise classify_status(e.status_code, e.message) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"Network error contacting {self.config.name}: {e}") from e
        except openai.APIResponseValidationError as e:
            raise ParseError(f"Unexpected response from {self.config.name}: {e}") from e
        except openai.APIError as e:
            raise ApiError(f"{self.config.name} request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ParseError(f"Unexpected response shape from {self.config.name}: {e}") from e
        return _require_text(content, "choices[0].message.content")


class GenerateContentProvider(EnhancementProvider):
    """Gemini ``generateContent``: system text then user text as ordered parts."""

    async def send_request(self, request: EnhancementRequest, timeout: float) -> str:
        url = f"{self.config.endpoint}/{request.model}:generateContent"
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": request.system_message},
                        {"text": request.user_message},
                    ]
                }
            ],
            "generationConfig": {"temperature": TEMPERATURE},
        }
        try:
            response = await self.http_client.post(
                url, params={"key": request.api_key}, json=body, timeout=timeout
            )
        except httpx.TransportError as e:
            raise TransportError(f"Network error contacting {self.config.name}: {e}") from e
        except httpx.RequestError as e:
            raise _request_error(self.config.name, e) from e

        _raise_for_status(response)
        data = _json_body(response)
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError(f"Unexpected response shape from {self.config.name}: {e!r}") from e
        return _require_text(text, "candidates[0].content.parts[0].text")


class MessagesProvider(EnhancementProvider):
    """Anthropic Messages API."""

    async def send_request(self, request: EnhancementRequest, timeout: float) -> str:
        client = anthropic.AsyncAnthropic(
            api_key=request.api_key,
            base_url=self.config.endpoint,
            max_retries=0,
            http_client=self.http_client,
            default_headers={"anthropic-version": ANTHROPIC_VERSION},
        )
        try:
            response = await client.messages.create(
                model=request.model,
                max_tokens=ANTHROPIC_MAX_TOKENS,
                system=request.system_message,
                messages=[{"role": "user", "content": request.user_message}],
                timeout=timeout,
            )
        except anthropic.APIStatusError as e:
            raise classify_status(e.status_code, e.message) from e
        except anthropic.APIConnectionError as e:
            raise TransportError(f"Network error contacting {self.config.name}: {e}") from e
        except anthropic.APIResponseValidationError as e:
            raise ParseError(f"Unexpected response from {self.config.name}: {e}") from e
        except anthropic.APIError as e:
            raise ApiError(f"{self.config.name} request failed: {e}") from e

        try:
            text = response.content[0].text
        except (AttributeError, IndexError, TypeError) as e:
            raise ParseError(f"Unexpected response shape from {self.config.name}: {e}") from e
        return _require_text(text, "content[0].text")


class LocalGenerateProvider(EnhancementProvider):
    """
    Ollama running on this machine.

    Local calls skip the shared rate limiter. A refused connection means the
    service is not running, which is a configuration problem rather than a
    transient one.
    """

    uses_rate_limit = False

    async def send_request(self, request: EnhancementRequest, timeout: float) -> str:
        body = {
            "model": request.model,
            "prompt": request.user_message,
            "system": request.system_message,
            "stream": False,
            "options": {"temperature": TEMPERATURE},
        }
        try:
            response = await self.http_client.post(
                f"{self.config.endpoint}/api/generate", json=body, timeout=timeout
            )
        except httpx.ConnectError as e:
            raise ConfigurationError(
                f"Local AI service unavailable at {self.config.endpoint}: {e}"
            ) from e
        except httpx.TransportError as e:
            raise TransportError(f"Error contacting local AI service: {e}") from e
        except httpx.RequestError as e:
            raise _request_error(self.config.name, e) from e

        if response.status_code == 404:
            raise ApiError(f"Model '{request.model}' not found on the local AI service", 404)
        _raise_for_status(response)

        data = _json_body(response)
        try:
            text = data["response"]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Unexpected response shape from {self.config.name}: {e!r}") from e
        return _require_text(text, "response")


_PROVIDER_CLASSES = {
    ResponseShape.CHAT_COMPLETIONS: ChatCompletionsProvider,
    ResponseShape.GENERATE_CONTENT: GenerateContentProvider,
    ResponseShape.MESSAGES: MessagesProvider,
    ResponseShape.LOCAL_GENERATE: LocalGenerateProvider,
}


def create_provider(config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None) -> EnhancementProvider:
    return _PROVIDER_CLASSES[config.shape](config, http_client)
