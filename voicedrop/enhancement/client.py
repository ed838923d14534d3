"""
Transcript enhancement client.

Builds the prompt for a transcript, spaces outbound calls through a shared
rate limiter, and retries transient provider failures with growing timeouts
and back-off delays.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple
import asyncio
import logging
import os
import time

import httpx

from ..config import Settings, SettingsStore
from ..errors import ConfigurationError, EnhancementError, InputError, RetriesExhaustedError
from .context import ContextSnapshot, ScreenContextService, read_clipboard
from .prompts import (
    CustomPrompt,
    build_context_section,
    build_system_message,
    format_user_message,
    select_mode,
)
from .providers import PROVIDERS, EnhancementProvider, EnhancementRequest, ProviderConfig, create_provider

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

MAX_RETRIES = 3
BASE_TIMEOUT = 10.0
BASE_RETRY_DELAY = 1.0
RATE_LIMIT_INTERVAL = 1.0


@dataclass(frozen=True)
class EnhancementConfig:
    """
    Immutable view of the enhancement settings for one ``enhance`` call.

    Taken from the settings store when the request is built, so settings
    edited mid-request never leak into it.
    """
    enabled: bool
    use_clipboard_context: bool
    use_screen_context: bool
    provider_id: str
    api_key: str
    model: str
    assistant_trigger: str = "hey"
    active_prompt: Optional[CustomPrompt] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnhancementConfig":
        provider = PROVIDERS.get(settings.provider)
        api_key = settings.api_key
        if not api_key and provider is not None and provider.api_key_env:
            api_key = os.environ.get(provider.api_key_env, "")

        active_prompt = next(
            (CustomPrompt.from_dict(p) for p in settings.custom_prompts
             if str(p.get("id")) == settings.selected_prompt_id),
            None,
        )
        return cls(
            enabled=settings.enhancement_enabled,
            use_clipboard_context=settings.use_clipboard_context,
            use_screen_context=settings.use_screen_context,
            provider_id=settings.provider,
            api_key=api_key,
            model=settings.model,
            assistant_trigger=settings.assistant_trigger,
            active_prompt=active_prompt,
        )

    @property
    def provider(self) -> Optional[ProviderConfig]:
        return PROVIDERS.get(self.provider_id)

    @property
    def is_configured(self) -> bool:
        provider = self.provider
        if provider is None:
            return False
        return bool(self.api_key) or not provider.requires_api_key

    @property
    def effective_model(self) -> str:
        return self.model or (self.provider.default_model if self.provider else "")


class RateLimiter:
    """
    Keeps outbound calls at least ``min_interval`` seconds apart.

    One last-call timestamp, shared by every caller. The slot is reserved
    before sleeping so concurrent callers queue up behind each other.
    """

    def __init__(
        self,
        min_interval: float = RATE_LIMIT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None

    async def wait(self) -> float:
        """Suspend until the next call may go out; returns the time waited."""
        now = self._clock()
        delay = 0.0
        if self._last_request is not None:
            delay = max(0.0, self._last_request + self.min_interval - now)
        self._last_request = now + delay
        if delay > 0:
            logger.debug(f"Rate limiting: waiting {delay:.2f}s")
            await self._sleep(delay)
        return delay


_shared_rate_limiter = RateLimiter()


def retry_delay(retry_number: int, base_delay: float = BASE_RETRY_DELAY) -> float:
    """
    Back-off before retry ``retry_number`` (1-based).

    The first retry waits a flat ``base_delay``; later ones grow as powers
    of two (2s before the second retry).
    """
    if retry_number <= 1:
        return base_delay
    return 2.0 ** (retry_number - 1)


def request_timeout(attempt: int, base_timeout: float = BASE_TIMEOUT) -> float:
    return base_timeout * (2 ** attempt)


class EnhancementClient:
    """
    Provider-agnostic transcript enhancement.

    Args:
        store: Settings store the configuration snapshot is taken from
        screen_context: Source of the last captured window text
        clipboard_reader: Returns current clipboard text
        rate_limiter: Defaults to the process-wide limiter
        providers: Provider instances by id, created on demand when missing
        http_client: Shared httpx client handed to created providers
        max_retries: Total attempts per ``enhance`` call
        sleep: Coroutine used for back-off delays
    """

    def __init__(
        self,
        store: Optional[SettingsStore] = None,
        screen_context: Optional[ScreenContextService] = None,
        clipboard_reader: Callable[[], Optional[str]] = read_clipboard,
        rate_limiter: Optional[RateLimiter] = None,
        providers: Optional[Dict[str, EnhancementProvider]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: int = MAX_RETRIES,
        base_timeout: float = BASE_TIMEOUT,
        base_retry_delay: float = BASE_RETRY_DELAY,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.store = store or SettingsStore()
        self.screen_context = screen_context or ScreenContextService()
        self._clipboard_reader = clipboard_reader
        self._rate_limiter = rate_limiter or _shared_rate_limiter
        self._providers: Dict[str, EnhancementProvider] = dict(providers or {})
        self._http_client = http_client
        self.max_retries = max_retries
        self.base_timeout = base_timeout
        self.base_retry_delay = base_retry_delay
        self._sleep = sleep

        self.store.subscribe(self._on_settings_changed)

    def snapshot_config(self) -> EnhancementConfig:
        return EnhancementConfig.from_settings(self.store.current)

    @property
    def is_enabled(self) -> bool:
        return self.store.current.enhancement_enabled

    @property
    def is_configured(self) -> bool:
        return self.snapshot_config().is_configured

    def capture_context(self, config: EnhancementConfig) -> ContextSnapshot:
        """Collect the context snapshots whose toggles are on."""
        clipboard = self._clipboard_reader() if config.use_clipboard_context else None
        screen = self.screen_context.last_captured_text if config.use_screen_context else None
        return ContextSnapshot(clipboard_text=clipboard or None, screen_text=screen or None)

    def build_messages(self, text: str, config: EnhancementConfig, context: ContextSnapshot) -> Tuple[str, str]:
        """Return the (system, user) message pair for ``text``."""
        context_section = build_context_section(
            context.clipboard_text if config.use_clipboard_context else None,
            context.screen_text if config.use_screen_context else None,
        )
        mode = select_mode(text, config.assistant_trigger)
        system_message = build_system_message(mode, config.active_prompt, context_section)
        return system_message, format_user_message(text)

    async def enhance(
        self,
        text: str,
        config: Optional[EnhancementConfig] = None,
        context: Optional[ContextSnapshot] = None,
    ) -> str:
        """
        Enhance a transcript with the configured provider.

        Raises:
            ConfigurationError: If no usable provider is configured
            InputError: If ``text`` is empty
            AuthError, ApiError, ParseError: Immediately, without retrying
            RetriesExhaustedError: After ``max_retries`` transient failures
        """
        config = config or self.snapshot_config()
        if not config.is_configured:
            logger.error("AI Enhancement: API not configured")
            raise ConfigurationError(f"Enhancement provider '{config.provider_id}' is not configured")
        if not text.strip():
            logger.error("AI Enhancement: Empty text received")
            raise InputError("Cannot enhance empty text")

        if context is None:
            context = self.capture_context(config)
        if context.clipboard_text:
            logger.debug(f"Clipboard Context: {context.clipboard_text}")
        if context.screen_text:
            logger.debug(f"Screen Capture Context: {context.screen_text}")

        system_message, user_message = self.build_messages(text, config, context)
        provider = self._provider_for(config.provider)
        logger.info(f"Starting AI enhancement for text ({len(text)} characters) via {provider.config.name}")
        logger.debug(f"System Message: {system_message}")
        logger.debug(f"User Message: {user_message}")

        last_error: Optional[EnhancementError] = None
        for attempt in range(self.max_retries):
            if attempt > 0:
                delay = retry_delay(attempt, self.base_retry_delay)
                logger.warning(
                    f"{last_error}; retrying AI enhancement in {delay:.0f}s "
                    f"(attempt {attempt + 1} of {self.max_retries})"
                )
                await self._sleep(delay)

            request = EnhancementRequest(
                provider_id=config.provider_id,
                system_message=system_message,
                user_message=user_message,
                model=config.effective_model,
                api_key=config.api_key,
                attempt=attempt,
            )
            try:
                result = await self._send(provider, request)
            except EnhancementError as e:
                if not e.retryable:
                    logger.error(f"AI enhancement failed: {e}")
                    raise
                last_error = e
                continue

            logger.info(f"AI enhancement completed successfully ({len(result)} characters)")
            return result

        logger.error("AI enhancement failed: maximum retries exceeded")
        raise RetriesExhaustedError(self.max_retries, last_error) from last_error

    async def _send(self, provider: EnhancementProvider, request: EnhancementRequest) -> str:
        if provider.uses_rate_limit:
            await self._rate_limiter.wait()
        timeout = request_timeout(request.attempt, self.base_timeout)
        return await provider.send_request(request, timeout)

    def _provider_for(self, config: ProviderConfig) -> EnhancementProvider:
        provider = self._providers.get(config.id)
        if provider is None:
            provider = create_provider(config, self._http_client)
            self._providers[config.id] = provider
        return provider

    def _on_settings_changed(self, settings: Settings, changed: Set[str]) -> None:
        if not changed & {"api_key", "provider"} or not settings.enhancement_enabled:
            return
        if not EnhancementConfig.from_settings(settings).is_configured:
            logger.warning("Enhancement provider is no longer configured; disabling AI enhancement")
            self.store.update(enhancement_enabled=False)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
