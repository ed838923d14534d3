"""
Error types shared across the dictation pipeline.

The enhancement errors carry a ``retryable`` flag that the client's retry
loop consults; everything else is handled at the session controller's phase
boundaries.
"""

from typing import Optional


class DictationError(Exception):
    """Base exception for all dictation pipeline errors."""
    pass


class ConfigurationError(DictationError):
    """Raised when a required setting is missing (no model, no provider key)."""
    pass


class InputError(DictationError):
    """Raised for unusable input such as empty text."""
    pass


class DecodeError(InputError):
    """Raised when an audio container is truncated or malformed."""
    pass


class ModelLoadError(DictationError):
    """Raised when the transcription engine cannot load a model."""

    def __init__(self, model_id: str, message: str):
        super().__init__(f"Failed to load model '{model_id}': {message}")
        self.model_id = model_id


class SessionCancelledError(DictationError):
    """Raised when a session is discarded at a cancellation checkpoint."""
    pass


class EnhancementError(DictationError):
    """Base exception for enhancement request failures."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(EnhancementError):
    """DNS, connect or timeout failure before a response was received."""

    retryable = True


class RateLimitError(EnhancementError):
    """The provider answered 429."""

    retryable = True


class ServerError(EnhancementError):
    """The provider answered with a 5xx status."""

    retryable = True


class AuthError(EnhancementError):
    """The provider rejected the API key (401)."""
    pass


class ApiError(EnhancementError):
    """Any other non-200 status."""
    pass


class ParseError(EnhancementError):
    """A 200 response whose body does not have the expected shape."""
    pass


class RetriesExhaustedError(EnhancementError):
    """Raised after the final retryable failure."""

    def __init__(self, attempts: int, last_error: EnhancementError):
        super().__init__(
            f"Maximum retries exceeded after {attempts} attempts: {last_error}",
            status_code=last_error.status_code,
        )
        self.attempts = attempts
        self.last_error = last_error
