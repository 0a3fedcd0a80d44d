"""Error taxonomy for provider calls and the orchestration loop."""

from __future__ import annotations

from enum import Enum

import httpx

RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})


class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT = "transient"
    FATAL = "fatal"


class TagloopError(Exception):
    """Base class for errors raised by this package."""


class ProviderError(TagloopError):
    """Failure reported by the model provider."""

    kind = ErrorKind.FATAL

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ProviderError):
    kind = ErrorKind.RATE_LIMIT


class PermissionDeniedError(ProviderError):
    kind = ErrorKind.PERMISSION_DENIED


class TransientProviderError(ProviderError):
    kind = ErrorKind.TRANSIENT


class FatalProviderError(ProviderError):
    kind = ErrorKind.FATAL


class GenerationError(TagloopError):
    """Raised when every generation attempt failed.

    Carries whatever text the last failed attempt had streamed so callers can
    persist it.
    """

    def __init__(self, last_error: BaseException, partial_buffer: str = "", attempts: int = 0) -> None:
        super().__init__(f"Generation failed after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.partial_buffer = partial_buffer
        self.attempts = attempts


class TurnCancelled(TagloopError):
    """Internal signal: the session was cancelled before a dispatch."""


def error_for_status(status_code: int, message: str) -> ProviderError:
    """Build the provider error matching an HTTP status code."""

    if status_code == 429:
        return RateLimitError(message, status_code)
    if status_code in (401, 403):
        return PermissionDeniedError(message, status_code)
    if status_code in RETRYABLE_STATUS_CODES:
        return TransientProviderError(message, status_code)
    return FatalProviderError(message, status_code)


def classify_error(error: BaseException) -> ErrorKind:
    """Map an arbitrary exception raised during generation to an ErrorKind."""

    if isinstance(error, ProviderError):
        return error.kind
    if isinstance(error, httpx.HTTPStatusError):
        return error_for_status(error.response.status_code, str(error)).kind
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.TRANSIENT
    message = str(error)
    if "PERMISSION_DENIED" in message or "does not have permission" in message:
        return ErrorKind.PERMISSION_DENIED
    return ErrorKind.FATAL
