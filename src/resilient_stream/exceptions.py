# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the resilient stream runtime.

Every error raised by the runtime is a StreamRuntimeError carrying an
explicit tag: its ErrorKind, a retryable flag and an optional transport
status code. Retry decisions read those tags instead of inspecting class
names, so a caller can classify any library error with a single attribute
lookup and still catch the concrete subclass when it wants to branch.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Closed set of failure kinds understood by the runtime."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    CAPACITY = "capacity"
    API = "api"
    VALIDATION = "validation"
    AUTH = "auth"
    PAYMENT_REQUIRED = "payment_required"
    NOT_FOUND = "not_found"
    DECODE = "decode"
    QUOTA_EXCEEDED = "quota_exceeded"
    ABORTED = "aborted"
    STREAM_TIMEOUT = "stream_timeout"
    CONFIGURATION = "configuration"


class StreamRuntimeError(Exception):
    """Base exception for all runtime errors.

    Attributes:
        kind: The ErrorKind tag of this error.
        retryable: Explicit opt-in to retrying regardless of the RetryPolicy.
        status_code: Transport status code, when the error came from an HTTP
            response.
        details: Optional structured details supplied by the server.

    Example:
        try:
            await client.request_json("POST", "/chat/completions", json=body)
        except StreamRuntimeError as e:
            logger.error(f"Request failed ({e.kind.value}): {e}")
    """

    kind: ErrorKind = ErrorKind.API

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.details = details


# =============================================================================
# Transport errors (transient; retried when the policy lists their kind)
# =============================================================================


class TransportError(StreamRuntimeError):
    """A transient failure between the client and the service."""


class NetworkError(TransportError):
    """Raised when the connection fails or drops before a response arrives."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(TransportError):
    """Raised when a single request exceeds its transport timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "Request timed out", **kwargs: Any):
        super().__init__(message, **kwargs)


class RateLimitError(TransportError):
    """Raised when the service answers with a rate-limit response (429).

    This is the server telling us to slow down, as opposed to
    QuotaExceededError which is raised locally and never reaches the network.

    Attributes:
        retry_after: Server-suggested wait in seconds, if provided.
    """

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class CapacityError(TransportError):
    """Raised when the service reports it is overloaded (503)."""

    kind = ErrorKind.CAPACITY

    def __init__(
        self,
        message: str = "The model is at capacity. Please try again later.",
        **kwargs: Any,
    ):
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)


# =============================================================================
# Request errors (non-retryable)
# =============================================================================


class RequestError(StreamRuntimeError):
    """The request itself was rejected; repeating it will not help."""


class APIError(RequestError):
    """Raised for an error response without a more specific variant."""

    kind = ErrorKind.API


class ValidationError(RequestError):
    """Raised when the service rejects the request payload (400/422)."""

    kind = ErrorKind.VALIDATION


class AuthError(RequestError):
    """Raised when credentials are missing, invalid or lack permission."""

    kind = ErrorKind.AUTH


class PaymentRequiredError(RequestError):
    """Raised when the account has insufficient balance (402)."""

    kind = ErrorKind.PAYMENT_REQUIRED


class NotFoundError(RequestError):
    """Raised when the addressed resource or model does not exist (404)."""

    kind = ErrorKind.NOT_FOUND


# =============================================================================
# Local runtime errors
# =============================================================================


class DecodeError(StreamRuntimeError):
    """A single malformed frame in an event stream.

    The decoder never raises this; it hands it to the diagnostic sink and
    keeps decoding.

    Attributes:
        line: The offending payload text (truncated for logging by callers).
    """

    kind = ErrorKind.DECODE

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line


class QuotaExceededError(StreamRuntimeError):
    """Raised by the dispatch gate when the rolling quota is full.

    Attributes:
        limit: Admissions allowed per window.
        window_seconds: Length of the rolling window.
        retry_after: Seconds until the oldest admission leaves the window.

    Example:
        try:
            result = await gate.submit(call)
        except QuotaExceededError as e:
            await asyncio.sleep(e.retry_after or 1.0)
    """

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(
        self,
        message: str,
        limit: int | None = None,
        window_seconds: float | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, retryable=False)
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after


class StreamAbortedError(StreamRuntimeError):
    """Raised when an external abort signal stops a consumer or a backoff."""

    kind = ErrorKind.ABORTED

    def __init__(self, message: str = "Stream collection aborted"):
        super().__init__(message)


class StreamTimeoutError(StreamRuntimeError):
    """Raised when stream consumption exceeds its wall-clock timeout.

    Attributes:
        timeout: The timeout that was exceeded, in seconds.
    """

    kind = ErrorKind.STREAM_TIMEOUT

    def __init__(
        self, message: str = "Stream collection timeout", timeout: float | None = None
    ):
        super().__init__(message)
        self.timeout = timeout


class ConfigurationError(StreamRuntimeError, ValueError):
    """Raised when configuration values are invalid."""

    kind = ErrorKind.CONFIGURATION


# =============================================================================
# Classification helpers
# =============================================================================

_STATUS_TO_ERROR: dict[int, type[StreamRuntimeError]] = {
    400: ValidationError,
    401: AuthError,
    402: PaymentRequiredError,
    403: AuthError,
    404: NotFoundError,
    408: RequestTimeoutError,
    422: ValidationError,
    429: RateLimitError,
    503: CapacityError,
}


def error_from_status(
    status_code: int,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    retry_after: float | None = None,
) -> StreamRuntimeError:
    """
    Build the error variant matching an HTTP status code.

    Unmapped statuses become APIErrors. Whether any of them is retried is
    decided by the RetryPolicy status codes, not by the error itself.

    Args:
        status_code: HTTP status of the failed response
        message: Error message, usually taken from the response body
        details: Optional structured details from the response body
        retry_after: Retry-After hint in seconds (used for 429)

    Returns:
        The tagged error instance (not raised)
    """
    text = message or f"HTTP error {status_code}"
    error_cls = _STATUS_TO_ERROR.get(status_code)

    if error_cls is RateLimitError:
        return RateLimitError(
            text, retry_after=retry_after, status_code=status_code, details=details
        )
    if error_cls is not None:
        return error_cls(text, status_code=status_code, details=details)
    return APIError(
        text,
        status_code=status_code,
        details=details,
    )


def classify_error(error: BaseException) -> ErrorKind | None:
    """
    Return the ErrorKind of an error, or None if it is not classifiable.

    Library errors answer with their tag. Builtin TimeoutError and
    ConnectionError are treated as transport timeouts and network failures.
    """
    if isinstance(error, StreamRuntimeError):
        return error.kind
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorKind.NETWORK
    return None


__all__ = [
    "APIError",
    "AuthError",
    "CapacityError",
    "ConfigurationError",
    "DecodeError",
    "ErrorKind",
    "NetworkError",
    "NotFoundError",
    "PaymentRequiredError",
    "QuotaExceededError",
    "RateLimitError",
    "RequestError",
    "RequestTimeoutError",
    "StreamAbortedError",
    "StreamRuntimeError",
    "StreamTimeoutError",
    "TransportError",
    "ValidationError",
    "classify_error",
    "error_from_status",
]
