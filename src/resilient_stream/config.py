# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the resilient stream runtime.

This module provides the immutable configuration values consumed by the
retry engine and the dispatch gate. Both are frozen pydantic models: they
are validated once at construction and never mutated afterwards. Updating
a policy means building a new value with ``with_overrides``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic import ValidationError as PydanticValidationError
from typing_extensions import Self

from .exceptions import ConfigurationError, ErrorKind

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_RETRYABLE_ERROR_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.CAPACITY}
)


class _FrozenConfig(BaseModel):
    """Shared behaviour for frozen configuration models."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid {type(self).__name__}: {e.errors()[0]['msg']}"
            ) from e

    def with_overrides(self, **changes: Any) -> Self:
        """Return a new, re-validated value with the given fields replaced."""
        data = self.model_dump()
        data.update(changes)
        return type(self)(**data)


class RetryPolicy(_FrozenConfig):
    """
    Retry policy for transient failures.

    Delays are expressed in seconds. The delay before retry ``n`` (1-based)
    is ``min(max_delay, initial_delay * backoff_multiplier ** (n - 1))``,
    optionally perturbed by up to 25% in either direction.
    """

    max_retries: int = 3
    """Retries after the first attempt (0 means a single attempt)."""

    initial_delay: float = 0.1
    """Delay before the first retry in seconds."""

    max_delay: float = 10.0
    """Upper bound on any single backoff delay in seconds."""

    backoff_multiplier: float = 2.0
    """Growth factor applied per attempt."""

    jitter: bool = True
    """Randomize each delay by +/-25% to avoid synchronized retries."""

    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    """Transport status codes that are always retried."""

    retryable_error_kinds: frozenset[ErrorKind] = DEFAULT_RETRYABLE_ERROR_KINDS
    """Error kinds that are always retried."""

    @model_validator(mode="after")
    def _validate_bounds(self) -> RetryPolicy:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        return self

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> RetryPolicy:
        """
        Build a policy from wire-style option names.

        Accepts ``maxRetries``, ``initialDelayMs``, ``maxDelayMs``,
        ``backoffMultiplier``, ``jitter``, ``retryableStatusCodes`` and
        ``retryableErrorKinds``. Millisecond values are converted to seconds.
        Missing options keep their defaults.
        """
        data: dict[str, Any] = {}
        if "maxRetries" in options:
            data["max_retries"] = options["maxRetries"]
        if "initialDelayMs" in options:
            data["initial_delay"] = options["initialDelayMs"] / 1000.0
        if "maxDelayMs" in options:
            data["max_delay"] = options["maxDelayMs"] / 1000.0
        if "backoffMultiplier" in options:
            data["backoff_multiplier"] = options["backoffMultiplier"]
        if "jitter" in options:
            data["jitter"] = options["jitter"]
        if "retryableStatusCodes" in options:
            data["retryable_status_codes"] = frozenset(options["retryableStatusCodes"])
        if "retryableErrorKinds" in options:
            data["retryable_error_kinds"] = frozenset(
                ErrorKind(kind) for kind in options["retryableErrorKinds"]
            )
        return cls(**data)


class DispatchConfig(_FrozenConfig):
    """
    Limits enforced by the dispatch gate.

    ``max_concurrent`` bounds operations running at once; ``requests_per_minute``
    bounds admissions within the trailing ``window_seconds``.
    """

    max_concurrent: int = 5
    """Maximum operations running at the same time."""

    requests_per_minute: int = 60
    """Maximum admissions within one rolling window."""

    window_seconds: float = 60.0
    """Length of the rolling quota window."""

    @model_validator(mode="after")
    def _validate_limits(self) -> DispatchConfig:
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        return self

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> DispatchConfig:
        """Build a config from ``maxConcurrent`` / ``requestsPerMinute``."""
        data: dict[str, Any] = {}
        if "maxConcurrent" in options:
            data["max_concurrent"] = options["maxConcurrent"]
        if "requestsPerMinute" in options:
            data["requests_per_minute"] = options["requestsPerMinute"]
        return cls(**data)


DEFAULT_RETRY_POLICY = RetryPolicy()
DEFAULT_DISPATCH_CONFIG = DispatchConfig()


__all__ = [
    "DEFAULT_DISPATCH_CONFIG",
    "DEFAULT_RETRYABLE_ERROR_KINDS",
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "DEFAULT_RETRY_POLICY",
    "DispatchConfig",
    "RetryPolicy",
]
