# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Resilient Stream - Streaming client runtime for AI completion services.

This library provides the pieces a client needs to consume server-sent
event streams from rate-limited APIs without losing data or overrunning
the service.

Key Features:
    - Incremental SSE frame decoding, robust to arbitrary chunk boundaries
    - Retry with exponential backoff and jitter, driven by tagged errors
    - Dispatch gate bounding concurrency and a rolling request quota
    - Lazy, composable async stream operators
    - Text collection with timeout and abort support
    - Prometheus metrics for retries, dispatch and stream health

Quick Start:
    >>> from resilient_stream import StreamingClient, collect_text
    >>>
    >>> async with StreamingClient(
    ...     "https://api.example.com/v1",
    ...     headers={"Authorization": "Bearer ..."},
    ... ) as client:
    ...     text = await collect_text(
    ...         client.stream("POST", "/chat/completions", json=body),
    ...         timeout=60,
    ...     )

Main Exports:
    - StreamingClient: httpx-based facade using all of the below
    - FrameDecoder, decode_stream: Stream decoding
    - RetryExecutor, RetryPolicy: Retry engine and its policy
    - DispatchGate, DispatchConfig: Admission control
    - Stream, collect_text: Stream operators and consumers

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import StreamingClient
from .config import (
    DEFAULT_DISPATCH_CONFIG,
    DEFAULT_RETRY_POLICY,
    DispatchConfig,
    RetryPolicy,
)
from .dispatch import DispatchGate, GateStats
from .exceptions import (
    APIError,
    AuthError,
    CapacityError,
    ConfigurationError,
    DecodeError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    PaymentRequiredError,
    QuotaExceededError,
    RateLimitError,
    RequestError,
    RequestTimeoutError,
    StreamAbortedError,
    StreamRuntimeError,
    StreamTimeoutError,
    TransportError,
    ValidationError,
    classify_error,
    error_from_status,
)
from .observability import UnifiedMetricsCollector, get_metrics_collector
from .protocols import AbortSignal, DiagnosticSink
from .retry import RetryContext, RetryExecutor, retry_with_backoff
from .streaming import (
    CollectOptions,
    Frame,
    FrameDecoder,
    Stream,
    buffer_stream,
    collect_text,
    count_stream,
    decode_stream,
    filter_stream,
    iterable_to_stream,
    map_stream,
    merge_streams,
    retry_stream,
    stream_to_list,
    take_stream,
    tap_stream,
    text_only_stream,
    timeout_stream,
)

__all__ = [
    "DEFAULT_DISPATCH_CONFIG",
    "DEFAULT_RETRY_POLICY",
    "APIError",
    "AbortSignal",
    "AuthError",
    "CapacityError",
    "CollectOptions",
    "ConfigurationError",
    "DecodeError",
    "DiagnosticSink",
    "DispatchConfig",
    "DispatchGate",
    "ErrorKind",
    "Frame",
    "FrameDecoder",
    "GateStats",
    "NetworkError",
    "NotFoundError",
    "PaymentRequiredError",
    "QuotaExceededError",
    "RateLimitError",
    "RequestError",
    "RequestTimeoutError",
    "RetryContext",
    "RetryExecutor",
    "RetryPolicy",
    "Stream",
    "StreamAbortedError",
    "StreamRuntimeError",
    "StreamTimeoutError",
    "StreamingClient",
    "TransportError",
    "UnifiedMetricsCollector",
    "ValidationError",
    "__version__",
    "buffer_stream",
    "classify_error",
    "collect_text",
    "count_stream",
    "decode_stream",
    "error_from_status",
    "filter_stream",
    "get_metrics_collector",
    "iterable_to_stream",
    "map_stream",
    "merge_streams",
    "retry_stream",
    "retry_with_backoff",
    "stream_to_list",
    "take_stream",
    "tap_stream",
    "text_only_stream",
    "timeout_stream",
]
