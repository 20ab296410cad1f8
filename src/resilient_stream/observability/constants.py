# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the ``resilient_stream_`` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`
    - Gauges use present-tense descriptive names

Label Best Practices:
    Only categorical labels are used:
    - `gate` - Dispatch gate name (configured by the caller)
    - `error_kind` - ErrorKind value (closed enum)
    - `outcome` - success or failure

    NEVER use request ids, payload text or timestamps as labels.
"""


METRIC_PREFIX = "resilient_stream"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Retry Metrics (retry.py)
# =============================================================================

RETRY_ATTEMPTS_TOTAL = f"{METRIC_PREFIX}_retry_attempts_total"
"""Total retries scheduled after a retryable failure."""

RETRY_EXHAUSTED_TOTAL = f"{METRIC_PREFIX}_retry_exhausted_total"
"""Total operations that failed after the last permitted attempt."""

RETRY_BACKOFF_SECONDS = f"{METRIC_PREFIX}_retry_backoff_seconds"
"""Histogram of computed backoff delays."""


# =============================================================================
# Dispatch Metrics (dispatch.py)
# =============================================================================

DISPATCH_ADMITTED_TOTAL = f"{METRIC_PREFIX}_dispatch_admitted_total"
"""Total operations admitted to run."""

DISPATCH_QUEUED_TOTAL = f"{METRIC_PREFIX}_dispatch_queued_total"
"""Total submissions that had to wait for a free slot."""

DISPATCH_QUOTA_REJECTIONS_TOTAL = f"{METRIC_PREFIX}_dispatch_quota_rejections_total"
"""Total submissions rejected because the rolling quota was full."""

DISPATCH_COMPLETED_TOTAL = f"{METRIC_PREFIX}_dispatch_completed_total"
"""Total admitted operations that finished (success or failure)."""

DISPATCH_IN_FLIGHT = f"{METRIC_PREFIX}_dispatch_in_flight"
"""Operations currently running inside the gate."""

DISPATCH_QUEUE_DEPTH = f"{METRIC_PREFIX}_dispatch_queue_depth"
"""Submissions currently waiting for a slot."""


# =============================================================================
# Stream Metrics (streaming/)
# =============================================================================

STREAM_FRAMES_TOTAL = f"{METRIC_PREFIX}_stream_frames_total"
"""Total message frames decoded."""

STREAM_DECODE_ERRORS_TOTAL = f"{METRIC_PREFIX}_stream_decode_errors_total"
"""Total malformed frames dropped by the decoder."""

STREAM_ABORTS_TOTAL = f"{METRIC_PREFIX}_stream_aborts_total"
"""Total stream consumers stopped by an abort signal."""

STREAM_TIMEOUTS_TOTAL = f"{METRIC_PREFIX}_stream_timeouts_total"
"""Total stream consumers stopped by their timeout."""


# =============================================================================
# Histogram Buckets
# =============================================================================

BACKOFF_BUCKETS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
"""Buckets for backoff delays in seconds."""


__all__ = [
    "BACKOFF_BUCKETS",
    "DISPATCH_ADMITTED_TOTAL",
    "DISPATCH_COMPLETED_TOTAL",
    "DISPATCH_IN_FLIGHT",
    "DISPATCH_QUEUED_TOTAL",
    "DISPATCH_QUEUE_DEPTH",
    "DISPATCH_QUOTA_REJECTIONS_TOTAL",
    "METRIC_PREFIX",
    "RETRY_ATTEMPTS_TOTAL",
    "RETRY_BACKOFF_SECONDS",
    "RETRY_EXHAUSTED_TOTAL",
    "STREAM_ABORTS_TOTAL",
    "STREAM_DECODE_ERRORS_TOTAL",
    "STREAM_FRAMES_TOTAL",
    "STREAM_TIMEOUTS_TOTAL",
]
