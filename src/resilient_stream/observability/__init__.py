# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability for the resilient stream runtime.

Classes:
    UnifiedMetricsCollector: Thread-safe collector exporting to Prometheus
        and to a dict snapshot.
    MetricDefinition: Schema for pre-declared metrics.

Functions:
    get_metrics_collector: Get the global metrics collector singleton.
    reset_metrics_collector: Reset the global metrics collector singleton.

Constants:
    All metric name constants from the constants module.
"""

from .collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    UnifiedMetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from .constants import (
    BACKOFF_BUCKETS,
    DISPATCH_ADMITTED_TOTAL,
    DISPATCH_COMPLETED_TOTAL,
    DISPATCH_IN_FLIGHT,
    DISPATCH_QUEUE_DEPTH,
    DISPATCH_QUEUED_TOTAL,
    DISPATCH_QUOTA_REJECTIONS_TOTAL,
    METRIC_PREFIX,
    RETRY_ATTEMPTS_TOTAL,
    RETRY_BACKOFF_SECONDS,
    RETRY_EXHAUSTED_TOTAL,
    STREAM_ABORTS_TOTAL,
    STREAM_DECODE_ERRORS_TOTAL,
    STREAM_FRAMES_TOTAL,
    STREAM_TIMEOUTS_TOTAL,
)

__all__ = [
    "BACKOFF_BUCKETS",
    "DISPATCH_ADMITTED_TOTAL",
    "DISPATCH_COMPLETED_TOTAL",
    "DISPATCH_IN_FLIGHT",
    "DISPATCH_QUEUED_TOTAL",
    "DISPATCH_QUEUE_DEPTH",
    "DISPATCH_QUOTA_REJECTIONS_TOTAL",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "RETRY_ATTEMPTS_TOTAL",
    "RETRY_BACKOFF_SECONDS",
    "RETRY_EXHAUSTED_TOTAL",
    "STREAM_ABORTS_TOTAL",
    "STREAM_DECODE_ERRORS_TOTAL",
    "STREAM_FRAMES_TOTAL",
    "STREAM_TIMEOUTS_TOTAL",
    "MetricDefinition",
    "UnifiedMetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
