# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metrics collector backed by prometheus_client with a dict snapshot.

UnifiedMetricsCollector is the single sink for runtime metrics:

    1. Thread-safe counter/gauge/histogram operations
    2. Prometheus metric registration (default or caller-supplied registry)
    3. Dict snapshot for JSON export and tests
    4. Label cardinality protection

Usage:
    >>> from prometheus_client import CollectorRegistry
    >>> collector = UnifiedMetricsCollector(registry=CollectorRegistry())
    >>> collector.inc_counter(DISPATCH_ADMITTED_TOTAL, labels={"gate": "chat"})
    >>> collector.get_metrics()["counters"][DISPATCH_ADMITTED_TOTAL]
    {'gate=chat': 1.0}
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, ClassVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from .constants import (
    BACKOFF_BUCKETS,
    DISPATCH_ADMITTED_TOTAL,
    DISPATCH_COMPLETED_TOTAL,
    DISPATCH_IN_FLIGHT,
    DISPATCH_QUEUE_DEPTH,
    DISPATCH_QUEUED_TOTAL,
    DISPATCH_QUOTA_REJECTIONS_TOTAL,
    RETRY_ATTEMPTS_TOTAL,
    RETRY_BACKOFF_SECONDS,
    RETRY_EXHAUSTED_TOTAL,
    STREAM_ABORTS_TOTAL,
    STREAM_DECODE_ERRORS_TOTAL,
    STREAM_FRAMES_TOTAL,
    STREAM_TIMEOUTS_TOTAL,
)

logger = logging.getLogger(__name__)

_PROM_TYPES: dict[str, Any] = {
    "counter": Counter,
    "gauge": Gauge,
    "histogram": Histogram,
}


@dataclass
class MetricDefinition:
    """Schema for a pre-declared metric."""

    name: str
    metric_type: str  # 'counter', 'gauge', 'histogram'
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    definition.name: definition
    for definition in (
        MetricDefinition(
            RETRY_ATTEMPTS_TOTAL,
            "counter",
            "Total retries scheduled",
            ("error_kind",),
        ),
        MetricDefinition(
            RETRY_EXHAUSTED_TOTAL,
            "counter",
            "Total operations that exhausted their retries",
            ("error_kind",),
        ),
        MetricDefinition(
            RETRY_BACKOFF_SECONDS,
            "histogram",
            "Computed backoff delays",
            (),
            buckets=BACKOFF_BUCKETS,
        ),
        MetricDefinition(
            DISPATCH_ADMITTED_TOTAL, "counter", "Total admitted operations", ("gate",)
        ),
        MetricDefinition(
            DISPATCH_QUEUED_TOTAL, "counter", "Total queued submissions", ("gate",)
        ),
        MetricDefinition(
            DISPATCH_QUOTA_REJECTIONS_TOTAL,
            "counter",
            "Total quota rejections",
            ("gate",),
        ),
        MetricDefinition(
            DISPATCH_COMPLETED_TOTAL,
            "counter",
            "Total completed operations",
            ("gate", "outcome"),
        ),
        MetricDefinition(
            DISPATCH_IN_FLIGHT, "gauge", "Operations currently running", ("gate",)
        ),
        MetricDefinition(
            DISPATCH_QUEUE_DEPTH, "gauge", "Submissions waiting for a slot", ("gate",)
        ),
        MetricDefinition(STREAM_FRAMES_TOTAL, "counter", "Total decoded frames"),
        MetricDefinition(
            STREAM_DECODE_ERRORS_TOTAL, "counter", "Total malformed frames dropped"
        ),
        MetricDefinition(STREAM_ABORTS_TOTAL, "counter", "Total aborted consumers"),
        MetricDefinition(
            STREAM_TIMEOUTS_TOTAL, "counter", "Total timed out consumers"
        ),
    )
}


class UnifiedMetricsCollector:
    """
    Thread-safe metrics collector exporting to Prometheus and to a dict.

    Thread Safety:
        Dict state is guarded by an RLock so callbacks may record metrics
        while another metric operation is in progress.

    Cardinality Protection:
        At most MAX_LABEL_COMBINATIONS label combinations are tracked per
        metric; further combinations are dropped with a warning.
    """

    MAX_LABEL_COMBINATIONS: ClassVar[int] = 1000

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Whether to register Prometheus metrics
            registry: Optional CollectorRegistry (tests pass a private one)
        """
        self._enable_prometheus = enable_prometheus
        self._registry = registry if registry is not None else REGISTRY

        self._counters: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._gauges: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._lock = threading.RLock()

        self._prom_metrics: dict[str, Any] = {}
        self._label_combinations: dict[str, set[str]] = defaultdict(set)
        self._server_running = False

        logger.debug(
            f"UnifiedMetricsCollector initialized "
            f"(prometheus={'enabled' if self._enable_prometheus else 'disabled'})"
        )

    def _labels_to_key(self, labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _check_cardinality(self, name: str, label_key: str) -> bool:
        if label_key in self._label_combinations[name]:
            return True
        if len(self._label_combinations[name]) >= self.MAX_LABEL_COMBINATIONS:
            logger.warning(
                f"Cardinality limit ({self.MAX_LABEL_COMBINATIONS}) reached "
                f"for metric {name}. Dropping label combination: {label_key}"
            )
            return False
        self._label_combinations[name].add(label_key)
        return True

    def _get_or_create_prom_metric(
        self, name: str, metric_type: str, labels: dict[str, str] | None
    ) -> Any | None:
        """Get or lazily register the Prometheus metric for ``name``."""
        if not self._enable_prometheus:
            return None

        with self._lock:
            if name in self._prom_metrics:
                return self._prom_metrics[name]

            defn = METRIC_DEFINITIONS.get(name)
            if defn is None or defn.metric_type != metric_type:
                defn = MetricDefinition(
                    name,
                    metric_type,
                    f"Dynamic {metric_type}: {name}",
                    tuple(sorted(labels)) if labels else (),
                )

            kwargs: dict[str, Any] = {"registry": self._registry}
            if metric_type == "histogram":
                kwargs["buckets"] = defn.buckets or BACKOFF_BUCKETS
            try:
                metric = _PROM_TYPES[metric_type](
                    name, defn.description, list(defn.label_names), **kwargs
                )
            except ValueError as e:
                logger.warning(f"Failed to create Prometheus {metric_type} {name}: {e}")
                metric = None
            self._prom_metrics[name] = metric
            return metric

    def _apply_prom(
        self,
        name: str,
        metric_type: str,
        method: str,
        value: float,
        labels: dict[str, str] | None,
    ) -> None:
        metric = self._get_or_create_prom_metric(name, metric_type, labels)
        if metric is None:
            return
        try:
            target = metric.labels(**labels) if labels else metric
            getattr(target, method)(value)
        except (ValueError, TypeError) as e:
            logger.debug(f"Prometheus {metric_type} update failed for {name}: {e}")

    # === Counter Operations ===

    def inc_counter(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter increment must be non-negative")

        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._counters[name][label_key] += value

        self._apply_prom(name, "counter", "inc", value, labels)

    # === Gauge Operations ===

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to a specific value."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._gauges[name][label_key] = value

        self._apply_prom(name, "gauge", "set", value, labels)

    # === Histogram Operations ===

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation in a histogram."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            observations = self._histograms[name][label_key]
            observations.append(value)
            if len(observations) > 10000:
                del observations[:-5000]

        self._apply_prom(name, "histogram", "observe", value, labels)

    # === Snapshot Operations ===

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Returns a dict suitable for JSON serialization:
        {
            "counters": {"metric_name": {"label_key": value, ...}, ...},
            "gauges": {"metric_name": {"label_key": value, ...}, ...},
            "histograms": {"metric_name": {"label_key": {...}, ...}, ...}
        }
        """
        with self._lock:
            counters = {name: dict(values) for name, values in self._counters.items()}
            gauges = {name: dict(values) for name, values in self._gauges.items()}
            histograms: dict[str, dict[str, dict[str, float]]] = {}
            for name, label_values in self._histograms.items():
                histograms[name] = {
                    label_key: {
                        "count": len(observations),
                        "sum": sum(observations),
                        "min": min(observations),
                        "max": max(observations),
                    }
                    for label_key, observations in label_values.items()
                    if observations
                }

        return {"counters": counters, "gauges": gauges, "histograms": histograms}

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Return the current dict value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(name, {}).get(self._labels_to_key(labels), 0)

    def reset(self) -> None:
        """Reset the dict snapshot. Registered Prometheus metrics are kept."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._label_combinations.clear()

        logger.debug("Metrics collector reset")

    # === Prometheus HTTP Server ===

    def start_http_server(self, host: str = "127.0.0.1", port: int = 9090) -> bool:
        """
        Start the Prometheus HTTP server for metrics scraping.

        Binds to localhost by default. Returns True when the server is
        running after the call.
        """
        if self._server_running:
            logger.warning("Prometheus server already running")
            return True

        try:
            start_http_server(port, addr=host, registry=self._registry)
        except OSError as e:
            logger.error(f"Failed to start Prometheus server: {e}")
            return False

        self._server_running = True
        logger.info(f"Prometheus metrics server started on {host}:{port}")
        return True

    @property
    def prometheus_enabled(self) -> bool:
        return self._enable_prometheus

    @property
    def server_running(self) -> bool:
        return self._server_running


# =============================================================================
# Singleton Pattern
# =============================================================================

_global_collector: UnifiedMetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector(enable_prometheus: bool = True) -> UnifiedMetricsCollector:
    """
    Get or create the global metrics collector singleton.

    Args:
        enable_prometheus: Whether to enable Prometheus metrics
            (only used on first call)
    """
    global _global_collector

    if _global_collector is None:
        with _collector_lock:
            if _global_collector is None:
                _global_collector = UnifiedMetricsCollector(
                    enable_prometheus=enable_prometheus
                )

    return _global_collector


def reset_metrics_collector() -> None:
    """Drop the global collector singleton (mainly for testing)."""
    global _global_collector
    with _collector_lock:
        if _global_collector:
            _global_collector.reset()
        _global_collector = None


__all__ = [
    "METRIC_DEFINITIONS",
    "MetricDefinition",
    "UnifiedMetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
