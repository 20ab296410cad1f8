# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for the observability collector module.

Tests cover:
- UnifiedMetricsCollector: counters, gauges and histograms
- Label cardinality protection
- Prometheus registration against a private registry
- Singleton pattern: get_metrics_collector, reset_metrics_collector
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from resilient_stream.observability.collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    UnifiedMetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from resilient_stream.observability.constants import (
    DISPATCH_ADMITTED_TOTAL,
    DISPATCH_IN_FLIGHT,
    RETRY_ATTEMPTS_TOTAL,
    RETRY_BACKOFF_SECONDS,
    STREAM_FRAMES_TOTAL,
)


class TestMetricDefinitions:
    """Test the pre-declared metric schema."""

    def test_runtime_metrics_declared(self) -> None:
        assert METRIC_DEFINITIONS[RETRY_ATTEMPTS_TOTAL].label_names == ("error_kind",)
        assert METRIC_DEFINITIONS[DISPATCH_ADMITTED_TOTAL].label_names == ("gate",)
        assert METRIC_DEFINITIONS[RETRY_BACKOFF_SECONDS].metric_type == "histogram"
        assert METRIC_DEFINITIONS[STREAM_FRAMES_TOTAL].label_names == ()

    def test_definition_defaults(self) -> None:
        defn = MetricDefinition(name="x", metric_type="gauge", description="d")
        assert defn.label_names == ()
        assert defn.buckets is None


class TestDictMetrics:
    """Counter, gauge and histogram operations without Prometheus."""

    @pytest.fixture
    def collector(self) -> UnifiedMetricsCollector:
        return UnifiedMetricsCollector(enable_prometheus=False)

    def test_inc_counter_accumulates(self, collector: UnifiedMetricsCollector) -> None:
        collector.inc_counter("test_counter", value=3)
        collector.inc_counter("test_counter", value=7)
        assert collector.get_counter("test_counter") == 10

    def test_inc_counter_with_labels(self, collector: UnifiedMetricsCollector) -> None:
        collector.inc_counter("test_counter", labels={"gate": "chat"})
        collector.inc_counter("test_counter", labels={"gate": "chat"})
        collector.inc_counter("test_counter", labels={"gate": "embed"})

        counters = collector.get_metrics()["counters"]["test_counter"]
        assert counters == {"gate=chat": 2.0, "gate=embed": 1.0}

    def test_negative_increment_raises(self, collector: UnifiedMetricsCollector) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            collector.inc_counter("test_counter", value=-1)

    def test_unknown_counter_is_zero(self, collector: UnifiedMetricsCollector) -> None:
        assert collector.get_counter("missing") == 0

    def test_set_gauge_overwrites(self, collector: UnifiedMetricsCollector) -> None:
        collector.set_gauge("test_gauge", 4)
        collector.set_gauge("test_gauge", 2)
        assert collector.get_metrics()["gauges"]["test_gauge"] == {"": 2}

    def test_histogram_summary(self, collector: UnifiedMetricsCollector) -> None:
        for value in (0.1, 0.4, 0.2):
            collector.observe_histogram("test_hist", value)

        summary = collector.get_metrics()["histograms"]["test_hist"][""]
        assert summary["count"] == 3
        assert summary["sum"] == pytest.approx(0.7)
        assert summary["min"] == 0.1
        assert summary["max"] == 0.4

    def test_reset_clears_snapshot(self, collector: UnifiedMetricsCollector) -> None:
        collector.inc_counter("test_counter")
        collector.reset()
        assert collector.get_metrics() == {
            "counters": {},
            "gauges": {},
            "histograms": {},
        }

    def test_cardinality_limit(self, collector: UnifiedMetricsCollector) -> None:
        with patch.object(UnifiedMetricsCollector, "MAX_LABEL_COMBINATIONS", 2):
            collector.inc_counter("test_counter", labels={"gate": "a"})
            collector.inc_counter("test_counter", labels={"gate": "b"})
            collector.inc_counter("test_counter", labels={"gate": "c"})
            collector.inc_counter("test_counter", labels={"gate": "a"})

        counters = collector.get_metrics()["counters"]["test_counter"]
        assert counters == {"gate=a": 2.0, "gate=b": 1.0}


class TestPrometheusIntegration:
    """Prometheus export against a private registry."""

    @pytest.fixture
    def registry(self) -> CollectorRegistry:
        return CollectorRegistry()

    def test_counter_exported(self, registry: CollectorRegistry) -> None:
        collector = UnifiedMetricsCollector(registry=registry)
        collector.inc_counter(DISPATCH_ADMITTED_TOTAL, labels={"gate": "chat"})
        collector.inc_counter(DISPATCH_ADMITTED_TOTAL, labels={"gate": "chat"})

        value = registry.get_sample_value(
            DISPATCH_ADMITTED_TOTAL, labels={"gate": "chat"}
        )
        assert value == 2.0

    def test_gauge_exported(self, registry: CollectorRegistry) -> None:
        collector = UnifiedMetricsCollector(registry=registry)
        collector.set_gauge(DISPATCH_IN_FLIGHT, 3, labels={"gate": "chat"})

        assert registry.get_sample_value(DISPATCH_IN_FLIGHT, {"gate": "chat"}) == 3.0

    def test_histogram_exported(self, registry: CollectorRegistry) -> None:
        collector = UnifiedMetricsCollector(registry=registry)
        collector.observe_histogram(RETRY_BACKOFF_SECONDS, 0.2)

        count = registry.get_sample_value(f"{RETRY_BACKOFF_SECONDS}_count")
        assert count == 1.0

    def test_dynamic_metric_registered(self, registry: CollectorRegistry) -> None:
        collector = UnifiedMetricsCollector(registry=registry)
        collector.inc_counter("custom_events_total", labels={"source": "test"})

        value = registry.get_sample_value(
            "custom_events_total", labels={"source": "test"}
        )
        assert value == 1.0

    def test_duplicate_registration_is_tolerated(
        self, registry: CollectorRegistry
    ) -> None:
        first = UnifiedMetricsCollector(registry=registry)
        second = UnifiedMetricsCollector(registry=registry)
        first.inc_counter(STREAM_FRAMES_TOTAL)
        second.inc_counter(STREAM_FRAMES_TOTAL)

        assert second.get_counter(STREAM_FRAMES_TOTAL) == 1.0
        assert registry.get_sample_value(STREAM_FRAMES_TOTAL) == 1.0

    def test_start_http_server_failure(self, registry: CollectorRegistry) -> None:
        collector = UnifiedMetricsCollector(registry=registry)
        with patch(
            "resilient_stream.observability.collector.start_http_server",
            side_effect=OSError("address in use"),
        ):
            assert collector.start_http_server(port=9999) is False
        assert collector.server_running is False

    def test_start_http_server_once(self, registry: CollectorRegistry) -> None:
        collector = UnifiedMetricsCollector(registry=registry)
        with patch(
            "resilient_stream.observability.collector.start_http_server"
        ) as mock_start:
            assert collector.start_http_server(port=9999) is True
            assert collector.start_http_server(port=9999) is True

        mock_start.assert_called_once_with(9999, addr="127.0.0.1", registry=registry)
        assert collector.server_running is True


class TestSingleton:
    """Tests for the global collector singleton."""

    def test_returns_same_instance(self) -> None:
        reset_metrics_collector()
        try:
            first = get_metrics_collector(enable_prometheus=False)
            assert get_metrics_collector() is first
        finally:
            reset_metrics_collector()

    def test_reset_creates_new_instance(self) -> None:
        reset_metrics_collector()
        first = get_metrics_collector(enable_prometheus=False)
        reset_metrics_collector()
        try:
            assert get_metrics_collector(enable_prometheus=False) is not first
        finally:
            reset_metrics_collector()
