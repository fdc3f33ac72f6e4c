"""
Tests for structured logging, metrics and probes.
"""

import logging

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from studyforge.observability.logging import (
    StructuredFormatter,
    clear_trace_id,
    get_logger,
    get_trace_id,
    set_trace_id,
)
from studyforge.observability.metrics import get_metrics_collector, setup_metrics, timer
from studyforge.observability.probe import probe


def metric_points(reader: InMemoryMetricReader) -> dict[str, list]:
    points = {}
    for resource_metrics in reader.get_metrics_data().resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name] = list(metric.data.data_points)
    return points


class TestStructuredLogging:
    """Test the key=value formatter and trace ids."""

    def test_format_includes_trace_and_fields(self):
        set_trace_id("QUIZ:doc-1:abcd")
        record = logging.LogRecord(
            "studyforge.core.orchestrator", logging.INFO, __file__, 1, "Flow completed", None, None
        )
        record.flow = "QUIZ"

        line = StructuredFormatter().format(record)

        assert "level=INFO" in line
        assert "trace=QUIZ:doc-1:abcd" in line
        assert "mod=orchestrator" in line
        assert 'msg="Flow completed"' in line
        assert "flow=QUIZ" in line
        clear_trace_id()
        assert get_trace_id() is None

    def test_logger_cached(self):
        assert get_logger("studyforge.x") is get_logger("studyforge.x")

    def test_keyword_fields_reach_record(self, caplog):
        caplog.set_level(logging.INFO, logger="studyforge.test")
        get_logger("studyforge.test").info("hello", document_id="doc-1")
        assert caplog.records[-1].document_id == "doc-1"


class TestMetrics:
    """Test MetricsCollector against the SDK."""

    @pytest.fixture
    def reader(self):
        reader = InMemoryMetricReader()
        setup_metrics(MeterProvider(metric_readers=[reader]).get_meter("test"))
        return reader

    def test_transition_and_attempt_counters(self, reader):
        collector = get_metrics_collector()
        collector.record_transition("QUIZ", "processing")
        collector.record_attempt("QUIZ", "gpt-4o-mini", "transient")

        points = metric_points(reader)

        assert dict(points["studyforge_flow_transitions_total"][0].attributes) == {
            "flow": "QUIZ",
            "to": "processing",
        }
        assert points["studyforge_generation_failures_total"][0].attributes["bucket"] == "transient"

    def test_timer_records_histogram(self, reader):
        with timer("unit.op", {"k": "v"}):
            pass
        assert "studyforge_unit.op_duration" in metric_points(reader)

    def test_noop_collector_by_default(self):
        get_metrics_collector().record_generation("QUIZ", 0.1, True)


class TestProbe:
    """Test probe."""

    def test_probe_reraises(self):
        with pytest.raises(ValueError):
            with probe("unit.failing", flow="QUIZ"):
                raise ValueError("boom")

    def test_probe_passes_through(self):
        with probe("unit.ok"):
            value = 1
        assert value == 1
