"""
Telemetry Layer — Unit Tests
=============================

Structured formatter, metrics collector and tracer wrapper.
"""

import json
import logging

import pytest
from opentelemetry import trace as otel_trace

from httpflow.infra.telemetry import (
    MetricsCollector,
    Tracer,
    clear_log_context,
    get_logger,
    log_context,
    set_log_context,
)
from httpflow.infra.telemetry.logger import StructuredFormatter, current_log_context
from httpflow.infra.telemetry.metrics import PercentileTracker


def _record(**extra):
    record = logging.LogRecord(
        name="httpflow.test", level=logging.INFO, pathname=__file__, lineno=10,
        msg="transition", args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:

    def teardown_method(self):
        clear_log_context()

    def test_json_output_carries_context_and_extras(self):
        set_log_context(request_id="abc123", machine_id="httpClient")
        line = StructuredFormatter(json_output=True).format(
            _record(source="idle", target="preparing", attempt=1, opaque=object())
        )

        entry = json.loads(line)
        assert entry["event"] == "transition"
        assert entry["level"] == "INFO"
        assert entry["context"] == {"request_id": "abc123", "machine_id": "httpClient"}
        assert entry["data"]["source"] == "idle"
        assert entry["data"]["attempt"] == 1
        assert isinstance(entry["data"]["opaque"], str)
        assert "msg" not in entry["data"]

    def test_human_readable_output(self):
        set_log_context(machine_id="pets", request_id="0123456789abcdef")
        line = StructuredFormatter(json_output=False).format(_record(state="failed"))
        assert "| pets/01234567 |" in line
        assert line.endswith("transition | state=failed")

    def test_log_context_is_scoped(self):
        set_log_context(machine_id="outer")
        with log_context(machine_id="inner", request_id="r1"):
            assert current_log_context() == {"machine_id": "inner", "request_id": "r1"}
        assert current_log_context() == {"machine_id": "outer"}

    def test_logger_accepts_structured_fields(self, caplog):
        caplog.set_level(logging.DEBUG, logger="httpflow.test.logger")
        log = get_logger("httpflow.test.logger").bind(machine="m1")
        log.info("stage_failed", stage="dispatch")

        record = caplog.records[-1]
        assert record.getMessage() == "stage_failed"
        assert record.machine == "m1"
        assert record.stage == "dispatch"

    def test_event_is_a_legal_field_name(self, caplog):
        caplog.set_level(logging.DEBUG, logger="httpflow.test.logger")
        log = get_logger("httpflow.test.logger")
        log.debug("received", event="submit")
        log.error("failed", exc=ValueError("bad"), event="retry")

        debug, error = caplog.records[-2:]
        assert debug.getMessage() == "received"
        assert debug.event == "submit"
        assert error.event == "retry"
        assert error.exc_info[0] is ValueError


class TestMetricsCollector:

    def test_stage_stats_and_settled_counts(self):
        metrics = MetricsCollector()
        metrics.record_stage("m", "dispatch", "ok", 0.010)
        metrics.record_stage("m", "dispatch", "error", 0.030)
        metrics.record_settled("m", "succeeded")

        stats = metrics.get_stats()
        assert stats["stages"]["dispatch"]["count"] == 2
        assert stats["stages"]["dispatch"]["p99_ms"] >= stats["stages"]["dispatch"]["p50_ms"]
        assert stats["settled"] == {"succeeded": 1}

    def test_prometheus_export(self):
        metrics = MetricsCollector()
        metrics.record_transition("m", "idle", "preparing")
        text = metrics.export_prometheus().decode()
        assert "httpflow_lifecycle_transitions_total" in text
        assert 'source="idle"' in text

    def test_collectors_do_not_share_registries(self):
        first, second = MetricsCollector(), MetricsCollector()
        first.record_collaborator_error("m", "on_success")
        assert second.registry.get_sample_value(
            "httpflow_lifecycle_collaborator_errors_total", {"machine": "m", "kind": "on_success"}
        ) is None

    def test_percentile_tracker(self):
        tracker = PercentileTracker(window_size=100)
        for value in range(1, 101):
            tracker.record(float(value))
        assert tracker.count == 100
        assert 49 <= tracker.p50 <= 51
        assert tracker.p99 >= 98


class TestTracer:

    def test_disabled_tracer_yields_invalid_span(self):
        with Tracer("t", enabled=False).span("lifecycle.stage.prepare") as span:
            assert span is otel_trace.INVALID_SPAN
            span.set_attribute("ignored", 1)

    def test_span_reraises(self):
        with pytest.raises(RuntimeError):
            with Tracer("t", enabled=True).span("boom", attributes={"skip": None, "n": 1}):
                raise RuntimeError("stage failed")
