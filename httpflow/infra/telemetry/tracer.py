"""
Distributed Tracing — OpenTelemetry Integration
==================================================

Provides span-based tracing for lifecycle stages.

Design:
  - Backed by the OpenTelemetry API; without a configured provider
    every span is non-recording, so instrumentation is always safe
  - ``init_tracing`` installs an SDK provider with a console exporter
  - Attribute values are filtered to OpenTelemetry-compatible types

Usage:
    from httpflow.infra.telemetry.tracer import get_tracer

    tracer = get_tracer(__name__)

    with tracer.span("lifecycle.stage.dispatch", attributes={"attempt": 1}) as span:
        response = await dispatch(snapshot)
        span.set_attribute("status", response.status)
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace as otel_trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from httpflow.infra.telemetry.logger import get_logger

logger = get_logger(__name__)

_SPAN_KINDS = {
    "internal": otel_trace.SpanKind.INTERNAL,
    "server": otel_trace.SpanKind.SERVER,
    "client": otel_trace.SpanKind.CLIENT,
    "producer": otel_trace.SpanKind.PRODUCER,
    "consumer": otel_trace.SpanKind.CONSUMER,
}

def _clean(attributes: dict[str, Any] | None) -> dict[str, Any]:
    if not attributes:
        return {}
    return {
        k: v if isinstance(v, (str, bool, int, float)) else str(v)
        for k, v in attributes.items()
        if v is not None
    }

# ── Tracer ─────────────────────────────────────────────────────────

class Tracer:
    """
    Thin wrapper over an OpenTelemetry tracer.

    A disabled tracer hands out the invalid (non-recording) span so
    callers never branch on whether tracing is on.
    """

    def __init__(self, name: str, *, enabled: bool = True):
        self._name = name
        self._enabled = enabled
        self._tracer = otel_trace.get_tracer(name) if enabled else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @contextmanager
    def span(
        self,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        kind: str = "internal",
    ) -> Generator[Any, None, None]:
        """
        Create a traced span.

        Args:
            name: Span name (e.g., "lifecycle.stage.prepare")
            attributes: Initial span attributes
            kind: Span kind: "internal", "server", "client", "producer", "consumer"
        """
        if self._tracer is None:
            yield otel_trace.INVALID_SPAN
            return

        with self._tracer.start_as_current_span(
            name,
            kind=_SPAN_KINDS.get(kind, otel_trace.SpanKind.INTERNAL),
            attributes=_clean(attributes),
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise

# ── Global Tracer Registry ────────────────────────────────────────

_tracers: dict[str, Tracer] = {}
_tracing_enabled: bool = False

def init_tracing(
    *,
    service_name: str | None = None,
    enabled: bool | None = None,
    exporter: str | None = None,
    configure_provider: bool = True,
) -> None:
    """
    Initialize the tracing system. Call once at application startup.

    Args:
        service_name: Service name for span attribution (default: settings.APP_NAME)
        enabled: Enable/disable tracing globally (default: settings.TRACING_ENABLED)
        exporter: "console" or "none" (default: settings.TRACING_EXPORTER)
        configure_provider: If False, reuse a provider configured elsewhere.
    """
    global _tracing_enabled

    from httpflow.core.config import get_settings

    cfg = get_settings()
    _tracing_enabled = cfg.TRACING_ENABLED if enabled is None else enabled
    _tracers.clear()

    if not _tracing_enabled or not configure_provider:
        logger.info("tracing_configured", enabled=_tracing_enabled, provider="existing")
        return

    exporter = exporter or cfg.TRACING_EXPORTER
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name or cfg.APP_NAME})
    )
    if exporter == "console":
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    elif exporter != "none":
        logger.warning("tracing_exporter_unknown", exporter=exporter)

    otel_trace.set_tracer_provider(provider)
    logger.info("tracing_initialized", exporter=exporter)

def get_tracer(name: str) -> Tracer:
    """Get or create a tracer for the given module."""
    if name not in _tracers:
        _tracers[name] = Tracer(name, enabled=_tracing_enabled)
    return _tracers[name]
