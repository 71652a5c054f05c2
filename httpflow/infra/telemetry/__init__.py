"""
Telemetry Layer — Unified Observability
========================================

Provides:
  - Structured logging with request/machine context
  - Distributed tracing (OpenTelemetry)
  - Metrics collection (Prometheus)

Usage:
    from httpflow.infra.telemetry import get_logger, get_metrics, get_tracer

    logger = get_logger(__name__)
    with get_tracer(__name__).span("lifecycle.stage.dispatch") as span:
        span.set_attribute("attempt", 1)
        logger.info("dispatched", status=200)
"""

from httpflow.infra.telemetry.logger import (
    StructuredLogger,
    clear_log_context,
    get_logger,
    log_context,
    set_log_context,
    setup_logging,
)
from httpflow.infra.telemetry.metrics import MetricsCollector, get_metrics
from httpflow.infra.telemetry.tracer import Tracer, get_tracer, init_tracing

__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "Tracer",
    "clear_log_context",
    "get_logger",
    "get_metrics",
    "get_tracer",
    "init_tracing",
    "log_context",
    "set_log_context",
    "setup_logging",
]
