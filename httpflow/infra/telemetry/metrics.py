"""
Metrics Collector — Prometheus + Internal Metrics
===================================================

Centralized metrics registry for the lifecycle runtime.
Provides Prometheus counters/histograms on a dedicated registry
plus in-process latency percentiles per stage.

Metric Naming Convention:
  - httpflow_{component}_{metric}_{unit}
  - e.g., httpflow_lifecycle_stage_latency_seconds
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from httpflow.infra.telemetry.logger import get_logger

logger = get_logger(__name__)

# ── Percentile Tracker ─────────────────────────────────────────────

class PercentileTracker:
    """Thread-safe rolling window percentile calculator with cached sorting."""

    __slots__ = ("_lock", "_sorted_cache", "_sorted_dirty", "_values")

    def __init__(self, window_size: int = 1000):
        self._values: deque[float] = deque(maxlen=window_size)
        self._lock = threading.Lock()
        self._sorted_dirty = True
        self._sorted_cache: list[float] = []

    def record(self, value: float) -> None:
        with self._lock:
            self._values.append(value)
            self._sorted_dirty = True

    def percentile(self, p: float) -> float:
        """Get percentile value (0-100). Only re-sorts when data changes."""
        with self._lock:
            if not self._values:
                return 0.0
            if self._sorted_dirty:
                self._sorted_cache = sorted(self._values)
                self._sorted_dirty = False
            idx = int(len(self._sorted_cache) * p / 100)
            return self._sorted_cache[min(idx, len(self._sorted_cache) - 1)]

    @property
    def p50(self) -> float:
        return self.percentile(50)

    @property
    def p95(self) -> float:
        return self.percentile(95)

    @property
    def p99(self) -> float:
        return self.percentile(99)

    @property
    def count(self) -> int:
        return len(self._values)

# ── Metrics Collector ──────────────────────────────────────────────

class MetricsCollector:
    """
    Lifecycle metrics.

    Each collector owns its registry, so several collectors (tests,
    embedded clients) never clash on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._lock = threading.Lock()
        self._stage_latency: dict[str, PercentileTracker] = {}
        self._settled: dict[str, int] = {}
        self.registry = registry or CollectorRegistry()

        self.transitions = Counter(
            "httpflow_lifecycle_transitions_total",
            "State transitions taken by lifecycle machines",
            labelnames=["machine", "source", "target"],
            registry=self.registry,
        )
        self.stage_latency = Histogram(
            "httpflow_lifecycle_stage_latency_seconds",
            "Stage capability latency",
            labelnames=["machine", "stage", "outcome"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )
        self.settled = Counter(
            "httpflow_lifecycle_settled_total",
            "Lifecycle runs reaching a settled state",
            labelnames=["machine", "state"],
            registry=self.registry,
        )
        self.collaborator_errors = Counter(
            "httpflow_lifecycle_collaborator_errors_total",
            "Exceptions raised by observers or the cancel capability",
            labelnames=["machine", "kind"],
            registry=self.registry,
        )

    # ── Recording helpers ──

    def record_transition(self, machine: str, source: str, target: str) -> None:
        self.transitions.labels(machine=machine, source=source, target=target).inc()

    def record_stage(self, machine: str, stage: str, outcome: str, latency_s: float) -> None:
        self.stage_latency.labels(machine=machine, stage=stage, outcome=outcome).observe(latency_s)
        with self._lock:
            tracker = self._stage_latency.setdefault(stage, PercentileTracker())
        tracker.record(latency_s * 1000)

    def record_settled(self, machine: str, state: str) -> None:
        self.settled.labels(machine=machine, state=state).inc()
        with self._lock:
            self._settled[state] = self._settled.get(state, 0) + 1

    def record_collaborator_error(self, machine: str, kind: str) -> None:
        self.collaborator_errors.labels(machine=machine, kind=kind).inc()

    # ── Export ──

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of in-process latency percentiles and settle counts."""
        with self._lock:
            trackers = dict(self._stage_latency)
            settled = dict(self._settled)
        return {
            "stages": {
                stage: {
                    "count": t.count,
                    "p50_ms": round(t.p50, 3),
                    "p95_ms": round(t.p95, 3),
                    "p99_ms": round(t.p99, 3),
                }
                for stage, t in trackers.items()
            },
            "settled": settled,
        }

    def export_prometheus(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)

# ── Singleton ──────────────────────────────────────────────────────

_metrics: MetricsCollector | None = None
_metrics_lock = threading.Lock()

def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    global _metrics
    if _metrics is None:
        with _metrics_lock:
            if _metrics is None:
                _metrics = MetricsCollector()
                logger.debug("metrics_collector_created")
    return _metrics
