"""
Prometheus metrics collection.

In-memory counters; Prometheus handles storage.
"""

import time

import structlog
from prometheus_client import Counter, Gauge, Histogram, Info

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """Centralized metrics collection for GateLog."""

    def __init__(self) -> None:
        # Service info
        self.service_info = Info(
            "gatelog_service",
            "GateLog service information"
        )
        self.service_info.info({
            "version": "0.1.0",
            "service": "gatelog",
        })

        # Exchange metrics
        self.exchanges_total = Counter(
            "gatelog_exchanges_total",
            "Total proxied exchanges",
            ["method", "status_code"]
        )

        self.exchange_duration = Histogram(
            "gatelog_exchange_duration_seconds",
            "Exchange duration in seconds, entry to response log",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
        )

        self.bodies_truncated_total = Counter(
            "gatelog_bodies_truncated_total",
            "Bodies cut at the capture limit",
            ["direction"]
        )

        self.redaction_failures_total = Counter(
            "gatelog_redaction_failures_total",
            "Logging path failures that degraded a log field",
            ["stage"]
        )

        # Upstream metrics
        self.upstream_requests_total = Counter(
            "gatelog_upstream_requests_total",
            "Total upstream calls",
            ["outcome"]
        )

        self.uptime_seconds = Gauge(
            "gatelog_uptime_seconds",
            "Service uptime in seconds"
        )

        self._start_time = time.time()

    def record_exchange(self, method: str, status_code: int, duration_seconds: float) -> None:
        self.exchanges_total.labels(
            method=method,
            status_code=str(status_code)
        ).inc()
        self.exchange_duration.observe(duration_seconds)

    def record_truncation(self, direction: str) -> None:
        self.bodies_truncated_total.labels(direction=direction).inc()

    def record_redaction_failure(self, stage: str) -> None:
        self.redaction_failures_total.labels(stage=stage).inc()

    def record_upstream(self, outcome: str) -> None:
        self.upstream_requests_total.labels(outcome=outcome).inc()

    def update_uptime(self) -> None:
        self.uptime_seconds.set(time.time() - self._start_time)
