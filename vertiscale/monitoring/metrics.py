"""
Prometheus Metrics Exporter for the autoscaler.

Responsibilities:
- Define and export scaling metrics
- Track scale attempts and their outcomes
- Expose metrics for Prometheus scraping
"""

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)


class ScalingMetrics:
    """
    Prometheus metrics for the autoscaler.

    Exposes metrics for:
    - Scale attempts by trigger and outcome
    - Current position on the size ladder
    - Scale durations and drain results
    - Rule cycle health
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        prefix: str = "vertiscale",
    ) -> None:
        """
        Initialize metrics.

        Args:
            registry: Prometheus registry (a fresh one if None)
            prefix: Prefix for all metric names
        """
        self._registry = registry or CollectorRegistry()
        self._prefix = prefix

        self._init_scaling_metrics()
        self._init_cycle_metrics()

        logger.info("Metrics initialized", prefix=prefix)

    def _metric_name(self, name: str) -> str:
        """Generate full metric name with prefix."""
        return f"{self._prefix}_{name}"

    def _init_scaling_metrics(self) -> None:
        """Initialize scaling-related metrics."""
        self.scale_attempts_total = Counter(
            self._metric_name("scale_attempts_total"),
            "Total number of scale attempts",
            ["trigger", "direction", "outcome"],
            registry=self._registry,
        )

        self.scale_duration_seconds = Histogram(
            self._metric_name("scale_duration_seconds"),
            "Time taken by a completed scale (drain, stop, resize)",
            ["direction"],
            buckets=(30, 60, 120, 180, 300, 450, 600, 900, 1200),
            registry=self._registry,
        )

        self.ladder_index = Gauge(
            self._metric_name("ladder_index"),
            "Current position of the instance on the size ladder",
            registry=self._registry,
        )

        self.last_scaled_timestamp = Gauge(
            self._metric_name("last_scaled_timestamp_seconds"),
            "Unix timestamp of the last successful scale",
            registry=self._registry,
        )

        self.scaling_in_progress = Gauge(
            self._metric_name("scaling_in_progress"),
            "1 while a scale attempt holds the lock",
            registry=self._registry,
        )

        self.recovery_total = Counter(
            self._metric_name("recovery_total"),
            "Power-on recoveries after failed resizes",
            ["outcome"],
            registry=self._registry,
        )

    def _init_cycle_metrics(self) -> None:
        """Initialize rule cycle metrics."""
        self.rule_cycles_total = Counter(
            self._metric_name("rule_cycles_total"),
            "Rule evaluation cycles",
            ["result"],
            registry=self._registry,
        )

    def record_scale_attempt(
        self,
        trigger: str,
        direction: int,
        outcome: str,
        duration_seconds: float | None = None,
    ) -> None:
        """Record the end of a scale attempt."""
        self.scale_attempts_total.labels(
            trigger=trigger, direction=f"{direction:+d}", outcome=outcome
        ).inc()

        if duration_seconds is not None:
            self.scale_duration_seconds.labels(direction=f"{direction:+d}").observe(
                duration_seconds
            )

    def record_scaled(self, ladder_index: int) -> None:
        """Record a successful scale."""
        self.ladder_index.set(ladder_index)
        self.last_scaled_timestamp.set(time.time())

    def set_ladder_index(self, ladder_index: int) -> None:
        self.ladder_index.set(ladder_index)

    def set_in_progress(self, in_progress: bool) -> None:
        self.scaling_in_progress.set(1 if in_progress else 0)

    def record_recovery(self, succeeded: bool) -> None:
        self.recovery_total.labels(outcome="success" if succeeded else "failure").inc()

    def record_rule_cycle(self, result: str) -> None:
        """Record a rule cycle result (no_match, matched, skipped, error)."""
        self.rule_cycles_total.labels(result=result).inc()

    # ==========================================================================
    # Export methods
    # ==========================================================================

    def generate_metrics(self) -> bytes:
        """Generate Prometheus metrics output."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for Prometheus metrics."""
        return CONTENT_TYPE_LATEST

    def get_registry(self) -> CollectorRegistry:
        """Get the Prometheus registry."""
        return self._registry

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Expose the registry over HTTP on `port`."""
        start_http_server(port, addr=addr, registry=self._registry)
        logger.info("Metrics endpoint started", port=port, addr=addr)


# Global metrics instance
_metrics: ScalingMetrics | None = None


def get_metrics() -> ScalingMetrics:
    """Get the global metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = ScalingMetrics()
    return _metrics


def init_metrics(
    registry: CollectorRegistry | None = None,
    prefix: str = "vertiscale",
) -> ScalingMetrics:
    """Initialize the global metrics instance."""
    global _metrics
    _metrics = ScalingMetrics(registry=registry, prefix=prefix)
    return _metrics
