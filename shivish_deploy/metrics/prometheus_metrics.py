"""Prometheus metrics definitions and helpers.

Exposes the results of stack health probes so an existing Prometheus can
scrape the deployment host.
"""

from typing import Callable, Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)

from shivish_deploy.models import ProbeResult


class StackMetrics:
    """Health probe metrics."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize stack metrics.

        Args:
            registry: Prometheus registry to use
        """
        self.registry = registry

        # Last probe outcome
        self.service_up = Gauge(
            "shivish_service_up",
            "Whether the last probe of a service was healthy (1) or not (0)",
            ["service", "kind"],
            registry=registry,
        )

        # Probe latency
        self.probe_duration = Histogram(
            "shivish_probe_duration_seconds",
            "Time spent waiting for a probe response",
            ["service", "kind"],
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        # Failed probes
        self.probe_failures = Counter(
            "shivish_probe_failures_total",
            "Number of probes that did not report healthy",
            ["service", "kind", "status"],
            registry=registry,
        )

    def record(self, result: ProbeResult) -> None:
        """Update every metric from one probe result."""
        self.service_up.labels(service=result.name, kind=result.kind).set(1 if result.healthy else 0)
        if result.latency_ms is not None:
            self.probe_duration.labels(service=result.name, kind=result.kind).observe(result.latency_ms / 1000.0)
        if not result.healthy:
            self.probe_failures.labels(
                service=result.name, kind=result.kind, status=result.status.value
            ).inc()

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Expose the registry on ``http://addr:port/metrics``."""
        start_http_server(port, addr=addr, registry=self.registry)


def get_metrics_handler(registry: Optional[CollectorRegistry] = None) -> Callable[[], bytes]:
    """Get metrics handler for HTTP endpoint.

    Returns:
        Function that generates Prometheus metrics output
    """
    target = registry if registry is not None else REGISTRY

    def metrics_handler() -> bytes:
        return generate_latest(target)

    return metrics_handler
