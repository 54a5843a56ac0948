"""Self-monitoring metrics using prometheus_client."""
from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest
)


class SelfMetrics:
    """Self-monitoring metrics for the graph server."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.renders_total = Counter(
            f"{prefix}renders_total",
            "Total number of graph renders",
            ["status"],
            registry=registry
        )

        self.render_duration_seconds = Histogram(
            f"{prefix}render_duration_seconds",
            "Duration of each graph render in seconds",
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry
        )

        self.fetches_total = Counter(
            f"{prefix}fetches_total",
            "Total number of time-series fetched from the backend",
            registry=registry
        )

        self.fetch_errors_total = Counter(
            f"{prefix}fetch_errors_total",
            "Total number of failed time-series fetches",
            ["kind"],
            registry=registry
        )

        self.pool_in_use = Gauge(
            f"{prefix}pool_connections_in_use",
            "Number of backend connections currently in use",
            registry=registry
        )

    def record_render(self, status: str, duration: float):
        """Record a finished render."""
        self.renders_total.labels(status=status).inc()
        self.render_duration_seconds.observe(duration)

    def record_fetch(self):
        self.fetches_total.inc()

    def record_fetch_error(self, kind: str):
        self.fetch_errors_total.labels(kind=kind).inc()

    def track_pool(self, pool):
        """Report the pool's in-use count whenever metrics are collected."""
        self.pool_in_use.set_function(lambda: pool.in_use)

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
