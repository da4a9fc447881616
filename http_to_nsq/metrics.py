"""Prometheus metrics for the bridge."""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from http_to_nsq.config import APP_NAME

OK = "ok"
ERROR = "error"


class RequestMetrics:
    """Counts publish outcomes per (status, topic).

    Holds its own registry so /metrics only exposes what the bridge
    registers. ``app`` and ``host`` are fixed for the process lifetime.
    """

    def __init__(
        self,
        host: str,
        app: str = APP_NAME,
        runtime_metrics: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._const_labels = {"app": app, "host": host}
        self._requests = Counter(
            "http_requests",
            "Number of HTTP requests.",
            ["app", "host", "status", "topic"],
            registry=self.registry,
        )

        if runtime_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

    def increment(self, status: str, topic: str) -> None:
        """Record one request outcome."""
        self._requests.labels(status=status, topic=topic, **self._const_labels).inc()

    def value(self, status: str, topic: str) -> float:
        """Current counter value for a label pair (0 if never incremented)."""
        sample = self.registry.get_sample_value(
            "http_requests_total",
            {"status": status, "topic": topic, **self._const_labels},
        )
        return sample or 0.0

    def exposition(self) -> tuple[bytes, str]:
        """Render all series in the Prometheus text format."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
