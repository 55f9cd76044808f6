"""
Prometheus metrics for the Astronomer gateway.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for the gateway service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns its registry unless one is passed in
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # HTTP metrics for the boundary
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["upstream_requests_total"] = Counter(
            "upstream_requests_total",
            "Total calls made to upstream data providers",
            ["endpoint", "outcome"],
            registry=self.registry
        )

        self._metrics["upstream_request_duration_seconds"] = Histogram(
            "upstream_request_duration_seconds",
            "Upstream call duration in seconds",
            ["endpoint"],
            registry=self.registry
        )

        self._metrics["rate_limit_hits_total"] = Counter(
            "rate_limit_hits_total",
            "Total rate limit hits",
            ["endpoint", "source"],
            registry=self.registry
        )

        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["endpoint"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["endpoint"],
            registry=self.registry
        )

        self._metrics["cache_evictions_total"] = Counter(
            "cache_evictions_total",
            "Total entries evicted from a full cache",
            registry=self.registry
        )

        self._metrics["stale_responses_total"] = Counter(
            "stale_responses_total",
            "Total expired cache entries served after an upstream failure",
            ["endpoint"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        with self._lock:
            metric = self._metrics.get(metric_name)
            if metric is None:
                return
            if labels:
                metric = metric.labels(**labels)
            metric.inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        with self._lock:
            metric = self._metrics.get(metric_name)
            if metric is None:
                return
            if labels:
                metric = metric.labels(**labels)
            metric.observe(value)

    def sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a counter sample; 0.0 when it was never incremented."""
        value = self.registry.get_sample_value(metric_name, labels)
        return value or 0.0


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Create a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
