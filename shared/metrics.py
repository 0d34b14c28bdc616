"""
Shared metrics configuration for 254Carbon Access Layer.
"""

from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry, so several service instances (one per
    test, for example) never clash on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
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

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "entity_access":
            self._setup_entity_access_metrics()

    def _setup_entity_access_metrics(self):
        """Set up entity access specific metrics."""
        self._metrics["entity_access_decisions_total"] = Counter(
            "entity_access_decisions_total",
            "Total entity access decisions",
            ["policy_id", "decision", "source"],
            registry=self.registry
        )

        self._metrics["entity_access_evaluation_duration_seconds"] = Histogram(
            "entity_access_evaluation_duration_seconds",
            "Entity access rule evaluation duration in seconds",
            ["policy_id"],
            registry=self.registry
        )

        self._metrics["entity_access_cache_entries"] = Gauge(
            "entity_access_cache_entries",
            "Number of cached entity access decisions",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

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

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._labelled(operation_name, labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._labelled(metric_name, labels).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            self._labelled(metric_name, labels).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._labelled(metric_name, labels).observe(value)

    def _labelled(self, metric_name: str, labels: Dict[str, Any]):
        metric = self._metrics[metric_name]
        return metric.labels(**labels) if labels else metric


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
