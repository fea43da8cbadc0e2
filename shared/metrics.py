"""
Shared metrics configuration for the storefront shipping service.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances (one per
    test, for example) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

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
            ["method", "route", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "route"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Error responses by error code",
            ["code"],
            registry=self.registry
        )

        if self.service_name == "shipping":
            self._setup_shipping_metrics()

    def _setup_shipping_metrics(self):
        """Set up shipping-specific metrics."""
        self._metrics["carrier_requests_total"] = Counter(
            "carrier_requests_total",
            "Total carrier API requests",
            ["operation", "outcome"],
            registry=self.registry
        )

        self._metrics["carrier_request_duration_seconds"] = Histogram(
            "carrier_request_duration_seconds",
            "Carrier API request duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["rate_cache_hits_total"] = Counter(
            "rate_cache_hits_total",
            "Total rate cache hits",
            registry=self.registry
        )

        self._metrics["rate_cache_misses_total"] = Counter(
            "rate_cache_misses_total",
            "Total rate cache misses",
            registry=self.registry
        )

        self._metrics["rate_fallbacks_total"] = Counter(
            "rate_fallbacks_total",
            "Per-mail-class fallback rounds",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["rate_limit_hits_total"] = Counter(
            "rate_limit_hits_total",
            "Total rate limit denials",
            ["scope"],
            registry=self.registry
        )

    def record_http_request(self, method: str, route: str, status_code: int, duration: float):
        """Record HTTP request metrics, labelled by route template to bound cardinality."""
        self._metrics["http_requests_total"].labels(
            method=method,
            route=route,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            route=route
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, code: str):
        self._metrics["errors_total"].labels(code=code).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        with self._lock:
            metric.inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
