"""
Shared metrics configuration for the event relay.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


# Numeric encoding of ConnectionState for the relay_connection_state gauge
CONNECTION_STATE_VALUES = {
    "idle": 0,
    "connecting": 1,
    "open": 2,
    "reconnecting": 3,
    "failed": 4,
}


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns its registry so several service instances can coexist
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

        self._setup_relay_metrics()

    def _setup_relay_metrics(self):
        """Set up relay-specific metrics."""
        self._metrics["relay_connection_state"] = Gauge(
            "relay_connection_state",
            "Upstream connection state (0=idle 1=connecting 2=open 3=reconnecting 4=failed)",
            registry=self.registry
        )

        self._metrics["relay_retry_attempts"] = Gauge(
            "relay_retry_attempts",
            "Consecutive upstream connection failures",
            registry=self.registry
        )

        self._metrics["relay_upstream_events_total"] = Counter(
            "relay_upstream_events_total",
            "Total events received from upstream",
            ["kind"],
            registry=self.registry
        )

        self._metrics["relay_matched_events_total"] = Counter(
            "relay_matched_events_total",
            "Total events that matched the configured filter",
            registry=self.registry
        )

        self._metrics["relay_deliveries_total"] = Counter(
            "relay_deliveries_total",
            "Total delivery attempts to consumer endpoints",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["relay_delivery_duration_seconds"] = Histogram(
            "relay_delivery_duration_seconds",
            "Per-target delivery duration in seconds",
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
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

    def record_connection_state(self, state: str, retry_attempts: int):
        """Record the upstream connection state."""
        with self._lock:
            self._metrics["relay_connection_state"].set(CONNECTION_STATE_VALUES.get(state, -1))
            self._metrics["relay_retry_attempts"].set(retry_attempts)

    def record_upstream_event(self, kind: str):
        self._metrics["relay_upstream_events_total"].labels(kind=kind).inc()

    def record_matched_event(self):
        self._metrics["relay_matched_events_total"].inc()

    def record_delivery(self, outcome: str, duration: float):
        """Record one per-target delivery attempt."""
        self._metrics["relay_deliveries_total"].labels(outcome=outcome).inc()
        self._metrics["relay_delivery_duration_seconds"].observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
