"""Observability and metrics module for the outbound gateway.

Provides Prometheus metrics and health checks.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from outbound_gateway.core.config import MetricsConfig


class HealthStatus(Enum):
    """Health check status enumeration."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


class ComponentHealth:
    """Health status of a component."""

    def __init__(
        self,
        name: str,
        status: HealthStatus,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize component health status.

        Args:
            name: Component name
            status: Health status
            message: Optional status message
            details: Optional additional details
        """
        self.name = name
        self.status = status
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            Dictionary representation of the health status
        """
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
        }
        if self.message:
            result["message"] = self.message
        if self.details:
            result["details"] = self.details
        return result


class GatewayMetrics:
    """Gateway metrics collector using Prometheus."""

    def __init__(self, config: MetricsConfig, registry: CollectorRegistry = REGISTRY):
        """Initialize the metrics collector.

        Args:
            config: Metrics configuration
            registry: Prometheus registry the collectors are registered with
        """
        self.config = config
        self.registry = registry
        self._health_checks: dict[str, Callable[[], ComponentHealth]] = {}

        self.calls_total = Counter(
            "outbound_gateway_calls_total",
            "Total number of inbound calls handled by the pipeline",
            ["method", "status"],
            registry=registry,
        )

        self.call_duration = Histogram(
            "outbound_gateway_call_duration_seconds",
            "Inbound call latency in seconds",
            ["method"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=registry,
        )

        self.guard_denials = Counter(
            "outbound_gateway_guard_denials_total",
            "Total number of calls rejected by a guard",
            ["guard"],
            registry=registry,
        )

        self.upstream_requests = Counter(
            "outbound_gateway_upstream_requests_total",
            "Total number of outbound calls",
            ["host", "status"],
            registry=registry,
        )

        self.upstream_duration = Histogram(
            "outbound_gateway_upstream_duration_seconds",
            "Outbound call latency in seconds",
            ["host"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=registry,
        )

        self.errors_total = Counter(
            "outbound_gateway_errors_total",
            "Total number of pipeline errors",
            ["error_type"],
            registry=registry,
        )

        self.rate_limit_keys = Gauge(
            "outbound_gateway_rate_limit_keys",
            "Number of keys tracked by the in-memory rate counter",
            registry=registry,
        )

    def record_call(self, method: str, status_code: int, duration_seconds: float) -> None:
        """Record a completed inbound call.

        Args:
            method: Inbound HTTP method
            status_code: Status returned to the caller
            duration_seconds: Call duration in seconds
        """
        self.calls_total.labels(method=method, status=str(status_code)).inc()
        self.call_duration.labels(method=method).observe(duration_seconds)

    def record_guard_denial(self, guard: str) -> None:
        """Record a call rejected by a guard.

        Args:
            guard: Guard name (auth, csrf, origin, rate_limit, validate)
        """
        self.guard_denials.labels(guard=guard).inc()

    def record_upstream_request(
        self, host: str, status_code: int, duration_seconds: float
    ) -> None:
        """Record an outbound call.

        Args:
            host: Upstream host
            status_code: Upstream status (0 if the call failed)
            duration_seconds: Call duration in seconds
        """
        status_str = str(status_code) if status_code > 0 else "error"
        self.upstream_requests.labels(host=host, status=status_str).inc()
        self.upstream_duration.labels(host=host).observe(duration_seconds)

    def record_error(self, error_type: str) -> None:
        """Record an error.

        Args:
            error_type: Type of error
        """
        self.errors_total.labels(error_type=error_type).inc()

    def update_rate_limit_keys(self, count: int) -> None:
        """Update the number of tracked rate-limit keys.

        Args:
            count: Number of keys
        """
        self.rate_limit_keys.set(count)

    def register_health_check(self, name: str, check_func: Callable[[], ComponentHealth]) -> None:
        """Register a health check function.

        Args:
            name: Component name
            check_func: Function that returns ComponentHealth
        """
        self._health_checks[name] = check_func

    def check_health(self) -> dict[str, Any]:
        """Check health of all registered components.

        Returns:
            Overall status plus per-component results
        """
        components = []
        overall = HealthStatus.HEALTHY

        for name, check in self._health_checks.items():
            try:
                result = check()
            except Exception as e:
                result = ComponentHealth(name, HealthStatus.UNHEALTHY, message=str(e))

            components.append(result.to_dict())
            if result.status is HealthStatus.UNHEALTHY:
                overall = HealthStatus.UNHEALTHY
            elif result.status is HealthStatus.DEGRADED and overall is HealthStatus.HEALTHY:
                overall = HealthStatus.DEGRADED

        return {"status": overall.value, "components": components}

    def export_metrics(self) -> bytes:
        """Export metrics in Prometheus format.

        Returns:
            Prometheus-formatted metrics
        """
        return generate_latest(self.registry)
