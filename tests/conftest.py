"""Shared pytest fixtures and configuration."""

import pytest
from aiohttp.test_utils import make_mocked_request
from prometheus_client import CollectorRegistry

from outbound_gateway.core.config import MetricsConfig
from outbound_gateway.core.metrics import GatewayMetrics


@pytest.fixture
def registry() -> CollectorRegistry:
    """Fresh Prometheus registry so collectors never clash between tests."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> GatewayMetrics:
    return GatewayMetrics(MetricsConfig(), registry=registry)


@pytest.fixture
def make_request():
    """Factory for mocked inbound requests."""

    def factory(method: str = "POST", path: str = "/api/proxy", headers=None):
        return make_mocked_request(method, path, headers=headers or {})

    return factory
