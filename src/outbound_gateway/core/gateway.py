"""Main Gateway integration module.

This module integrates all components:
- HTTP Server
- Request pipeline
- Configuration
- Logging
- Metrics
- Health endpoints
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web
from prometheus_client import REGISTRY, CollectorRegistry

from outbound_gateway.core.config import GatewayConfig
from outbound_gateway.core.hooks import GatewayHooks, all_of
from outbound_gateway.core.logging import GatewayLogger
from outbound_gateway.core.metrics import ComponentHealth, GatewayMetrics, HealthStatus
from outbound_gateway.core.options import GatewayOptions
from outbound_gateway.core.pipeline import GatewayPipeline
from outbound_gateway.core.rate_limit import RateCounter, RedisFixedWindowLimiter
from outbound_gateway.core.server import HTTPServer
from outbound_gateway.middleware.auth import SignedTokenAuth, require_authorization_header
from outbound_gateway.middleware.proxy import UpstreamProxyClient

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class Gateway:
    """Outbound gateway service.

    Wires file configuration and code hooks into one pipeline mounted on an
    HTTP server, and manages the gateway lifecycle.
    """

    def __init__(
        self,
        config: GatewayConfig,
        hooks: GatewayHooks | None = None,
        allow_origins: Any = None,
        rate_key: Callable[[web.Request], Any] | None = None,
        registry: CollectorRegistry = REGISTRY,
    ):
        """Initialize the gateway.

        Args:
            config: Gateway configuration
            hooks: Pipeline hooks supplied by code
            allow_origins: Origin policy overriding the configured one
            rate_key: Maps an inbound call to its in-memory rate key
            registry: Prometheus registry for the gateway's collectors
        """
        self.config = config
        self.structured_logger = GatewayLogger(config.logging)
        self.metrics = GatewayMetrics(config.metrics, registry=registry)

        max_keys = config.proxy.in_memory_rate.max_keys if config.proxy.in_memory_rate else None
        self.rate_counter = RateCounter(max_keys=max_keys)
        self.rate_limiter = self._create_rate_limiter()

        self.options = GatewayOptions.from_config(
            config.proxy,
            hooks=self._compose_hooks(hooks or GatewayHooks()),
            allow_origins=allow_origins,
            rate_key=rate_key,
        )
        self.pipeline = GatewayPipeline(
            self.options,
            counter=self.rate_counter,
            structured_logger=self.structured_logger,
            metrics=self.metrics,
            client=UpstreamProxyClient(config.upstream),
            correlation_id_header=config.logging.correlation_id_header,
        )
        self.server = HTTPServer(config.server)

        self.metrics.register_health_check("rate_counter", self._rate_counter_health)

    def _create_rate_limiter(self) -> RedisFixedWindowLimiter | None:
        """Create the Redis limiter if an external rate limit is configured.

        Returns:
            RedisFixedWindowLimiter instance or None
        """
        external = self.config.proxy.external_rate_limit
        if external is None:
            return None

        return RedisFixedWindowLimiter(
            redis_url=external.store_url,
            limit=external.limit,
            window_ms=external.window_ms,
            key_prefix=external.key_prefix,
            fail_mode=external.fail_mode,
        )

    def _compose_hooks(self, hooks: GatewayHooks) -> GatewayHooks:
        """Add the configured auth and rate predicates to the code hooks.

        Configured predicates run before the ones supplied in code.
        """
        auth = []
        if self.config.proxy.require_authorization:
            auth.append(require_authorization_header)
        if self.config.proxy.auth_signing_secret:
            auth.append(SignedTokenAuth(self.config.proxy.auth_signing_secret))

        rate = [self.rate_limiter] if self.rate_limiter is not None else []

        changes: dict[str, Any] = {}
        if auth:
            changes["auth"] = all_of(*auth, hooks.auth) if hooks.auth else all_of(*auth)
        if rate:
            changes["rate_limit"] = (
                all_of(*rate, hooks.rate_limit) if hooks.rate_limit else all_of(*rate)
            )

        return dataclasses.replace(hooks, **changes) if changes else hooks

    def _rate_counter_health(self) -> ComponentHealth:
        tracked = len(self.rate_counter)
        status = HealthStatus.HEALTHY
        max_keys = self.rate_counter.max_keys
        if max_keys is not None and tracked >= max_keys:
            status = HealthStatus.DEGRADED
        return ComponentHealth(
            "rate_counter", status, details={"tracked_keys": tracked, "max_keys": max_keys}
        )

    def create_app(self) -> web.Application:
        """Create the application with the pipeline and health routes mounted.

        Returns:
            aiohttp Application instance
        """
        app = self.server.create_app()
        self.pipeline.mount(app, self.config.proxy.path_prefix)
        self._setup_routes(app)
        return app

    def _setup_routes(self, app: web.Application) -> None:
        """Setup health and metrics routes.

        Args:
            app: aiohttp Application instance
        """
        if self.config.metrics.enabled:
            app.router.add_get(self.config.metrics.health_endpoint, self._health_check)
            app.router.add_get(self.config.metrics.liveness_endpoint, self._liveness_check)
            app.router.add_get(self.config.metrics.readiness_endpoint, self._readiness_check)
            app.router.add_get(self.config.metrics.endpoint, self._metrics_endpoint)

    async def _health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Args:
            request: aiohttp Request object

        Returns:
            Health status response
        """
        health = self.metrics.check_health()
        health.update({"environment": self.config.environment, "version": VERSION})
        status = 503 if health["status"] == HealthStatus.UNHEALTHY.value else 200
        return web.json_response(health, status=status)

    async def _liveness_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "alive"}, status=200)

    async def _readiness_check(self, request: web.Request) -> web.Response:
        """Readiness check endpoint.

        The gateway is ready unless a configured fail-closed Redis limiter
        cannot reach its store.
        """
        limiter = self.rate_limiter
        if limiter is not None and limiter.fail_mode == "closed":
            if not await limiter.is_healthy():
                return web.json_response(
                    {"status": "not_ready", "reason": "rate_limit_store_unavailable"}, status=503
                )

        return web.json_response({"status": "ready"}, status=200)

    async def _metrics_endpoint(self, request: web.Request) -> web.Response:
        """Metrics endpoint (Prometheus format).

        Args:
            request: aiohttp Request object

        Returns:
            Metrics in Prometheus format
        """
        metrics_text = self.metrics.export_metrics().decode("utf-8")
        return web.Response(text=metrics_text, content_type="text/plain", charset="utf-8")

    async def start(self) -> None:
        """Start the gateway."""
        logger.info(
            f"Starting outbound gateway in {self.config.environment} environment",
            extra={
                "environment": self.config.environment,
                "path_prefix": self.config.proxy.path_prefix,
            },
        )

        if self.rate_limiter is not None:
            await self.rate_limiter.connect()

        self.create_app()
        await self.server.start()

        logger.info("Outbound gateway started successfully")

    async def stop(self) -> None:
        """Stop the gateway."""
        logger.info("Stopping outbound gateway...")
        # Runner cleanup closes the pipeline's outbound client
        await self.server.stop()

        if self.rate_limiter is not None:
            await self.rate_limiter.disconnect()

        logger.info("Outbound gateway stopped")

    async def run_forever(self) -> None:
        """Run the gateway until cancelled."""
        await self.start()

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            logger.info("Shutdown signal received")
            raise
        finally:
            await self.stop()
