"""Request pipeline for the outbound gateway.

A pipeline is one mounted proxy route. It owns the middleware chain, the
in-memory rate counter and the outbound client, and turns every inbound call
into exactly one response.

Stage order:
1. Error handling (wraps everything)
2. Auth guard
3. CSRF guard
4. CORS guard (answers preflight calls)
5. Rate limit guard
6. Validate guard
7. Proxy
"""

import logging

from aiohttp import web

from outbound_gateway.core.config import UpstreamConfig
from outbound_gateway.core.events import EventEmitter
from outbound_gateway.core.logging import GatewayLogger
from outbound_gateway.core.metrics import GatewayMetrics
from outbound_gateway.core.middleware import (
    ErrorHandlingMiddleware,
    Middleware,
    MiddlewareChain,
    create_request_context,
)
from outbound_gateway.core.options import GatewayOptions
from outbound_gateway.core.rate_limit import RateCounter
from outbound_gateway.middleware.guards import (
    AuthGuard,
    CorsGuard,
    CsrfGuard,
    RateLimitGuard,
    ValidateGuard,
)
from outbound_gateway.middleware.proxy import ProxyMiddleware, UpstreamProxyClient

logger = logging.getLogger(__name__)


class GatewayPipeline:
    """Guarded, observable forwarding of caller-described calls.

    Options are fixed at construction; the rate counter is the only state
    shared between concurrent invocations.
    """

    def __init__(
        self,
        options: GatewayOptions,
        counter: RateCounter | None = None,
        structured_logger: GatewayLogger | None = None,
        metrics: GatewayMetrics | None = None,
        upstream: UpstreamConfig | None = None,
        client: UpstreamProxyClient | None = None,
        correlation_id_header: str = "X-Request-ID",
    ):
        """Initialize the pipeline.

        Args:
            options: Pipeline options
            counter: In-memory rate counter (a private one is created if omitted)
            structured_logger: Sink for pipeline events
            metrics: Optional metrics collector
            upstream: Outbound transport settings, used when ``client`` is omitted
            client: Outbound HTTP client
            correlation_id_header: Header carrying the correlation ID
        """
        self.options = options
        self.counter = counter if counter is not None else RateCounter()
        self.structured_logger = structured_logger
        self.metrics = metrics
        self.client = client or UpstreamProxyClient(upstream or UpstreamConfig())
        self.correlation_id_header = correlation_id_header
        self.events = EventEmitter(structured_logger, options.hooks.log)
        self.chain = self._create_middleware_chain()

    def _create_middleware_chain(self) -> MiddlewareChain:
        shared = {"options": self.options, "events": self.events, "metrics": self.metrics}

        middlewares: list[Middleware] = [
            ErrorHandlingMiddleware(**shared),
            AuthGuard(**shared),
            CsrfGuard(**shared),
            CorsGuard(**shared),
            RateLimitGuard(**shared, counter=self.counter),
            ValidateGuard(**shared),
            ProxyMiddleware(**shared, client=self.client),
        ]

        return MiddlewareChain(middlewares)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Handle one inbound call.

        Args:
            request: aiohttp Request object

        Returns:
            The call's response, tagged with its correlation ID
        """
        context = create_request_context(request, self.correlation_id_header)

        token = None
        if self.structured_logger is not None:
            token = self.structured_logger.set_correlation_id(context.correlation_id)

        try:
            response = await self.chain.execute(request, context)
        finally:
            if self.structured_logger is not None:
                self.structured_logger.clear_correlation_id(token)

        if self.correlation_id_header not in response.headers:
            response.headers[self.correlation_id_header] = context.correlation_id

        if self.metrics is not None:
            self.metrics.record_call(
                context.method, response.status, context.elapsed_ms() / 1000
            )

        return response

    def mount(self, app: web.Application, prefix: str) -> None:
        """Serve the pipeline for every method under a path prefix.

        Args:
            app: aiohttp Application instance
            prefix: Path prefix such as "/api/proxy"
        """
        prefix = "/" + prefix.strip("/")
        if prefix != "/":
            app.router.add_route("*", prefix, self.handle)
        app.router.add_route("*", prefix.rstrip("/") + "/{tail:.*}", self.handle)
        app.on_cleanup.append(self._on_cleanup)

        logger.info(f"Pipeline mounted at {prefix}", extra={"prefix": prefix})

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the outbound client."""
        await self.client.close()
