"""Middleware framework for the outbound gateway.

This module implements the middleware framework including:
- Middleware interface and execution chain
- Request context propagation
- Client identity extraction
- The outermost error boundary of the chain
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from aiohttp import web

from outbound_gateway.core.events import EventKind, GatewayEvent

if TYPE_CHECKING:
    from outbound_gateway.core.events import EventEmitter
    from outbound_gateway.core.metrics import GatewayMetrics
    from outbound_gateway.core.options import GatewayOptions

logger = logging.getLogger(__name__)

ANONYMOUS_CLIENT = "anon"


@dataclass
class RequestContext:
    """Per-invocation state that flows through the middleware chain.

    Nothing in here is shared between concurrent invocations.
    """

    method: str
    path: str
    origin: str
    client_id: str
    correlation_id: str
    start_time: float = field(default_factory=time.monotonic)

    # Populated by the proxy stage
    endpoint: str | None = None
    upstream_status: int | None = None

    # Custom attributes for middleware to attach data
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_preflight(self) -> bool:
        """Whether this is a CORS capability-negotiation call."""
        return self.method == "OPTIONS"

    def elapsed_ms(self) -> float:
        """Calculate elapsed time since request start in milliseconds.

        Returns:
            Elapsed time in milliseconds
        """
        return (time.monotonic() - self.start_time) * 1000


MiddlewareHandler = Callable[[web.Request, RequestContext], Awaitable[web.StreamResponse]]


class Middleware(ABC):
    """Abstract base class for pipeline stages.

    A stage can:
    - Inspect and modify the request context
    - Short-circuit the chain by returning a response
    - Execute logic before and after the next stage
    """

    def __init__(
        self,
        options: "GatewayOptions",
        events: "EventEmitter",
        metrics: "GatewayMetrics | None" = None,
    ):
        """Initialize the middleware.

        Args:
            options: Pipeline options
            events: Event emitter shared by the pipeline
            metrics: Optional metrics collector
        """
        self.options = options
        self.events = events
        self.metrics = metrics

    @abstractmethod
    async def process(
        self, request: web.Request, context: RequestContext, next_handler: MiddlewareHandler
    ) -> web.StreamResponse:
        """Process the request.

        Args:
            request: aiohttp Request object
            context: Request context
            next_handler: Next middleware handler in the chain

        Returns:
            Response object
        """

    @property
    def name(self) -> str:
        """Get middleware name.

        Returns:
            Middleware class name
        """
        return self.__class__.__name__


class MiddlewareChain:
    """Executes middleware in order.

    Each middleware may call the next handler or short-circuit the chain by
    returning a response.
    """

    def __init__(self, middlewares: list[Middleware]):
        """Initialize the middleware chain.

        Args:
            middlewares: List of middleware in execution order
        """
        self.middlewares = middlewares
        logger.info(
            f"Middleware chain initialized with {len(middlewares)} middleware",
            extra={"middleware": [m.name for m in middlewares]},
        )

    def _build_handler(self, index: int) -> MiddlewareHandler:
        if index >= len(self.middlewares):

            async def end_handler(req: web.Request, ctx: RequestContext) -> web.StreamResponse:
                return web.json_response(
                    {"error": "End of middleware chain reached without response"}, status=500
                )

            return end_handler

        middleware = self.middlewares[index]

        async def handler(req: web.Request, ctx: RequestContext) -> web.StreamResponse:
            return await middleware.process(req, ctx, self._build_handler(index + 1))

        return handler

    async def execute(self, request: web.Request, context: RequestContext) -> web.StreamResponse:
        """Execute the middleware chain.

        Args:
            request: aiohttp Request object
            context: Request context

        Returns:
            Response object
        """
        return await self._build_handler(0)(request, context)


class ErrorHandlingMiddleware(Middleware):
    """Catches exceptions escaping the guard stages.

    Hooks are user code; whatever they raise ends the call with a 500 and an
    error event instead of reaching the web framework.
    """

    async def process(
        self, request: web.Request, context: RequestContext, next_handler: MiddlewareHandler
    ) -> web.StreamResponse:
        try:
            return await next_handler(request, context)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.exception(
                f"Unhandled exception in middleware chain: {e}",
                extra={
                    "correlation_id": context.correlation_id,
                    "path": context.path,
                    "method": context.method,
                },
            )
            if self.metrics is not None:
                self.metrics.record_error(e.__class__.__name__)
            await self.events.emit(
                GatewayEvent.from_context(
                    EventKind.ERROR,
                    context,
                    status=500,
                    error=str(e) or e.__class__.__name__,
                )
            )
            return web.json_response({"error": str(e) or e.__class__.__name__}, status=500)


def client_identity(request: web.Request) -> str:
    """Identify the client for rate limiting.

    First entry of X-Forwarded-For, else the peer address, else "anon".
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    return request.remote or ANONYMOUS_CLIENT


def create_request_context(
    request: web.Request,
    correlation_id_header: str = "X-Request-ID",
) -> RequestContext:
    """Create a request context from an aiohttp request.

    Args:
        request: aiohttp Request object
        correlation_id_header: Header that may carry a client-supplied correlation ID

    Returns:
        RequestContext instance
    """
    correlation_id = request.headers.get(correlation_id_header)
    if not correlation_id:
        correlation_id = f"req-{uuid.uuid4().hex[:16]}"

    return RequestContext(
        method=request.method.upper(),
        path=request.path,
        origin=request.headers.get("Origin", ""),
        client_id=client_identity(request),
        correlation_id=correlation_id,
    )
