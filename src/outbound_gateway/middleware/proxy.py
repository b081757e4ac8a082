"""Proxy stage: forwards the described call to the external endpoint.

This module implements the terminal stage of the pipeline including:
- Parsing the caller's call description
- Request transformation and endpoint resolution
- Forwarding with Authorization normalization
- Response parsing, shaping and monitoring
- Mapping of forwarding failures to a 500 response
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import aiohttp
from aiohttp import web

from outbound_gateway.core.config import UpstreamConfig
from outbound_gateway.core.errors import ForwardingFailure, MalformedCall
from outbound_gateway.core.events import EventKind, GatewayEvent
from outbound_gateway.core.hooks import call_hook
from outbound_gateway.core.middleware import Middleware, MiddlewareHandler, RequestContext
from outbound_gateway.core.shaping import ResponseShaper, parse_body
from outbound_gateway.core.transform import ProxyRequest, RequestTransformer

logger = logging.getLogger(__name__)

# Methods sent without a request body
BODYLESS_METHODS = frozenset(["GET", "HEAD"])


def normalize_authorization(token: str) -> str:
    """Prefix a credential with "Bearer " unless it already is."""
    if token.startswith("Bearer"):
        return token
    return f"Bearer {token}"


@dataclass
class UpstreamResult:
    """Raw outcome of an outbound call."""

    status: int
    body: bytes
    duration_ms: float

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class UpstreamProxyClient:
    """HTTP client for outbound calls.

    Manages connection pooling and timeouts.
    """

    def __init__(self, config: UpstreamConfig):
        """Initialize the upstream proxy client.

        Args:
            config: Upstream transport settings
        """
        self.config = config
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp client session.

        Returns:
            Configured aiohttp ClientSession
        """
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.config.pool_size,
                enable_cleanup_closed=True,
            )

            timeout = aiohttp.ClientTimeout(
                total=self.config.request_timeout,
                connect=self.config.connection_timeout,
            )

            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)

            logger.info(
                "Upstream proxy client session created",
                extra={
                    "pool_size": self.config.pool_size,
                    "connection_timeout": self.config.connection_timeout,
                    "request_timeout": self.config.request_timeout,
                },
            )

        return self._session

    async def close(self) -> None:
        """Close the client session and clean up connections."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Upstream proxy client session closed")

    def prepare_request(
        self, call: ProxyRequest, authorization: str | None
    ) -> tuple[str, dict[str, str], str | None]:
        """Build method, headers and body of the outbound call.

        Args:
            call: Resolved call
            authorization: Inbound Authorization header, if any

        Returns:
            Tuple of (uppercased method, headers, serialized body or None)
        """
        method = call.method.upper()
        headers: dict[str, str] = {}
        body = None

        if authorization:
            headers["Authorization"] = normalize_authorization(authorization)

        if method not in BODYLESS_METHODS:
            headers["Content-Type"] = "application/json"
            body = json.dumps(call.data if call.data is not None else {})

        return method, headers, body

    async def forward(
        self,
        call: ProxyRequest,
        authorization: str | None = None,
        correlation_id: str = "unknown",
    ) -> UpstreamResult:
        """Issue the outbound call.

        Args:
            call: Resolved call
            authorization: Inbound Authorization header, if any
            correlation_id: Request correlation ID for logging

        Returns:
            UpstreamResult with status, raw body and duration

        Raises:
            ForwardingFailure: On connection errors and timeouts
        """
        method, headers, body = self.prepare_request(call, authorization)
        session = await self._get_session()

        logger.debug(
            f"Forwarding {method} request to upstream",
            extra={"correlation_id": correlation_id, "method": method, "endpoint": call.endpoint},
        )

        started = time.monotonic()
        try:
            async with session.request(
                method, call.endpoint, headers=headers, data=body
            ) as response:
                raw = await response.read()
                status = response.status

        except asyncio.TimeoutError as e:
            raise ForwardingFailure(f"Upstream request timed out: {call.endpoint}") from e

        except aiohttp.ClientError as e:
            logger.error(
                f"Upstream request failed: {e}",
                extra={
                    "correlation_id": correlation_id,
                    "method": method,
                    "endpoint": call.endpoint,
                },
            )
            raise ForwardingFailure(str(e) or e.__class__.__name__) from e

        duration_ms = (time.monotonic() - started) * 1000

        logger.debug(
            f"Received response from upstream: {status}",
            extra={"correlation_id": correlation_id, "status": status, "endpoint": call.endpoint},
        )

        return UpstreamResult(status=status, body=raw, duration_ms=duration_ms)


class ProxyMiddleware(Middleware):
    """Terminal stage: parse, transform, forward, shape.

    Every failure after the guards ends the call with an error event and a
    500 carrying the failure detail; malformed calls end with a 400.
    """

    def __init__(self, *args: Any, client: UpstreamProxyClient, **kwargs: Any):
        """Initialize the proxy middleware.

        Args:
            client: Outbound HTTP client
        """
        super().__init__(*args, **kwargs)
        self.client = client
        self.transformer = RequestTransformer(self.options.hooks, self.options.base_url)
        self.shaper = ResponseShaper(self.options.hooks)

    async def _read_payload(self, request: web.Request) -> dict[str, Any]:
        """Parse the inbound JSON body; anything unusable becomes {}."""
        raw = await request.read()
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.debug("Inbound body is not JSON, using an empty payload")
            return {}
        return payload if isinstance(payload, dict) else {}

    async def process(
        self, request: web.Request, context: RequestContext, next_handler: MiddlewareHandler
    ) -> web.StreamResponse:
        hooks = self.options.hooks

        try:
            await self.events.emit(GatewayEvent.from_context(EventKind.REQUEST, context))

            payload = await self._read_payload(request)
            try:
                call = await self.transformer.resolve(ProxyRequest.from_payload(payload))
            except MalformedCall as e:
                logger.info(
                    f"Malformed call: {e.message}",
                    extra={"correlation_id": context.correlation_id},
                )
                return web.json_response(e.to_body(), status=e.status_code)

            context.endpoint = call.endpoint

            try:
                result = await self.client.forward(
                    call,
                    authorization=request.headers.get("Authorization"),
                    correlation_id=context.correlation_id,
                )
            except ForwardingFailure:
                if self.metrics is not None:
                    self.metrics.record_upstream_request(urlparse(call.endpoint).netloc, 0, 0.0)
                raise

            context.upstream_status = result.status
            if self.metrics is not None:
                self.metrics.record_upstream_request(
                    urlparse(call.endpoint).netloc, result.status, result.duration_ms / 1000
                )

            shaped = await self.shaper.shape(parse_body(result.body))

            await self.events.emit(
                GatewayEvent.from_context(
                    EventKind.RESPONSE,
                    context,
                    method=call.method.upper(),
                    status=result.status,
                    duration_ms=result.duration_ms,
                    payload=shaped,
                )
            )

            if hooks.monitor is not None:
                await call_hook(hooks.monitor, request, shaped)

            if not result.ok:
                return web.json_response(shaped, status=result.status)

            headers = None
            if self.options.origin_policy is not None:
                headers = {"Access-Control-Allow-Origin": context.origin or "*"}

            return web.json_response(shaped, status=200, headers=headers)

        except web.HTTPException:
            raise

        except Exception as e:
            detail = str(e) or e.__class__.__name__
            logger.exception(
                f"Proxy stage failed: {detail}",
                extra={"correlation_id": context.correlation_id, "endpoint": context.endpoint},
            )
            if self.metrics is not None:
                self.metrics.record_error(e.__class__.__name__)
            await self.events.emit(
                GatewayEvent.from_context(EventKind.ERROR, context, status=500, error=detail)
            )
            return web.json_response({"error": detail}, status=500)
