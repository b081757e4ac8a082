"""Guard stages of the request pipeline.

Each guard either passes the call to the next stage or terminates it with a
fixed status and body. Guards run strictly in chain order:

1. AuthGuard       401 {"error": "Unauthorized (auth)"}
2. CsrfGuard       403 {"error": "Forbidden (csrf/xss)"}
3. CorsGuard       preflight 204/403, otherwise 403 with the denial body
4. RateLimitGuard  429 {"error": "Rate limit exceeded"}
5. ValidateGuard   401 {"error": "Unauthorized"}
"""

import logging
from typing import Any

from aiohttp import web

from outbound_gateway.core.errors import (
    AuthDenied,
    CsrfDenied,
    GuardDenied,
    OriginDenied,
    RateLimited,
    ValidationDenied,
)
from outbound_gateway.core.hooks import call_hook
from outbound_gateway.core.middleware import Middleware, MiddlewareHandler, RequestContext
from outbound_gateway.core.rate_limit import RateCounter

logger = logging.getLogger(__name__)


class GuardMiddleware(Middleware):
    """Base class for stages that may reject a call."""

    def deny(
        self,
        context: RequestContext,
        error: GuardDenied,
        headers: dict[str, str] | None = None,
    ) -> web.Response:
        """Build the response terminating a rejected call.

        Args:
            context: Request context
            error: The denial
            headers: Extra response headers

        Returns:
            JSON error response
        """
        logger.info(
            f"Call denied by {error.guard} guard",
            extra={
                "correlation_id": context.correlation_id,
                "guard": error.guard,
                "status": error.status_code,
                "client_id": context.client_id,
                "origin": context.origin,
            },
        )

        if self.metrics is not None:
            self.metrics.record_guard_denial(error.guard)

        return web.json_response(error.to_body(), status=error.status_code, headers=headers)


class PredicateGuard(GuardMiddleware):
    """Guard driven by one boolean hook; passes when the hook is not configured."""

    hook_name = ""
    error_class: type[GuardDenied] = GuardDenied

    async def process(
        self, request: web.Request, context: RequestContext, next_handler: MiddlewareHandler
    ) -> web.StreamResponse:
        hook = getattr(self.options.hooks, self.hook_name)
        if hook is not None and not await call_hook(hook, request):
            return self.deny(context, self.error_class())

        return await next_handler(request, context)


class AuthGuard(PredicateGuard):
    hook_name = "auth"
    error_class = AuthDenied


class CsrfGuard(PredicateGuard):
    hook_name = "csrf"
    error_class = CsrfDenied


class ValidateGuard(PredicateGuard):
    hook_name = "validate"
    error_class = ValidationDenied


class CorsGuard(GuardMiddleware):
    """Origin control and preflight handling.

    Preflight calls never go past this stage. Both preflight outcomes carry
    the allowed methods and headers; only an allowed preflight echoes the
    origin. Rejected actual calls carry no CORS headers.
    """

    async def _denial(self, origin: str) -> OriginDenied:
        body: Any = None
        if self.options.hooks.on_cors_denied is not None:
            body = await call_hook(self.options.hooks.on_cors_denied, origin)
        return OriginDenied(origin, body)

    async def _is_allowed(self, request: web.Request, context: RequestContext) -> bool:
        policy = self.options.origin_policy
        if policy is None:
            return True
        return await policy.is_allowed(context.origin, request)

    async def process(
        self, request: web.Request, context: RequestContext, next_handler: MiddlewareHandler
    ) -> web.StreamResponse:
        allowed = await self._is_allowed(request, context)

        if context.is_preflight:
            headers = self.options.cors_headers(context.origin, allowed)
            if not allowed:
                return self.deny(context, await self._denial(context.origin), headers=headers)
            return web.Response(status=204, headers=headers)

        if not allowed:
            return self.deny(context, await self._denial(context.origin))

        return await next_handler(request, context)


class RateLimitGuard(GuardMiddleware):
    """In-memory fixed-window limit, then the external ``rate_limit`` hook."""

    def __init__(self, *args: Any, counter: RateCounter, **kwargs: Any):
        """Initialize the guard.

        Args:
            counter: Window state store, owned by the pipeline
        """
        super().__init__(*args, **kwargs)
        self.counter = counter

    async def _rate_key(self, request: web.Request, context: RequestContext) -> str:
        rate = self.options.in_memory_rate
        if rate is not None and rate.key is not None:
            return str(await call_hook(rate.key, request))
        return context.client_id

    async def process(
        self, request: web.Request, context: RequestContext, next_handler: MiddlewareHandler
    ) -> web.StreamResponse:
        rate = self.options.in_memory_rate
        if rate is not None:
            key = await self._rate_key(request, context)
            allowed = self.counter.allow(key, rate.window_ms, rate.max)

            if self.metrics is not None:
                self.metrics.update_rate_limit_keys(len(self.counter))

            if not allowed:
                logger.debug(
                    f"In-memory rate limit exceeded for key {key}",
                    extra={"correlation_id": context.correlation_id, "key": key},
                )
                return self.deny(context, RateLimited())

        external = self.options.hooks.rate_limit
        if external is not None and not await call_hook(external, request):
            return self.deny(context, RateLimited())

        return await next_handler(request, context)
