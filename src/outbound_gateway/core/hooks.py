"""Pluggable hooks threaded through the request pipeline.

Hooks may be plain functions or coroutine functions; ``call_hook`` awaits
whatever they return when it is awaitable.
"""

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from aiohttp import web

# Guard predicates receive the inbound aiohttp request
Predicate = Callable[[web.Request], Any]


async def call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async hook and return its (awaited) result."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class GatewayHooks:
    """Optional capabilities of a pipeline.

    Attributes:
        auth: Inbound call -> bool; failing answers 401 "Unauthorized (auth)"
        csrf: Inbound call -> bool; failing answers 403 "Forbidden (csrf/xss)"
        validate: Inbound call -> bool; failing answers 401 "Unauthorized"
        rate_limit: Inbound call -> bool (True = allowed); external limiter
        transform_request: {method, endpoint, data} -> partial override or None
        transform_response: Parsed upstream JSON -> final body
        sanitize: Payload data -> sanitized data
        mask_sensitive_data: Payload data -> masked data
        log: Receives every GatewayEvent
        monitor: (inbound call, shaped body) after each forwarded call
        on_cors_denied: Origin -> custom denial body
    """

    auth: Predicate | None = None
    csrf: Predicate | None = None
    validate: Predicate | None = None
    rate_limit: Predicate | None = None
    transform_request: Callable[[dict[str, Any]], Any] | None = None
    transform_response: Callable[[Any], Any] | None = None
    sanitize: Callable[[Any], Any] | None = None
    mask_sensitive_data: Callable[[Any], Any] | None = None
    log: Callable[[Any], Any] | None = None
    monitor: Callable[[web.Request, Any], Any] | None = None
    on_cors_denied: Callable[[str], Any] | None = None


def all_of(*predicates: Predicate) -> Predicate:
    """Combine guard predicates; the call passes only if every one passes.

    Predicates run in order and evaluation stops at the first failure.
    """

    async def combined(request: web.Request) -> bool:
        for predicate in predicates:
            if not await call_hook(predicate, request):
                return False
        return True

    return combined
