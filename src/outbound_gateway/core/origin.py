"""Origin policies for CORS checks.

A policy is built once from its configured shape and then evaluated per call:

- ``None`` or ``"*"``: every origin is allowed
- a single string: exact match only
- a collection of strings: membership, or everything when it contains ``"*"``
- a callable ``(origin, request) -> bool``: delegated entirely (may be async)
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

from aiohttp import web

from outbound_gateway.core.hooks import call_hook

logger = logging.getLogger(__name__)

WILDCARD = "*"


class OriginPolicy(ABC):
    """Decides whether a caller-supplied origin is permitted."""

    @abstractmethod
    async def is_allowed(self, origin: str, request: web.Request) -> bool:
        """Check an origin.

        Args:
            origin: Value of the inbound Origin header ("" when absent)
            request: Inbound aiohttp request

        Returns:
            True if the origin is permitted
        """


class AnyOrigin(OriginPolicy):
    """Allows every origin."""

    async def is_allowed(self, origin: str, request: web.Request) -> bool:
        return True

    def __repr__(self) -> str:
        return "AnyOrigin()"


class ExactOrigins(OriginPolicy):
    """Allows only origins that are members of a fixed set."""

    def __init__(self, origins: Iterable[str]):
        self.origins = frozenset(origins)

    async def is_allowed(self, origin: str, request: web.Request) -> bool:
        return origin in self.origins

    def __repr__(self) -> str:
        return f"ExactOrigins({sorted(self.origins)!r})"


class PredicateOrigin(OriginPolicy):
    """Delegates the decision to a user-supplied function."""

    def __init__(self, predicate: Callable[[str, web.Request], Any]):
        self.predicate = predicate

    async def is_allowed(self, origin: str, request: web.Request) -> bool:
        return bool(await call_hook(self.predicate, origin, request))

    def __repr__(self) -> str:
        return f"PredicateOrigin({self.predicate!r})"


def build_origin_policy(value: Any) -> OriginPolicy | None:
    """Build an origin policy from its configured shape.

    Args:
        value: None, "*", a string, a collection of strings, a callable, or an
            already-built OriginPolicy

    Returns:
        The matching OriginPolicy, or None when no policy is configured

    Raises:
        TypeError: If the value has no valid policy shape
    """
    if value is None:
        return None
    if isinstance(value, OriginPolicy):
        return value
    if isinstance(value, str):
        if value == WILDCARD:
            return AnyOrigin()
        return ExactOrigins([value])
    if callable(value):
        return PredicateOrigin(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        origins = list(value)
        if not all(isinstance(o, str) for o in origins):
            raise TypeError("Origin collections must contain only strings")
        if WILDCARD in origins:
            return AnyOrigin()
        return ExactOrigins(origins)

    raise TypeError(f"Unsupported origin policy: {value!r}")
