"""Immutable options a pipeline is created with."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from outbound_gateway.core.config import ProxyConfig
from outbound_gateway.core.hooks import GatewayHooks
from outbound_gateway.core.origin import OriginPolicy, build_origin_policy

DEFAULT_ALLOW_METHODS = ("POST", "OPTIONS")
DEFAULT_ALLOW_HEADERS = ("Content-Type", "Authorization")


@dataclass(frozen=True)
class InMemoryRate:
    """In-memory fixed-window limit.

    Attributes:
        window_ms: Window length in milliseconds
        max: Requests admitted per key and window
        key: Maps the inbound call to its key (defaults to client identity)
    """

    window_ms: int
    max: int
    key: Callable[[web.Request], Any] | None = None

    def __post_init__(self) -> None:
        if self.window_ms < 1 or self.max < 1:
            raise ValueError("window_ms and max must be positive")


@dataclass(frozen=True)
class GatewayOptions:
    """Everything a pipeline needs besides its collaborators.

    Created once per mounted route and shared read-only by every invocation.
    ``allow_origins`` accepts any shape understood by ``build_origin_policy``.
    """

    hooks: GatewayHooks = field(default_factory=GatewayHooks)
    allow_origins: Any = None
    base_url: str | None = None
    allow_methods: tuple[str, ...] = DEFAULT_ALLOW_METHODS
    allow_headers: tuple[str, ...] = DEFAULT_ALLOW_HEADERS
    in_memory_rate: InMemoryRate | None = None
    origin_policy: OriginPolicy | None = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin_policy", build_origin_policy(self.allow_origins))
        object.__setattr__(self, "allow_methods", tuple(self.allow_methods))
        object.__setattr__(self, "allow_headers", tuple(self.allow_headers))

    @classmethod
    def from_config(
        cls,
        config: ProxyConfig,
        hooks: GatewayHooks | None = None,
        allow_origins: Any = None,
        rate_key: Callable[[web.Request], Any] | None = None,
    ) -> "GatewayOptions":
        """Build options from file configuration plus code-only parts.

        Args:
            config: Proxy section of the gateway configuration
            hooks: Pipeline hooks
            allow_origins: Origin policy overriding the configured one (e.g. a predicate)
            rate_key: Key function for the configured in-memory rate limit

        Returns:
            GatewayOptions instance
        """
        in_memory_rate = None
        if config.in_memory_rate is not None:
            in_memory_rate = InMemoryRate(
                window_ms=config.in_memory_rate.window_ms,
                max=config.in_memory_rate.max,
                key=rate_key,
            )

        return cls(
            hooks=hooks or GatewayHooks(),
            allow_origins=allow_origins if allow_origins is not None else config.allow_origins,
            base_url=config.base_url,
            allow_methods=tuple(config.allow_methods),
            allow_headers=tuple(config.allow_headers),
            in_memory_rate=in_memory_rate,
        )

    def cors_headers(self, origin: str, allowed: bool = True) -> dict[str, str]:
        """Headers attached to preflight responses.

        A denied origin is never echoed back as allowed.
        """
        headers = {
            "Access-Control-Allow-Methods": ",".join(self.allow_methods),
            "Access-Control-Allow-Headers": ", ".join(self.allow_headers),
        }
        if allowed:
            headers["Access-Control-Allow-Origin"] = origin or "*"
        return headers
