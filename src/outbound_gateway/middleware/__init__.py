"""Pipeline stages and ready-made hooks."""

from outbound_gateway.middleware.auth import (
    SignedTokenAuth,
    TokenExtractor,
    require_authorization_header,
)
from outbound_gateway.middleware.guards import (
    AuthGuard,
    CorsGuard,
    CsrfGuard,
    RateLimitGuard,
    ValidateGuard,
)
from outbound_gateway.middleware.proxy import ProxyMiddleware, UpstreamProxyClient

__all__ = [
    "AuthGuard",
    "CorsGuard",
    "CsrfGuard",
    "ProxyMiddleware",
    "RateLimitGuard",
    "SignedTokenAuth",
    "TokenExtractor",
    "UpstreamProxyClient",
    "ValidateGuard",
    "require_authorization_header",
]
