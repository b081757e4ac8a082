"""Request transformation and endpoint resolution."""

import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from outbound_gateway.core.errors import MissingMethodOrEndpoint, RelativeEndpointWithoutBaseUrl
from outbound_gateway.core.hooks import GatewayHooks, call_hook

ABSOLUTE_URL = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


@dataclass(frozen=True)
class ProxyRequest:
    """The logical outbound call described by the caller."""

    method: Any
    endpoint: Any
    data: Any = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProxyRequest":
        return cls(
            method=payload.get("method"),
            endpoint=payload.get("endpoint"),
            data=payload.get("data"),
        )

    def as_dict(self) -> dict[str, Any]:
        return {"method": self.method, "endpoint": self.endpoint, "data": self.data}


def join_url(base_url: str, endpoint: str) -> str:
    """Join a base URL and a relative endpoint with exactly one slash."""
    return base_url.rstrip("/") + "/" + endpoint.lstrip("/")


class RequestTransformer:
    """Turns the caller's call description into a forwardable call.

    Steps, in order:
    1. ``transform_request`` hook; returned non-None fields override the originals
    2. method and endpoint must be non-empty strings
    3. relative endpoints are joined to the base URL
    4. ``sanitize`` then ``mask_sensitive_data`` replace the data
    """

    def __init__(self, hooks: GatewayHooks, base_url: str | None = None):
        self.hooks = hooks
        self.base_url = base_url

    async def resolve(self, raw: ProxyRequest) -> ProxyRequest:
        """Resolve a raw call.

        Raises:
            MissingMethodOrEndpoint: If method or endpoint is empty after transformation
            RelativeEndpointWithoutBaseUrl: If the endpoint is relative and no base URL is set
        """
        call = await self._apply_transform(raw)

        if not isinstance(call.method, str) or not call.method:
            raise MissingMethodOrEndpoint()
        if not isinstance(call.endpoint, str) or not call.endpoint:
            raise MissingMethodOrEndpoint()

        endpoint = call.endpoint
        if not ABSOLUTE_URL.match(endpoint):
            if not self.base_url:
                raise RelativeEndpointWithoutBaseUrl(endpoint)
            endpoint = join_url(self.base_url, endpoint)

        data = call.data
        if self.hooks.sanitize is not None:
            data = await call_hook(self.hooks.sanitize, data)
        if self.hooks.mask_sensitive_data is not None:
            data = await call_hook(self.hooks.mask_sensitive_data, data)

        return replace(call, endpoint=endpoint, data=data)

    async def _apply_transform(self, raw: ProxyRequest) -> ProxyRequest:
        if self.hooks.transform_request is None:
            return raw

        transformed = await call_hook(self.hooks.transform_request, raw.as_dict())
        if not transformed:
            return raw
        if isinstance(transformed, ProxyRequest):
            transformed = transformed.as_dict()
        elif not isinstance(transformed, Mapping):
            raise TypeError(
                "transform_request must return a mapping or ProxyRequest, "
                f"got {type(transformed).__name__}"
            )

        overrides = {
            k: v
            for k, v in transformed.items()
            if k in ("method", "endpoint", "data") and v is not None
        }
        return replace(raw, **overrides)
