"""Exceptions raised inside the request pipeline.

Every exception carries the HTTP status and JSON body the pipeline answers
with when it terminates a call.
"""

from typing import Any


class GatewayError(Exception):
    """Base exception for pipeline errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict[str, Any]:
        """JSON body returned to the caller."""
        return {"error": self.message}


class GuardDenied(GatewayError):
    """A guard stage rejected the call."""

    guard = "guard"


class AuthDenied(GuardDenied):
    status_code = 401
    guard = "auth"

    def __init__(self) -> None:
        super().__init__("Unauthorized (auth)")


class CsrfDenied(GuardDenied):
    status_code = 403
    guard = "csrf"

    def __init__(self) -> None:
        super().__init__("Forbidden (csrf/xss)")


class OriginDenied(GuardDenied):
    """Origin rejected; the body may be replaced by the on_cors_denied hook."""

    status_code = 403
    guard = "origin"

    def __init__(self, origin: str, body: Any = None):
        super().__init__("Origin not allowed")
        self.origin = origin
        self.body = body

    def to_body(self) -> Any:
        if self.body:
            return self.body
        return super().to_body()


class RateLimited(GuardDenied):
    status_code = 429
    guard = "rate_limit"

    def __init__(self) -> None:
        super().__init__("Rate limit exceeded")


class ValidationDenied(GuardDenied):
    status_code = 401
    guard = "validate"

    def __init__(self) -> None:
        super().__init__("Unauthorized")


class MalformedCall(GatewayError):
    """The caller supplied a call that cannot be forwarded."""

    status_code = 400


class MissingMethodOrEndpoint(MalformedCall):
    def __init__(self) -> None:
        super().__init__("Missing method or endpoint")


class RelativeEndpointWithoutBaseUrl(MalformedCall):
    def __init__(self, endpoint: str):
        super().__init__("Relative endpoint without baseUrl")
        self.endpoint = endpoint


class ForwardingFailure(GatewayError):
    """Transport failure while calling the external endpoint."""

    status_code = 500
