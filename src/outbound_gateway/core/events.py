"""Structured events emitted by the request pipeline.

Events are outward notifications only: they go to the structured log sink
and to the optional ``log`` hook, and nothing in the pipeline reads them back.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from outbound_gateway.core.hooks import call_hook

if TYPE_CHECKING:
    from outbound_gateway.core.logging import GatewayLogger
    from outbound_gateway.core.middleware import RequestContext

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of pipeline events."""

    REQUEST = "request"
    RESPONSE = "response"
    ERROR = "error"


def _event_level(kind: EventKind, status: int | None) -> str:
    if kind is EventKind.ERROR:
        return "ERROR"
    if status is not None and status >= 500:
        return "ERROR"
    if status is not None and status >= 400:
        return "WARNING"
    return "INFO"


@dataclass(frozen=True)
class GatewayEvent:
    """One pipeline event."""

    type: EventKind
    level: str
    correlation_id: str
    client_id: str
    method: str
    origin: str
    endpoint: str | None = None
    status: int | None = None
    duration_ms: float | None = None
    payload: Any = None
    error: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @classmethod
    def from_context(
        cls,
        kind: EventKind,
        context: "RequestContext",
        *,
        method: str | None = None,
        status: int | None = None,
        duration_ms: float | None = None,
        payload: Any = None,
        error: str | None = None,
    ) -> "GatewayEvent":
        """Build an event carrying the identity fields of a request context."""
        return cls(
            type=kind,
            level=_event_level(kind, status),
            correlation_id=context.correlation_id,
            client_id=context.client_id,
            method=method or context.method,
            origin=context.origin,
            endpoint=context.endpoint,
            status=status,
            duration_ms=duration_ms,
            payload=payload,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Shallow field mapping; ``payload`` is the shaped body itself, not a copy."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["type"] = self.type.value
        return data


class EventEmitter:
    """Fans pipeline events out to the log sink and the ``log`` hook."""

    def __init__(
        self,
        structured_logger: "GatewayLogger | None" = None,
        log_hook: Callable[[GatewayEvent], Any] | None = None,
    ):
        self.structured_logger = structured_logger
        self.log_hook = log_hook

    async def emit(self, event: GatewayEvent) -> None:
        """Publish an event.

        Failures of the ``log`` hook are logged and never reach the caller.
        """
        if self.structured_logger is not None:
            self.structured_logger.log_event(event)

        if self.log_hook is None:
            return

        try:
            await call_hook(self.log_hook, event)
        except Exception as e:
            logger.warning(
                f"Log hook failed for {event.type.value} event: {e}",
                extra={"correlation_id": event.correlation_id},
                exc_info=True,
            )
