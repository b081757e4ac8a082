"""Logging module for the outbound gateway.

Provides structured logging with JSON format, correlation IDs, and sensitive
data redaction. The logger configured here is the sink for pipeline events.
"""

import contextvars
import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from outbound_gateway.core.config import LoggingConfig

if TYPE_CHECKING:
    from outbound_gateway.core.events import GatewayEvent

ROOT_LOGGER = "outbound_gateway"

# Correlation ID of the call being processed by the current task
_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

# LogRecord attributes that are not user supplied
_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "correlation_id",
        "extra_fields",
    ]
)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds the current correlation ID to log records.

    The ID lives in a context variable, so concurrent calls handled by
    different asyncio tasks never see each other's ID.
    """

    def set_correlation_id(self, correlation_id: str) -> contextvars.Token:
        """Set the correlation ID for the current task.

        Args:
            correlation_id: The correlation ID to use

        Returns:
            Token that restores the previous value
        """
        return _correlation_id.set(correlation_id)

    def clear_correlation_id(self, token: contextvars.Token | None = None) -> None:
        """Clear the correlation ID (or restore the value before ``token``)."""
        if token is not None:
            _correlation_id.reset(token)
        else:
            _correlation_id.set(None)

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to the log record.

        Args:
            record: The log record to filter

        Returns:
            True to include the record
        """
        if not getattr(record, "correlation_id", None):
            record.correlation_id = _correlation_id.get() or "none"  # type: ignore
        return True


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def __init__(self, redact_patterns: list[str] | None = None):
        """Initialize the JSON formatter.

        Args:
            redact_patterns: List of field names to redact from logs
        """
        super().__init__()
        self.redact_patterns = [p.lower() for p in (redact_patterns or [])]

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log string
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "none"),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = getattr(record, "extra_fields", None)
        if isinstance(extra, dict):
            log_data.update(self._redact_sensitive_data(extra))

        custom = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}
        log_data.update(self._redact_sensitive_data(custom))

        return json.dumps(log_data, default=str)

    def _redact_sensitive_data(self, data: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive data from log fields.

        Args:
            data: Dictionary potentially containing sensitive data

        Returns:
            Dictionary with sensitive fields redacted
        """
        redacted: dict[str, Any] = {}
        for key, value in data.items():
            if any(pattern in str(key).lower() for pattern in self.redact_patterns):
                redacted[key] = "***REDACTED***"
            elif isinstance(value, dict):
                redacted[key] = self._redact_sensitive_data(value)
            else:
                redacted[key] = value
        return redacted


class TextFormatter(logging.Formatter):
    """Custom text formatter for human-readable logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as text.

        Args:
            record: The log record to format

        Returns:
            Formatted log string
        """
        timestamp = datetime.now(UTC).isoformat()
        correlation_id = getattr(record, "correlation_id", "none")

        base = (
            f"{timestamp} [{record.levelname}] "
            f"[{correlation_id}] "
            f"{record.name}: {record.getMessage()}"
        )

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class GatewayLogger:
    """Gateway logger with structured logging and correlation ID support."""

    def __init__(self, config: LoggingConfig):
        """Initialize the gateway logger.

        Args:
            config: Logging configuration
        """
        self.config = config
        self.correlation_filter = CorrelationIdFilter()
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        logger = logging.getLogger(ROOT_LOGGER)
        logger.setLevel(getattr(logging, self.config.level))
        logger.handlers.clear()

        handler: logging.Handler
        if self.config.output == "stdout":
            handler = logging.StreamHandler(sys.stdout)
        elif self.config.output == "stderr":
            handler = logging.StreamHandler(sys.stderr)
        else:
            # Anything else is a file path
            handler = logging.FileHandler(self.config.output)

        formatter: logging.Formatter
        if self.config.format == "json":
            formatter = JsonFormatter(redact_patterns=self.config.redact_headers)
        else:
            formatter = TextFormatter()

        handler.setFormatter(formatter)
        handler.addFilter(self.correlation_filter)
        logger.addHandler(handler)

        logger.propagate = False

    def set_correlation_id(self, correlation_id: str | None = None) -> contextvars.Token:
        """Set or generate a correlation ID for the current call.

        Args:
            correlation_id: Optional correlation ID. If None, generates a new one.

        Returns:
            Token that restores the previous correlation ID
        """
        if correlation_id is None:
            correlation_id = self.generate_correlation_id()
        return self.correlation_filter.set_correlation_id(correlation_id)

    def clear_correlation_id(self, token: contextvars.Token | None = None) -> None:
        """Clear the current correlation ID."""
        self.correlation_filter.clear_correlation_id(token)

    @staticmethod
    def generate_correlation_id() -> str:
        """Generate a unique correlation ID.

        Returns:
            A unique correlation ID
        """
        return f"req-{uuid.uuid4().hex[:16]}"

    def get_logger(self, name: str = ROOT_LOGGER) -> logging.Logger:
        """Get a logger instance.

        Args:
            name: Logger name

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    def log_event(self, event: "GatewayEvent") -> None:
        """Write a pipeline event to the structured log.

        Args:
            event: The event to log
        """
        logger = self.get_logger(f"{ROOT_LOGGER}.events")
        extra_fields = {"event_type": event.type.value, "event": event.to_dict()}

        message = f"{event.type.value}: {event.method}"
        if event.endpoint:
            message += f" {event.endpoint}"
        if event.status is not None:
            message += f" -> {event.status}"
        if event.duration_ms is not None:
            message += f" ({event.duration_ms:.2f}ms)"
        if event.error:
            message += f" - {event.error}"

        logger.log(
            getattr(logging, event.level, logging.INFO),
            message,
            extra={"extra_fields": extra_fields, "correlation_id": event.correlation_id},
        )
