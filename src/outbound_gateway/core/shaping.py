"""Parsing and shaping of upstream response bodies."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from outbound_gateway.core.hooks import GatewayHooks, call_hook

BINARY_MESSAGE = "Unprocessable response (binary)"


class BodyKind(str, Enum):
    JSON = "json"
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class ParsedBody:
    kind: BodyKind
    value: Any

    @property
    def is_structured(self) -> bool:
        """Whether the body is a JSON object or array."""
        return self.kind is BodyKind.JSON and isinstance(self.value, (dict, list))


def parse_body(raw: bytes) -> ParsedBody:
    """Parse an upstream body: JSON, else UTF-8 text, else a binary descriptor.

    Never raises.
    """
    try:
        return ParsedBody(BodyKind.JSON, json.loads(raw))
    except (ValueError, UnicodeDecodeError):
        pass

    try:
        return ParsedBody(BodyKind.TEXT, raw.decode("utf-8"))
    except UnicodeDecodeError:
        return ParsedBody(BodyKind.BINARY, {"message": BINARY_MESSAGE, "length": len(raw)})


class ResponseShaper:
    """Applies the ``transform_response`` hook to structured upstream bodies.

    Text, JSON scalars and the binary descriptor pass through untouched.
    """

    def __init__(self, hooks: GatewayHooks):
        self.hooks = hooks

    async def shape(self, parsed: ParsedBody) -> Any:
        if self.hooks.transform_response is None or not parsed.is_structured:
            return parsed.value
        return await call_hook(self.hooks.transform_response, parsed.value)
