"""Ready-made authentication predicates for the ``auth`` hook.

This module implements:
- Bearer token extraction from the Authorization header
- A predicate requiring an Authorization header on every call
- A predicate verifying HMAC-signed bearer tokens
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)


class TokenExtractor:
    """Extracts credentials from HTTP requests."""

    def __init__(self, header_name: str = "Authorization"):
        """Initialize token extractor.

        Args:
            header_name: Header carrying the credential
        """
        self.header_name = header_name

    def extract_raw(self, request: web.Request) -> str | None:
        """Return the header value as sent, or None when absent or blank."""
        value = request.headers.get(self.header_name, "").strip()
        return value or None

    def extract_from_header(self, request: web.Request) -> str | None:
        """Extract the token of a "Bearer <token>" header.

        Args:
            request: aiohttp Request object

        Returns:
            Token string if found, None otherwise
        """
        auth_header = request.headers.get(self.header_name, "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
            return token or None
        return None


def require_authorization_header(request: web.Request) -> bool:
    """Admit only calls that carry an Authorization header."""
    return TokenExtractor().extract_raw(request) is not None


class SignedTokenAuth:
    """Verifies bearer tokens of the form ``<payload_base64>.<hex hmac-sha256>``.

    The payload is a JSON object; when it has an ``exp`` field (epoch seconds)
    expired tokens are rejected. Instances are predicates for the ``auth`` hook.
    """

    def __init__(self, signing_secret: str, extractor: TokenExtractor | None = None):
        """Initialize the verifier.

        Args:
            signing_secret: Shared HMAC secret
            extractor: Token extractor (defaults to the Authorization header)
        """
        if not signing_secret:
            raise ValueError("signing_secret is required")
        self.signing_secret = signing_secret
        self.extractor = extractor or TokenExtractor()

    def sign(self, payload: dict[str, Any]) -> str:
        """Produce a token for a payload."""
        payload_b64 = base64.b64encode(json.dumps(payload).encode()).decode()
        signature = hmac.new(
            self.signing_secret.encode(), payload_b64.encode(), hashlib.sha256
        ).hexdigest()
        return f"{payload_b64}.{signature}"

    def verify(self, token: str) -> dict[str, Any] | None:
        """Verify a token and return its payload.

        Args:
            token: Signed token string

        Returns:
            Payload dict if the signature is valid and the token is not expired
        """
        parts = token.split(".")
        if len(parts) != 2:
            logger.debug("Invalid token format: expected 2 parts")
            return None

        payload_b64, signature = parts
        expected = hmac.new(
            self.signing_secret.encode(), payload_b64.encode(), hashlib.sha256
        ).hexdigest()

        if not hmac.compare_digest(signature, expected):
            logger.warning("Token signature verification failed")
            return None

        try:
            payload = json.loads(base64.b64decode(payload_b64).decode())
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Failed to decode token payload: {e}")
            return None

        if not isinstance(payload, dict):
            return None

        exp = payload.get("exp")
        if exp is not None:
            try:
                expires_at = float(exp)
            except (TypeError, ValueError):
                logger.warning(f"Invalid token expiry: {exp!r}")
                return None
            if expires_at < time.time():
                logger.debug("Token expired")
                return None

        return payload

    def __call__(self, request: web.Request) -> bool:
        token = self.extractor.extract_from_header(request)
        if token is None:
            return False
        return self.verify(token) is not None
