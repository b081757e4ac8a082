"""Rate limiting module for the outbound gateway.

This module implements:
- Fixed-window in-memory counting shared by concurrent pipeline invocations
- A Redis-backed fixed-window limiter usable as the external rate predicate
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis
from aiohttp import web

from outbound_gateway.core.middleware import client_identity

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class RateWindowState:
    """Counting state of one key.

    Attributes:
        count: Requests admitted in the current window
        expires_at_ms: Epoch milliseconds at which the window ends
    """

    count: int
    expires_at_ms: int


class RateCounter:
    """Fixed-window request counter keyed by client identity.

    The window starts with the first request of a key and is reset by the
    first request that arrives after it expired. A fixed window can admit up
    to ``2 * max`` requests across a window boundary.

    The read-check-increment sequence runs under a lock. The lock is never
    held across an ``await``, so the counter is safe for threads and for
    interleaved asyncio tasks alike.
    """

    def __init__(self, max_keys: int | None = None):
        """Initialize the counter.

        Args:
            max_keys: Maximum number of tracked keys. When a new key would
                exceed it, expired entries are swept and then the oldest
                entries are evicted. None keeps every key for the process
                lifetime.
        """
        if max_keys is not None and max_keys < 1:
            raise ValueError("max_keys must be positive")
        self.max_keys = max_keys
        self._windows: dict[str, RateWindowState] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def get(self, key: str) -> RateWindowState | None:
        """Return a copy of the state of a key, if tracked."""
        with self._lock:
            state = self._windows.get(key)
            if state is None:
                return None
            return RateWindowState(state.count, state.expires_at_ms)

    def allow(self, key: str, window_ms: int, max_requests: int, now: int | None = None) -> bool:
        """Count a request and decide whether it is admitted.

        Args:
            key: Client identity
            window_ms: Window length in milliseconds
            max_requests: Requests admitted per window
            now: Current time in epoch milliseconds (defaults to the clock)

        Returns:
            True if the request is within the limit
        """
        if now is None:
            now = now_ms()

        with self._lock:
            current = self._windows.get(key)

            if current is None or current.expires_at_ms <= now:
                if current is None:
                    self._make_room(now)
                else:
                    # Re-insert so that eviction order follows window start
                    del self._windows[key]
                self._windows[key] = RateWindowState(count=1, expires_at_ms=now + window_ms)
                return True

            if current.count >= max_requests:
                return False

            current.count += 1
            return True

    def sweep(self, now: int | None = None) -> int:
        """Drop every expired window.

        Args:
            now: Current time in epoch milliseconds (defaults to the clock)

        Returns:
            Number of removed keys
        """
        if now is None:
            now = now_ms()
        with self._lock:
            return self._sweep_locked(now)

    def clear(self) -> None:
        """Forget every key."""
        with self._lock:
            self._windows.clear()

    def _sweep_locked(self, now: int) -> int:
        expired = [k for k, s in self._windows.items() if s.expires_at_ms <= now]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def _make_room(self, now: int) -> None:
        if self.max_keys is None or len(self._windows) < self.max_keys:
            return

        removed = self._sweep_locked(now)
        while len(self._windows) >= self.max_keys:
            # dicts keep insertion order: the first key has the oldest window
            oldest = next(iter(self._windows))
            del self._windows[oldest]
            removed += 1

        logger.debug(
            "Rate counter at capacity, evicted keys",
            extra={"evicted": removed, "max_keys": self.max_keys},
        )


class RedisFixedWindowLimiter:
    """Fixed-window limiter backed by Redis, for multi-process deployments.

    Instances are async predicates ``(request) -> bool`` and plug into the
    ``rate_limit`` hook of a pipeline.
    """

    def __init__(
        self,
        redis_url: str,
        limit: int,
        window_ms: int,
        key_func: Callable[[web.Request], str] | None = None,
        key_prefix: str = "outbound:ratelimit:",
        fail_mode: str = "open",
    ):
        """Initialize the Redis limiter.

        Args:
            redis_url: Redis connection URL
            limit: Requests admitted per window
            window_ms: Window length in milliseconds
            key_func: Maps a request to its key (defaults to client identity)
            key_prefix: Prefix for Redis keys
            fail_mode: 'open' admits and 'closed' rejects requests when Redis fails
        """
        self.redis_url = redis_url
        self.limit = limit
        self.window_ms = window_ms
        self.key_func = key_func
        self.key_prefix = key_prefix
        self.fail_mode = fail_mode
        self.client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.client is None:
            self.client = await redis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )
            logger.info(f"Connected to Redis rate limit store at {self.redis_url}")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.client:
            await self.client.close()
            self.client = None
            logger.info("Disconnected from Redis rate limit store")

    async def is_healthy(self) -> bool:
        """Check if Redis connection is healthy.

        Returns:
            True if connected and responsive, False otherwise
        """
        if not self.client:
            return False

        try:
            await self.client.ping()
            return True
        except Exception:
            return False

    def _window_key(self, key: str, now: int) -> str:
        window_start = (now // self.window_ms) * self.window_ms
        return f"{self.key_prefix}{key}:{window_start}"

    async def __call__(self, request: web.Request) -> bool:
        """Count the request and decide whether it is admitted."""
        key = self.key_func(request) if self.key_func else client_identity(request)

        try:
            if self.client is None:
                await self.connect()

            window_key = self._window_key(key, now_ms())
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.incr(window_key)
                pipe.pexpire(window_key, self.window_ms * 2)
                results = await pipe.execute()

            count = int(results[0])

        except Exception as e:
            logger.error(f"Redis rate limit check failed for {key}: {e}")
            if self.fail_mode == "open":
                logger.warning("Failing open: allowing request due to store failure")
                return True
            logger.warning("Failing closed: denying request due to store failure")
            return False

        allowed = count <= self.limit
        if not allowed:
            logger.info(
                f"Redis rate limit exceeded for key {key}",
                extra={"key": key, "limit": self.limit, "count": count},
            )
        return allowed
