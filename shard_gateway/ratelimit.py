"""Token bucket admission gate shared by every inbound request.

The limiter is built by the composition root and handed to the middleware;
there is no module-level instance, so tests can run isolated limiters.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .logging_config import log


class TokenBucket:
    """Classic token bucket: ``rate`` tokens per second, at most ``burst`` stored.

    The bucket starts full. Updates are serialised with a lock because the
    same instance is consulted by every concurrent request.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        """Initialize the bucket.

        Args:
            rate: Refill rate in tokens per second.
            burst: Bucket capacity.
            clock: Monotonic time source in seconds.

        Raises:
            ValueError: If ``rate`` is negative or ``burst`` is not positive.
        """
        if rate < 0:
            raise ValueError("rate must not be negative")
        if burst <= 0:
            raise ValueError("burst must be positive")
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def try_acquire(self) -> tuple[bool, int]:
        """Take one token if available.

        Returns:
            tuple[bool, int]: ``(allowed, retry_after_seconds)``; the retry hint
            is 0 when allowed and at least 1 otherwise.
        """
        with self._lock:
            now = self._clock()
            elapsed = now - self._last
            if elapsed > 0:
                self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
                self._last = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True, 0

            if self.rate <= 0:
                return False, 1
            wait = (1.0 - self._tokens) / self.rate
            return False, max(1, math.ceil(wait))

    def allow(self) -> bool:
        allowed, _ = self.try_acquire()
        return allowed


class RateLimitMiddleware:
    """ASGI middleware rejecting requests with 429 when the bucket is empty."""

    def __init__(self, app: ASGIApp, limiter: TokenBucket):
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        allowed, retry_after = self.limiter.try_acquire()
        if not allowed:
            log.warning(
                "Rate limit exceeded",
                extra={"method": scope.get("method"), "path": scope.get("path")},
            )
            response = JSONResponse(
                status_code=429,
                content={"detail": "Too Many Requests"},
                headers={"Retry-After": str(retry_after)},
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
