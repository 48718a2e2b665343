"""Per-device fixed-window rate limiting for the HTTP API.

Requests are counted per device fingerprint (``X-Device-Fingerprint``) or,
without one, per remote address. State lives in process memory, so limits
apply per server instance.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from aiohttp import web

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/v1/health"})
FINGERPRINT_HEADER = "X-Device-Fingerprint"


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_requests: int = 90,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_sweep = clock() + window_seconds

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    def allow(self, key: str) -> bool:
        """Count one request for ``key``; False once the window is full.

        Expired windows of other keys are swept at most once per window length.
        """
        now = self._clock()
        if now >= self._next_sweep:
            self.prune()
            self._next_sweep = now + self.window_seconds
        window = self._windows.get(key)
        if window is None or window.reset_at <= now:
            self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
            return True
        if window.count >= self.max_requests:
            return False
        window.count += 1
        return True

    def prune(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, w in self._windows.items() if w.reset_at <= now]
        for key in expired:
            del self._windows[key]
        return len(expired)


def client_key(request: web.Request) -> str:
    fingerprint = request.headers.get(FINGERPRINT_HEADER, "").strip()
    if fingerprint:
        return f"fp:{fingerprint}"
    return f"ip:{request.remote or 'unknown'}"


def rate_limit_middleware(
    limiter: FixedWindowRateLimiter,
) -> Callable[[web.Request, Callable[[web.Request], Awaitable[web.StreamResponse]]], Awaitable[web.StreamResponse]]:
    @web.middleware
    async def middleware(
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        if request.path in EXEMPT_PATHS:
            return await handler(request)

        key = client_key(request)
        if not limiter.allow(key):
            logger.info(f"Rate limit exceeded for {key}")
            return web.json_response(
                {"error": "Rate limit exceeded. Please slow down and try again."}, status=429
            )
        return await handler(request)

    return middleware
