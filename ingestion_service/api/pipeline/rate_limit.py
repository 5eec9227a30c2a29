"""
Rate limiting stage.

Fixed-window limiter keyed by client identity. Requests over the limit are
answered with 429 here and never reach later stages.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ...core.exceptions import RateLimitExceeded
from ..metrics.registry import RATE_LIMITED
from .errors import error_response


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limit configuration."""

    limit: int = 5
    window_ms: int = 1000
    include_headers: bool = True
    header_prefix: str = "RateLimit"


class FixedWindowLimiter:
    """
    In-memory fixed window counter.

    A window opens on the first request of a client and lasts ``window_ms``;
    the counter resets when the next request arrives after it closed.
    """

    def __init__(self, limit: int, window_ms: int, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window_ms / 1000.0
        self._clock = clock
        # key -> (window_start, hits)
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._next_sweep = 0.0

    def hit(self, key: str) -> Tuple[bool, int, float]:
        """
        Count one request for ``key``.

        Returns:
            (allowed, remaining, seconds until the window resets)
        """
        now = self._clock()
        self._sweep(now)

        start, hits = self._windows.get(key, (now, 0))
        if now - start >= self.window:
            start, hits = now, 0

        hits += 1
        self._windows[key] = (start, hits)

        reset_in = max(0.0, start + self.window - now)
        remaining = max(0, self.limit - hits)
        return hits <= self.limit, remaining, reset_in

    def _sweep(self, now: float) -> None:
        # Drop closed windows at most once per window length
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.window
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window]
        for key in expired:
            del self._windows[key]


def client_key(request: Request) -> str:
    """
    Identity used for limiting: the peer address.

    Forwarding headers are not read here. uvicorn replaces the peer address
    with the forwarded client only when the connection comes from an address
    listed in FORWARDED_ALLOW_IPS.
    """
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware for rate limiting."""

    def __init__(
        self,
        app,
        config: Optional[RateLimitConfig] = None,
        limiter: Optional[FixedWindowLimiter] = None,
    ):
        super().__init__(app)
        self.config = config or RateLimitConfig()
        self.limiter = limiter or FixedWindowLimiter(self.config.limit, self.config.window_ms)

    async def dispatch(self, request: Request, call_next) -> Response:
        allowed, remaining, reset_in = self.limiter.hit(client_key(request))

        if not allowed:
            RATE_LIMITED.inc()
            retry_after = max(1, math.ceil(reset_in))
            response = error_response(
                RateLimitExceeded(retry_after),
                headers={"Retry-After": str(retry_after)},
            )
        else:
            response = await call_next(request)

        self._add_headers(response, remaining, reset_in)
        return response

    def _add_headers(self, response: Response, remaining: int, reset_in: float) -> None:
        if not self.config.include_headers:
            return
        prefix = self.config.header_prefix
        response.headers[f"{prefix}-Limit"] = str(self.config.limit)
        response.headers[f"{prefix}-Remaining"] = str(remaining)
        response.headers[f"{prefix}-Reset"] = str(math.ceil(reset_in))
