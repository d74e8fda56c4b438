"""
Per-client request limits for the HTTP API.
"""
import logging
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Optional

from fastapi import Request

from coinfolio.core.config import (
    API_RATE_LIMIT,
    API_RATE_WINDOW_SECONDS,
    AUTH_RATE_LIMIT,
    AUTH_RATE_WINDOW_SECONDS,
)
from coinfolio.core.errors import RateLimitedError

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per key within ``window_seconds``."""

    def __init__(self, max_requests: int, window_seconds: float,
                 message: Optional[str] = None, timer: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self._timer = timer
        self._hits: dict[str, deque] = defaultdict(deque)
        self._last_sweep = timer()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of clients currently tracked."""
        with self._lock:
            return len(self._hits)

    def _sweep(self, now: float, cutoff: float) -> None:
        # Drop clients with no hit inside the window; at most once per window
        if now - self._last_sweep < self.window_seconds:
            return
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str) -> None:
        """Record one request for ``key``; raise RateLimitedError when over budget."""
        now = self._timer()
        cutoff = now - self.window_seconds
        with self._lock:
            self._sweep(now, cutoff)
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                logger.warning(f"Rate limit exceeded for {key} ({len(hits)}/{self.max_requests})")
                raise RateLimitedError(self.message)
            hits.append(now)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


api_limiter = SlidingWindowRateLimiter(
    API_RATE_LIMIT,
    API_RATE_WINDOW_SECONDS,
    message="Too many requests from this IP, please try again later",
)
auth_limiter = SlidingWindowRateLimiter(
    AUTH_RATE_LIMIT,
    AUTH_RATE_WINDOW_SECONDS,
    message="Too many login attempts, please try again later",
)


def get_client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def api_rate_limit(request: Request) -> None:
    """Dependency applied to every /api router."""
    api_limiter.hit(get_client_ip(request) or "unknown")


def auth_rate_limit(request: Request) -> None:
    """Stricter dependency for login and registration."""
    auth_limiter.hit(get_client_ip(request) or "unknown")
