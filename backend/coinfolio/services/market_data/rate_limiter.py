"""
Outbound request budget for the market data provider.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from coinfolio.core.errors import RateLimitedError

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """
    Token bucket refilled at ``rate_per_minute`` tokens per minute, holding at
    most ``burst`` tokens.

    ``acquire()`` reserves one token and sleeps until it is due. The balance may
    go negative: each reservation pushes the next caller further back, so the
    wait already counts every earlier caller still sleeping. If that wait would
    exceed ``max_wait_seconds`` the call fails with RateLimitedError and
    reserves nothing.
    """

    def __init__(
        self,
        rate_per_minute: float,
        burst: int = 1,
        max_wait_seconds: float = 10.0,
        timer: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.rate_per_second = rate_per_minute / 60.0
        self.capacity = max(float(burst), 1.0)
        self.max_wait_seconds = max_wait_seconds
        self._timer = timer
        self._sleep = sleep or asyncio.sleep
        self._tokens = self.capacity
        self._updated_at = timer()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._timer()
        elapsed = max(now - self._updated_at, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
        self._updated_at = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            wait_time = 0.0
            if self._tokens < 1:
                wait_time = (1 - self._tokens) / self.rate_per_second
                if wait_time > self.max_wait_seconds:
                    logger.error(
                        f"Market data rate limit reached, would need to wait {wait_time:.1f}s "
                        f"(max {self.max_wait_seconds:.1f}s)"
                    )
                    raise RateLimitedError("Market data rate limit exceeded, please try again later")
            self._tokens -= 1

        if wait_time > 0:
            logger.warning(f"Market data rate limit reached, waiting {wait_time:.1f}s")
            await self._sleep(wait_time)
