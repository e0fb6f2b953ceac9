"""
SMS Integration - Outbound Rate Limiter

Token bucket used by broadcast and bulk loops to stay under carrier
throughput limits. Tokens refill continuously at `rate` per second up to
`capacity`; acquire() waits until a token is available.
"""

import asyncio
import logging
import time
from typing import Callable, Awaitable, Any, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token bucket limiter.

    Args:
        rate: Tokens added per second
        capacity: Maximum burst size
        clock: Monotonic clock in seconds (injectable for tests)
        sleep: Async sleep function (injectable for tests)
    """

    def __init__(
        self,
        rate: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = float(rate)
        self.capacity = float(capacity)
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated_at, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated_at = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def try_acquire(self, tokens: float = 1) -> bool:
        """Take tokens without waiting. Returns False if not enough are available."""
        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    async def acquire(self, tokens: float = 1) -> float:
        """
        Wait until tokens are available and take them.

        Returns:
            float: Total seconds spent waiting
        """
        if tokens > self.capacity:
            raise ValueError(f"Cannot acquire {tokens} tokens from a bucket of {self.capacity}")

        waited = 0.0
        async with self._lock:
            while not self.try_acquire(tokens):
                wait = (tokens - self._tokens) / self.rate
                waited += wait
                await self._sleep(wait)
        if waited:
            logger.debug(f"Rate limiter waited {waited:.3f}s")
        return waited
