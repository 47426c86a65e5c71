"""Shared token bucket that throttles generation calls across all tasks."""

from __future__ import annotations

import asyncio
import time
from typing import Callable


class TokenBucket:
    """Refills ``rate_per_minute`` tokens per minute up to ``burst``.

    One instance is created per tick and injected into the generator, so every
    concurrent task draws from the same budget.
    """

    def __init__(
        self,
        rate_per_minute: float,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self._rate = rate_per_minute / 60.0
        self._capacity = float(burst)
        self._tokens = float(burst)
        self._clock = clock
        self._updated = clock()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated, 0.0)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Wait until a token is available and take it."""

        async with self._lock:
            while not self.try_acquire():
                await asyncio.sleep((1 - self._tokens) / self._rate)
