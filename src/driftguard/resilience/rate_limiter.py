"""Token-bucket rate limiter bounding the outbound request rate."""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

import structlog

from driftguard.constants import DEFAULT_REQUESTS_PER_SECOND

ClockFn: TypeAlias = Callable[[], float]
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]


def _validate_rate(rate: float) -> float:
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        raise TypeError("rate must be a number")
    parsed = float(rate)
    if not math.isfinite(parsed) or parsed <= 0:
        raise ValueError("rate must be a finite number > 0")
    return parsed


class RateLimiter:
    """Lazy-refill token bucket.

    Capacity equals the configured rate (never below one token, so sub-1 rates
    still admit requests). ``acquire`` never rejects; it only delays.
    """

    def __init__(
        self,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
        *,
        clock: ClockFn = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        self._rate = _validate_rate(requests_per_second)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill = clock()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return max(self._rate, 1.0)

    @property
    def tokens(self) -> float:
        return self._tokens

    async def acquire(self) -> None:
        waited = 0
        while True:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                if waited:
                    self._logger.debug("rate_limiter_token_granted", waits=waited)
                return
            waited += 1
            await self._sleep(1.0 / self._rate)

    def set_rate(self, requests_per_second: float) -> None:
        self._refill()
        self._rate = _validate_rate(requests_per_second)
        self._tokens = min(self._tokens, self.capacity)
        self._logger.info("rate_limiter_rate_changed", requests_per_second=self._rate)

    def snapshot(self) -> dict[str, float]:
        return {
            "rate": self._rate,
            "capacity": self.capacity,
            "tokens": self._tokens,
        }

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self._rate)
        self._last_refill = now


__all__ = ["ClockFn", "RateLimiter", "SleepFn"]
