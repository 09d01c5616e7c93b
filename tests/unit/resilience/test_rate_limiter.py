"""
driftguard - unit tests for the token-bucket rate limiter

File: tests/unit/resilience/test_rate_limiter.py

Purpose
- Validate burst capacity, lazy refill, delayed acquisition and live rate changes
  using an injected clock so no test waits on wall time.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from driftguard.resilience.rate_limiter import RateLimiter


def _limiter(rate: float, clock: Any) -> RateLimiter:
    return RateLimiter(rate, clock=clock, sleep=clock.sleep)


async def test_burst_up_to_capacity_without_waiting(fake_clock: Any) -> None:
    limiter = _limiter(5, fake_clock)

    for _ in range(5):
        await limiter.acquire()

    assert fake_clock.sleeps == []
    assert limiter.tokens == pytest.approx(0.0)


async def test_acquire_waits_when_bucket_is_empty(fake_clock: Any) -> None:
    limiter = _limiter(2, fake_clock)
    await limiter.acquire()
    await limiter.acquire()

    await limiter.acquire()

    assert fake_clock.sleeps == [pytest.approx(0.5)]


async def test_tokens_refill_with_elapsed_time(fake_clock: Any) -> None:
    limiter = _limiter(10, fake_clock)
    for _ in range(10):
        await limiter.acquire()

    fake_clock.advance(0.35)
    await limiter.acquire()
    await limiter.acquire()
    await limiter.acquire()

    assert fake_clock.sleeps == []
    assert limiter.tokens == pytest.approx(0.5)


async def test_sub_one_rate_still_admits_a_request(fake_clock: Any) -> None:
    limiter = _limiter(0.5, fake_clock)

    assert limiter.capacity == 1.0
    await limiter.acquire()
    await limiter.acquire()

    assert fake_clock.sleeps == [pytest.approx(2.0)]


async def test_set_rate_caps_tokens_to_new_capacity(fake_clock: Any) -> None:
    limiter = _limiter(10, fake_clock)

    limiter.set_rate(2)

    assert limiter.rate == 2.0
    assert limiter.snapshot() == {"rate": 2.0, "capacity": 2.0, "tokens": 2.0}


@pytest.mark.parametrize("rate", [0, -1, float("nan"), float("inf")])
def test_invalid_rate_rejected(rate: float) -> None:
    with pytest.raises(ValueError):
        RateLimiter(rate)


def test_non_numeric_rate_rejected() -> None:
    with pytest.raises(TypeError):
        RateLimiter(True)


@given(
    rate=st.floats(min_value=0.1, max_value=100.0),
    steps=st.lists(st.floats(min_value=0.0, max_value=3.0), min_size=1, max_size=20),
)
@settings(max_examples=40, derandomize=True, deadline=None)
def test_property_tokens_stay_within_bounds(rate: float, steps: list[float]) -> None:
    now = [0.0]

    async def sleep(seconds: float) -> None:
        now[0] += seconds

    limiter = RateLimiter(rate, clock=lambda: now[0], sleep=sleep)

    async def scenario() -> None:
        for step in steps:
            now[0] += step
            await limiter.acquire()
            assert 0.0 <= limiter.tokens <= limiter.capacity

    asyncio.run(scenario())
