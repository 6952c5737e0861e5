"""Tests for the sliding-window rate limiter."""

import asyncio

import pytest

from mailtidy.config import RateLimitConfig
from mailtidy.ratelimit import WINDOW_BUFFER_SECONDS, RateLimiter


class FakeClock:
    """Virtual time; sleeping advances it."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_limiter(clock, **kwargs):
    return RateLimiter(clock=clock, sleep=clock.sleep, **kwargs)


def test_first_call_is_immediate():
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=5, window_seconds=60, min_delay_ms=8)

    asyncio.run(limiter.wait_if_needed())

    assert clock.sleeps == []
    assert limiter.get_status() == {"requests_in_window": 1, "max_requests": 5}


def test_min_delay_between_calls():
    """Back-to-back calls are spaced by the minimum delay."""
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=100, window_seconds=60, min_delay_ms=8)

    async def run():
        for _ in range(3):
            await limiter.wait_if_needed()

    asyncio.run(run())

    assert clock.sleeps == [pytest.approx(0.008), pytest.approx(0.008)]
    stamps = list(limiter._timestamps)
    assert all(b - a >= 0.008 - 1e-9 for a, b in zip(stamps, stamps[1:]))


def test_window_overflow_waits_for_oldest_to_expire():
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=3, window_seconds=10, min_delay_ms=0)

    async def run():
        for _ in range(4):
            await limiter.wait_if_needed()

    asyncio.run(run())

    assert clock.sleeps == [pytest.approx(10 + WINDOW_BUFFER_SECONDS)]
    assert limiter.get_status()["requests_in_window"] == 1


def test_never_exceeds_window_under_concurrency():
    """No trailing window ever holds more than max_requests calls."""
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=5, window_seconds=1, min_delay_ms=0)
    admitted = []

    async def call():
        await limiter.wait_if_needed()
        admitted.append(clock.now)

    async def run():
        await asyncio.gather(*(call() for _ in range(23)))

    asyncio.run(run())

    assert len(admitted) == 23
    for t in admitted:
        in_window = [a for a in admitted if t - 1 < a <= t]
        assert len(in_window) <= 5


def test_old_calls_fall_out_of_status():
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=10, window_seconds=60, min_delay_ms=0)
    asyncio.run(limiter.wait_if_needed())
    asyncio.run(limiter.wait_if_needed())

    clock.now += 61
    assert limiter.get_status()["requests_in_window"] == 0


def test_from_config():
    limiter = RateLimiter.from_config(RateLimitConfig(max_requests=50, window_seconds=5, min_delay_ms=20))
    assert limiter.max_requests == 50
    assert limiter.window == 5
    assert limiter.min_delay == pytest.approx(0.02)


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)
