"""
Unit tests for data/rate_limiter.py.

A fake monotonic clock is advanced by the injected sleep so spacing can
be asserted without real waiting.
"""

from __future__ import annotations

import asyncio

import pytest

from data.rate_limiter import RateLimiter


class _FakeTime:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _make_limiter(interval: float, fake: _FakeTime) -> RateLimiter:
    return RateLimiter(interval, sleep=fake.sleep, monotonic=fake.monotonic)


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_first_request_is_immediate(self):
        fake = _FakeTime()
        await _make_limiter(0.2, fake).acquire()
        assert fake.sleeps == []

    @pytest.mark.asyncio
    async def test_back_to_back_requests_are_spaced(self):
        fake = _FakeTime()
        limiter = _make_limiter(0.2, fake)
        await limiter.acquire()
        await limiter.acquire()
        await limiter.acquire()
        assert fake.sleeps == pytest.approx([0.2, 0.2])

    @pytest.mark.asyncio
    async def test_only_remaining_gap_is_waited(self):
        fake = _FakeTime()
        limiter = _make_limiter(0.2, fake)
        await limiter.acquire()
        fake.now += 0.15
        await limiter.acquire()
        assert fake.sleeps == pytest.approx([0.05])

    @pytest.mark.asyncio
    async def test_idle_longer_than_interval_no_wait(self):
        fake = _FakeTime()
        limiter = _make_limiter(0.2, fake)
        await limiter.acquire()
        fake.now += 5
        await limiter.acquire()
        assert fake.sleeps == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_queue(self):
        fake = _FakeTime()
        limiter = _make_limiter(0.2, fake)
        await asyncio.gather(*(limiter.acquire() for _ in range(4)))
        assert fake.sleeps == pytest.approx([0.2, 0.2, 0.2])
        assert fake.now == pytest.approx(100.6)

    def test_negative_interval_clamped(self):
        assert RateLimiter(-1).min_interval_seconds == 0.0
