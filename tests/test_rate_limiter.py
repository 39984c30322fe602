"""Tests for reconmesh.core.rate_limiter."""

from __future__ import annotations

import time

import pytest

from reconmesh.core.rate_limiter import RateLimiter, _parse_retry_after

_SLACK = 0.01


@pytest.mark.asyncio
async def test_acquire_enforces_minimum_spacing():
    limiter = RateLimiter(interval=0.1)
    stamps = []
    for _ in range(4):
        await limiter.acquire()
        stamps.append(time.monotonic())
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(gap >= 0.1 - _SLACK for gap in gaps)


@pytest.mark.asyncio
async def test_zero_interval_does_not_sleep():
    limiter = RateLimiter(interval=0)
    start = time.monotonic()
    for _ in range(10):
        await limiter.acquire()
    assert time.monotonic() - start < 0.1


@pytest.mark.asyncio
async def test_touch_restarts_the_interval():
    limiter = RateLimiter(interval=0.1)
    await limiter.acquire()
    first = limiter.last_call
    limiter.touch()
    assert limiter.last_call >= first


def test_throttle_response_widens_interval():
    limiter = RateLimiter(interval=0.5, max_interval=10)
    limiter.record_response(429, {})
    assert limiter.is_throttled
    assert limiter.interval == pytest.approx(2.0)
    limiter.record_response(503, {})
    assert limiter.interval == pytest.approx(4.0)


def test_widening_is_capped():
    limiter = RateLimiter(interval=1.0, max_interval=3.0)
    for _ in range(5):
        limiter.record_response(429, {})
    assert limiter.interval == 3.0


def test_recovery_never_drops_below_configured_interval():
    limiter = RateLimiter(interval=1.0, max_interval=10)
    limiter.record_response(429, {})
    for _ in range(100):
        limiter.record_response(200, {})
    assert limiter.interval == limiter.base_interval == 1.0
    assert not limiter.is_throttled


def test_success_without_throttling_is_noop():
    limiter = RateLimiter(interval=2.0)
    limiter.record_response(200, {})
    assert limiter.interval == 2.0


def test_parse_retry_after():
    assert _parse_retry_after({"Retry-After": "7"}) == 7.0
    assert _parse_retry_after({"retry-after": "1.5"}) == 1.5
    assert _parse_retry_after({}) == 0.0
    assert _parse_retry_after({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) == 60.0
