#!/usr/bin/env python3

import asyncio

import pytest

from hktransport.ingest.rate_limiter import RateLimiter


def make_limiter(rate):
    now = [0.0]
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)
        now[0] += delay

    limiter = RateLimiter(rate, clock=lambda: now[0], sleep=fake_sleep)
    return limiter, now, sleeps


def test_burst_up_to_capacity_then_waits_for_one_token():
    limiter, now, sleeps = make_limiter(2)

    async def run():
        for _ in range(3):
            await limiter.acquire()

    asyncio.run(run())
    assert sleeps == [pytest.approx(0.5)]


def test_concurrent_callers_are_spaced_at_the_rate():
    limiter, now, sleeps = make_limiter(2)

    async def run():
        await asyncio.gather(*(limiter.acquire() for _ in range(5)))

    asyncio.run(run())
    assert len(sleeps) == 3
    assert now[0] == pytest.approx(1.5)


def test_refill_is_capped_at_capacity():
    limiter, now, sleeps = make_limiter(3)

    async def run():
        for _ in range(3):
            await limiter.acquire()
        now[0] += 100
        assert limiter.available_tokens == pytest.approx(3)
        for _ in range(3):
            await limiter.acquire()

    asyncio.run(run())
    assert sleeps == []


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        RateLimiter(0)


if __name__ == "__main__":
    test_burst_up_to_capacity_then_waits_for_one_token()
    test_concurrent_callers_are_spaced_at_the_rate()
    print("rate limiter ok")
