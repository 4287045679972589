"""Tests for the in-memory and Redis-backed sliding window rate limiters."""

from __future__ import annotations

import time

import fakeredis
import pytest

from lernbase_auth.security.rate_limiter import SlidingWindowRateLimiter
from lernbase_auth.security.redis_rate_limiter import RedisSlidingWindowRateLimiter


class ManualTime:
    def __init__(self) -> None:
        self.value = 1_000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_memory_limiter_blocks_then_recovers():
    clock = ManualTime()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, time_source=clock)
    key = "login:203.0.113.7"

    assert limiter.allow(key)
    clock.value += 10
    assert limiter.allow(key)
    assert not limiter.allow(key)
    assert limiter.retry_after(key) == 50

    clock.value += 50
    assert limiter.retry_after(key) == 0
    assert limiter.allow(key)


def test_memory_limiter_keys_are_independent():
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, time_source=ManualTime())

    assert limiter.allow("login:198.51.100.1")
    assert limiter.allow("register:198.51.100.1")
    assert not limiter.allow("login:198.51.100.1")
    assert limiter.retry_after("unknown") == 0


def test_redis_rate_limiter_allows_within_threshold(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=3, window_seconds=1, key_prefix="test"
    )
    key = "login:client"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert limiter.allow(key)


def test_redis_rate_limiter_blocks_excess(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=2, window_seconds=30, key_prefix="test"
    )
    key = "forgot-password:client"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)
    assert 0 < limiter.retry_after(key) <= 30


def test_redis_rate_limiter_expires_entries(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=1, key_prefix="test"
    )
    key = "register:client"
    assert limiter.allow(key)
    assert not limiter.allow(key)
    time.sleep(1.1)
    assert limiter.retry_after(key) == 0
    assert limiter.allow(key)


def test_memory_limiter_drops_idle_keys():
    clock = ManualTime()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, time_source=clock)

    for host in range(50):
        assert limiter.allow(f"login:198.51.100.{host}")
    assert len(limiter._events) == 50

    clock.value += 60
    assert limiter.retry_after("login:198.51.100.0") == 0
    assert limiter.allow("login:198.51.100.1")
    assert limiter.retry_after("never-seen") == 0
    assert set(limiter._events) == {"login:198.51.100.1"}
