"""Unit tests for the Redis sliding-window rate limiter."""

from __future__ import annotations

import pytest

from orderdesk.errors import RateLimitExceededError
from orderdesk.rate_limit import RedisRateLimiter
from tests.utils.fake_redis import FakeRedis
from tests.utils.memory_db import MutableClock


def test_hits_within_limit_are_counted(clock: MutableClock) -> None:
    client = FakeRedis()
    limiter = RedisRateLimiter(client, clock=clock)

    assert [limiter.consume("login:ip:1.2.3.4", 3, 60) for _ in range(3)] == [1, 2, 3]
    assert client.expiry_ms["login:ip:1.2.3.4"] == 60_000
    assert client.pipelines_executed == 3


def test_hit_past_limit_raises(clock: MutableClock) -> None:
    limiter = RedisRateLimiter(FakeRedis(), clock=clock)
    limiter.consume("otp_send:email:a@example.test", 2, 900)
    limiter.consume("otp_send:email:a@example.test", 2, 900)

    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.consume("otp_send:email:a@example.test", 2, 900)

    assert exc_info.value.key == "otp_send:email:a@example.test"
    assert (exc_info.value.limit, exc_info.value.window_seconds) == (2, 900)
    assert limiter.consume("otp_send:email:b@example.test", 2, 900) == 1


def test_window_slides_past_old_hits(clock: MutableClock) -> None:
    limiter = RedisRateLimiter(FakeRedis(), clock=clock)
    limiter.consume("k", 2, 60)
    clock.advance(seconds=30)
    limiter.consume("k", 2, 60)
    clock.advance(seconds=31)

    assert limiter.consume("k", 2, 60) == 2


def test_disabled_limiter_skips_redis(clock: MutableClock) -> None:
    client = FakeRedis()
    limiter = RedisRateLimiter(client, clock=clock, disabled=True)

    for _ in range(10):
        assert limiter.consume("k", 1, 60) == 0
    assert client.pipelines_executed == 0


def test_non_positive_limits_are_rejected(clock: MutableClock) -> None:
    limiter = RedisRateLimiter(FakeRedis(), clock=clock)
    with pytest.raises(ValueError):
        limiter.consume("k", 0, 60)
    with pytest.raises(ValueError):
        limiter.consume("k", 1, 0)
