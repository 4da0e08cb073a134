"""Tests for the login failure throttles."""

from __future__ import annotations

import time

import fakeredis
import pytest

from ledger_service.security.rate_limiter import SlidingWindowLoginThrottle
from ledger_service.security.redis_rate_limiter import RedisLoginThrottle


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture(params=["memory", "redis"])
def throttle_factory(request, redis_client):
    def build(max_failures: int, window_seconds: int):
        if request.param == "memory":
            return SlidingWindowLoginThrottle(max_failures=max_failures, window_seconds=window_seconds)
        return RedisLoginThrottle(
            redis_client, max_failures=max_failures, window_seconds=window_seconds, key_prefix="test"
        )

    return build


def test_throttle_allows_until_limit(throttle_factory):
    throttle = throttle_factory(max_failures=2, window_seconds=60)

    assert not throttle.is_blocked("admin")
    throttle.record_failure("admin")
    assert not throttle.is_blocked("admin")
    throttle.record_failure("admin")
    assert throttle.is_blocked("admin")
    assert not throttle.is_blocked("someone-else")


def test_reset_clears_failures(throttle_factory):
    throttle = throttle_factory(max_failures=1, window_seconds=60)
    throttle.record_failure("admin")
    assert throttle.is_blocked("admin")

    throttle.reset("admin")

    assert not throttle.is_blocked("admin")


def test_failures_expire_after_window(throttle_factory):
    throttle = throttle_factory(max_failures=1, window_seconds=1)
    throttle.record_failure("admin")
    assert throttle.is_blocked("admin")

    time.sleep(1.1)

    assert not throttle.is_blocked("admin")
