"""Redis-backed sliding window throttle for failed login attempts."""

from __future__ import annotations

import time

from redis import Redis


class RedisLoginThrottle:
    """Distributed failure counter stored as one sorted set per key."""

    def __init__(
        self,
        client: Redis,
        *,
        max_failures: int,
        window_seconds: int,
        key_prefix: str = "login-failures",
    ) -> None:
        """Keep the Redis client and window configuration."""
        self._client = client
        self._max_failures = max_failures
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix

    def is_blocked(self, key: str) -> bool:
        """Return ``True`` when ``key`` has exhausted its failed attempts across all replicas."""
        redis_key = self._redis_key(key)
        now_ms = int(time.time() * 1000)
        pipe = self._client.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        pipe.zcard(redis_key)
        _, current = pipe.execute()
        return int(current) >= self._max_failures

    def record_failure(self, key: str) -> None:
        redis_key = self._redis_key(key)
        now_ms = int(time.time() * 1000)
        seq = self._client.incr(f"{redis_key}:seq")
        pipe = self._client.pipeline()
        pipe.pexpire(f"{redis_key}:seq", self._window_ms)
        pipe.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        pipe.pexpire(redis_key, self._window_ms)
        pipe.execute()

    def reset(self, key: str) -> None:
        redis_key = self._redis_key(key)
        self._client.delete(redis_key, f"{redis_key}:seq")

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"
