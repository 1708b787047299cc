"""Counter stores backing the daily usage tracker.

Two implementations share one contract:

- ``RedisUsageStore``: production store, atomic via a server-side Lua script
- ``InMemoryUsageStore``: single-process store for development and tests
"""

import threading
from typing import Protocol

import redis.asyncio as redis
import structlog
from cachetools import TTLCache
from redis.exceptions import RedisError

from portfolio_chat_api.config import get_settings
from portfolio_chat_api.errors import UsageStoreUnavailable

logger = structlog.get_logger()


class UsageStore(Protocol):
    """Key/value counter store with an atomic bounded increment."""

    async def get(self, key: str) -> int:
        """Return the counter for ``key`` (0 when absent)."""
        ...

    async def increment_with_ceiling(self, key: str, limit: int) -> int | None:
        """Increment ``key`` unless it already reached ``limit``.

        Returns:
            The new count, or None if the ceiling was already reached.
        """
        ...

    async def decrement(self, key: str) -> int:
        """Undo one increment, never going below zero."""
        ...

    async def ping(self) -> bool:
        """Check the store is reachable."""
        ...


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = ttl seconds
_INCREMENT_WITH_CEILING = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return -1
end
local updated = redis.call('INCR', KEYS[1])
if redis.call('TTL', KEYS[1]) < 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return updated
"""

_DECREMENT_TO_ZERO = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current <= 0 then
    return 0
end
return redis.call('DECR', KEYS[1])
"""


class RedisUsageStore:
    """Usage counters in Redis; every mutation is a single Lua script."""

    def __init__(self, client: redis.Redis, ttl_seconds: int | None = None):
        settings = get_settings()
        self._redis = client
        self._ttl = ttl_seconds or settings.usage_key_ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int | None = None) -> "RedisUsageStore":
        """Create a store from a redis:// URL using configured timeouts."""
        settings = get_settings()
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=settings.redis_timeout_seconds,
            socket_connect_timeout=settings.redis_timeout_seconds,
        )
        return cls(client, ttl_seconds=ttl_seconds)

    async def get(self, key: str) -> int:
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            logger.error("Usage store read failed", key=key, error=str(e))
            raise UsageStoreUnavailable(f"Usage store unavailable: {e}") from e
        return int(value or 0)

    async def increment_with_ceiling(self, key: str, limit: int) -> int | None:
        try:
            result = await self._redis.eval(_INCREMENT_WITH_CEILING, 1, key, limit, self._ttl)
        except RedisError as e:
            logger.error("Usage store increment failed", key=key, error=str(e))
            raise UsageStoreUnavailable(f"Usage store unavailable: {e}") from e
        result = int(result)
        return None if result < 0 else result

    async def decrement(self, key: str) -> int:
        try:
            result = await self._redis.eval(_DECREMENT_TO_ZERO, 1, key)
        except RedisError as e:
            logger.error("Usage store decrement failed", key=key, error=str(e))
            raise UsageStoreUnavailable(f"Usage store unavailable: {e}") from e
        return int(result)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self._redis.aclose()


class InMemoryUsageStore:
    """Thread-safe in-memory counters with automatic expiration."""

    def __init__(self, ttl_seconds: int | None = None, max_keys: int = 100_000):
        """Initialize the store.

        Args:
            ttl_seconds: Lifetime of a counter since its last write. Defaults to config value.
            max_keys: Maximum number of counters kept.
        """
        settings = get_settings()
        self._ttl = ttl_seconds or settings.usage_key_ttl_seconds
        self._counts: TTLCache[str, int] = TTLCache(maxsize=max_keys, ttl=self._ttl)
        self._lock = threading.Lock()

    async def get(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    async def increment_with_ceiling(self, key: str, limit: int) -> int | None:
        with self._lock:
            current = self._counts.get(key, 0)
            if current >= limit:
                return None
            self._counts[key] = current + 1
            return current + 1

    async def decrement(self, key: str) -> int:
        with self._lock:
            current = self._counts.get(key, 0)
            if current <= 0:
                return 0
            self._counts[key] = current - 1
            return current - 1

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._lock:
            self._counts.clear()


# Global usage store instance
_usage_store: RedisUsageStore | InMemoryUsageStore | None = None


def get_usage_store() -> RedisUsageStore | InMemoryUsageStore:
    """Get the global usage store, Redis when REDIS_URL is set."""
    global _usage_store
    if _usage_store is None:
        settings = get_settings()
        if settings.redis_url:
            _usage_store = RedisUsageStore.from_url(settings.redis_url)
            logger.info("Usage store backed by Redis")
        else:
            _usage_store = InMemoryUsageStore()
            logger.info("Usage store in memory (REDIS_URL not set)")
    return _usage_store


async def close_usage_store() -> None:
    """Close the global usage store."""
    global _usage_store
    if _usage_store:
        await _usage_store.close()
        _usage_store = None


def reset_usage_store() -> None:
    """Reset the global usage store (useful for testing)."""
    global _usage_store
    _usage_store = None
