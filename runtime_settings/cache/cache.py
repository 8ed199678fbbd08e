"""JSON cache on top of Redis."""

import json
from typing import Any

from runtime_settings.cache.client import RedisClient

_DELETE_IF_EQUAL_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def _ttl_ms(ttl: float | None) -> int | None:
    if ttl is None:
        return None
    return max(1, int(ttl * 1000))


class Cache:
    """
    Key/value cache with per-entry TTL.

    Values are stored JSON-encoded. A stored JSON ``null`` reads back as a
    miss, so ``None`` cannot be cached.
    """

    def __init__(self, redis_client: RedisClient) -> None:
        """
        Initialize Cache.

        Args:
            redis_client: Connected (or soon to be connected) Redis client
        """
        self.redis_client = redis_client

    async def get(self, key: str) -> Any:
        """
        Get cached value.

        Returns:
            Decoded value, or None on miss
        """
        raw = await self.redis_client.get_redis().get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """
        Store value, replacing any existing entry.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds (None = no expiry)
        """
        result = await self.redis_client.get_redis().set(
            key, json.dumps(value), px=_ttl_ms(ttl)
        )
        return bool(result)

    async def set_if_absent(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """
        Store value only if ``key`` does not exist (atomic SET NX).

        Returns:
            True if the value was stored, False if the key already existed
        """
        result = await self.redis_client.get_redis().set(
            key, json.dumps(value), nx=True, px=_ttl_ms(ttl)
        )
        return bool(result)

    async def delete(self, key: str) -> bool:
        """
        Remove entry.

        Returns:
            True if an entry was removed
        """
        removed = await self.redis_client.get_redis().delete(key)
        return removed > 0

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        """
        Remove entry only if it still holds ``value`` (atomic compare-and-delete).

        Returns:
            True if the entry was removed
        """
        removed = await self.redis_client.get_redis().eval(
            _DELETE_IF_EQUAL_SCRIPT, 1, key, json.dumps(value)
        )
        return bool(removed)
