"""Unit tests for the Redis-backed cache and distributed lock."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from runtime_settings.cache.cache import Cache
from runtime_settings.cache.client import RedisClient, backoff_delays
from runtime_settings.cache.lock import LockUnavailableError, distributed_lock


@pytest.fixture
def redis() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def redis_cache(redis) -> Cache:
    client = MagicMock(spec=RedisClient)
    client.get_redis.return_value = redis
    return Cache(client)


class TestCache:
    """Test JSON encoding and TTL handling."""

    async def test_get_decodes_json(self, redis_cache, redis) -> None:
        """Test that stored JSON is decoded."""
        redis.get.return_value = '{"min": 8}'

        assert await redis_cache.get("SERVER_RUNTIME:auth/password") == {"min": 8}
        redis.get.assert_awaited_once_with("SERVER_RUNTIME:auth/password")

    async def test_get_miss_returns_none(self, redis_cache, redis) -> None:
        """Test cache miss."""
        redis.get.return_value = None

        assert await redis_cache.get("missing") is None

    async def test_falsy_values_round_trip(self, redis_cache, redis) -> None:
        """Test that 0 and False are returned as values, not misses."""
        redis.get.return_value = "0"
        assert await redis_cache.get("k") == 0

        redis.get.return_value = "false"
        assert await redis_cache.get("k") is False

    async def test_set_uses_millisecond_ttl(self, redis_cache, redis) -> None:
        """Test that the TTL is sent as PX milliseconds."""
        redis.set.return_value = True

        assert await redis_cache.set("k", [1, 2], 60)
        redis.set.assert_awaited_once_with("k", "[1, 2]", px=60000)

    async def test_set_without_ttl(self, redis_cache, redis) -> None:
        """Test that no TTL means no expiry."""
        redis.set.return_value = True

        await redis_cache.set("k", "v")
        redis.set.assert_awaited_once_with("k", '"v"', px=None)

    async def test_set_if_absent_uses_nx(self, redis_cache, redis) -> None:
        """Test atomic conditional set."""
        redis.set.return_value = True
        assert await redis_cache.set_if_absent("lock", "holder", 600)
        redis.set.assert_awaited_once_with("lock", '"holder"', nx=True, px=600000)

    async def test_set_if_absent_reports_existing_key(self, redis_cache, redis) -> None:
        """Test that SET NX returning None means the key exists."""
        redis.set.return_value = None

        assert not await redis_cache.set_if_absent("lock", "holder", 600)

    async def test_delete(self, redis_cache, redis) -> None:
        """Test delete reports whether a key was removed."""
        redis.delete.return_value = 1
        assert await redis_cache.delete("k")

        redis.delete.return_value = 0
        assert not await redis_cache.delete("k")

    async def test_delete_if_equal_compares_encoded_value(self, redis_cache, redis) -> None:
        """Test compare-and-delete runs as one script on the JSON value."""
        redis.eval.return_value = 1
        assert await redis_cache.delete_if_equal("lock", "holder")

        script, numkeys, key, value = redis.eval.await_args.args
        assert "DEL" in script
        assert (numkeys, key, value) == (1, "lock", '"holder"')

        redis.eval.return_value = 0
        assert not await redis_cache.delete_if_equal("lock", "holder")


class TestRedisClient:
    """Test connection setup."""

    def test_get_redis_before_connect_raises(self) -> None:
        """Test that using the client before connect fails loudly."""
        client = RedisClient(MagicMock())

        with pytest.raises(RuntimeError, match="not connected"):
            client.get_redis()

    def test_backoff_delays_double_and_cap(self) -> None:
        """Test the retry schedule."""
        assert list(backoff_delays(1.0, 1)) == []
        assert list(backoff_delays(8.0, 5)) == [8.0, 16.0, 30.0, 30.0]

    async def test_connect_retries_until_ping_succeeds(self) -> None:
        """Test that transient failures are retried with backoff."""
        redis = AsyncMock()
        redis.ping.side_effect = [ConnectionRefusedError("refused"), True]
        client = RedisClient(MagicMock(host="redis", port=6379, db=0, password=None))

        with (
            patch("runtime_settings.cache.client.redis_async.Redis", return_value=redis),
            patch("runtime_settings.cache.client.asyncio.sleep", new=AsyncMock()) as sleep,
        ):
            await client.connect(max_retries=3, initial_delay=0.5)

        assert client.get_redis() is redis
        sleep.assert_awaited_once_with(0.5)

    async def test_connect_gives_up_after_max_retries(self) -> None:
        """Test that exhausting attempts raises ConnectionError."""
        redis = AsyncMock()
        redis.ping.side_effect = ConnectionRefusedError("refused")
        client = RedisClient(MagicMock(host="redis", port=6379, db=0, password=None))

        with (
            patch("runtime_settings.cache.client.redis_async.Redis", return_value=redis),
            patch("runtime_settings.cache.client.asyncio.sleep", new=AsyncMock()) as sleep,
        ):
            with pytest.raises(ConnectionError, match="after 3 attempts"):
                await client.connect(max_retries=3, initial_delay=0.5)

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    async def test_close(self) -> None:
        """Test that close drops the connection."""
        client = RedisClient(MagicMock())
        redis = AsyncMock()
        client.redis = redis

        await client.close()

        redis.aclose.assert_awaited_once()
        assert client.redis is None


class TestDistributedLock:
    """Test the SET NX based lock."""

    async def test_acquired_lock_is_released(self, cache) -> None:
        """Test acquire and release on normal exit."""
        async with distributed_lock(cache, "runtime:upgrade", 600) as acquired:
            assert acquired
            assert "runtime:upgrade" in cache.data
            assert cache.ttls["runtime:upgrade"] == 600

        assert "runtime:upgrade" not in cache.data

    async def test_lock_is_released_on_error(self, cache) -> None:
        """Test release when the body raises."""
        with pytest.raises(ValueError):
            async with distributed_lock(cache, "runtime:upgrade", 600):
                raise ValueError("boom")

        assert "runtime:upgrade" not in cache.data

    async def test_held_lock_is_not_released_by_loser(self, cache) -> None:
        """Test that a process that did not acquire never deletes the key."""
        await cache.set_if_absent("runtime:upgrade", "other", 600)

        async with distributed_lock(cache, "runtime:upgrade", 600) as acquired:
            assert not acquired

        assert "runtime:upgrade" in cache.data
        assert cache.calls["delete_if_equal"] == 0

    async def test_holder_token_identifies_process(self, cache) -> None:
        """Test that the stored token is unique per acquisition."""
        async with distributed_lock(cache, "a", 10):
            first = cache.data["a"]
        async with distributed_lock(cache, "a", 10):
            second = cache.data["a"]

        assert first != second

    async def test_expired_lock_taken_by_another_holder_is_kept(self, cache) -> None:
        """Test that release never deletes a newer holder's key."""
        async with distributed_lock(cache, "runtime:upgrade", 600) as acquired:
            assert acquired
            # TTL expiry, then another process takes the key
            cache.data.pop("runtime:upgrade")
            assert await cache.set_if_absent("runtime:upgrade", "other-host:2:def", 600)

        assert json.loads(cache.data["runtime:upgrade"]) == "other-host:2:def"

    async def test_release_error_is_not_raised(self, cache, capsys) -> None:
        """Test that a failed release is logged and left to the TTL."""
        cache.fail_on.add("delete_if_equal")

        async with distributed_lock(cache, "runtime:upgrade", 600) as acquired:
            assert acquired

        assert "runtime:upgrade" in cache.data
        assert "Failed to release lock" in capsys.readouterr().out

    async def test_acquire_error_raises_lock_unavailable(self, cache) -> None:
        """Test that a backend failure is distinguished from a held lock."""
        cache.fail_on.add("set_if_absent")

        with pytest.raises(LockUnavailableError, match="set_if_absent failed"):
            async with distributed_lock(cache, "runtime:upgrade", 600):
                pytest.fail("body must not run")
