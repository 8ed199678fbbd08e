"""Redis connection for the runtime settings cache and lock."""

import asyncio
from collections.abc import Iterator
from typing import TYPE_CHECKING

import redis.asyncio as redis_async
from redis.asyncio.client import Redis

from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param

if TYPE_CHECKING:
    from runtime_settings.config.settings import RedisConfig

MAX_BACKOFF_SECONDS = 30.0


def backoff_delays(initial: float, attempts: int) -> Iterator[float]:
    """Delays between attempts: initial, doubled each time, capped."""
    delay = initial
    for _ in range(attempts - 1):
        yield delay
        delay = min(delay * 2, MAX_BACKOFF_SECONDS)


class RedisClient:
    """Owns the redis.asyncio connection shared by Cache and the upgrade lock."""

    def __init__(self, config: "RedisConfig") -> None:
        """
        Initialize Redis client.

        Args:
            config: host, port, db and optional password
        """
        self.config = config
        self.redis: Redis | None = None
        self.logger = get_logger().with_category(Category.CACHE)

    def _create(self) -> Redis:
        return redis_async.Redis(
            host=self.config.host,
            port=self.config.port,
            db=self.config.db,
            password=self.config.password,
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )

    async def _open(self) -> None:
        self.redis = self._create()
        await self.redis.ping()  # type: ignore[misc]

    async def connect(self, max_retries: int = 10, initial_delay: float = 1.0) -> None:
        """
        Connect, retrying with exponential backoff.

        Args:
            max_retries: Total connection attempts
            initial_delay: Seconds before the second attempt

        Raises:
            ConnectionError: If every attempt failed
        """
        endpoint = (param("host", self.config.host), param("port", self.config.port))
        delays = backoff_delays(initial_delay, max_retries)
        attempt = 0

        while True:
            attempt += 1
            try:
                await self._open()
            except Exception as e:
                delay = next(delays, None)
                if delay is None:
                    self.logger.error(
                        f"Failed to connect to Redis after {attempt} attempts", e, *endpoint
                    )
                    raise ConnectionError(
                        f"Failed to connect to Redis at {self.config.host}:{self.config.port} "
                        f"after {attempt} attempts"
                    ) from e

                self.logger.warn(
                    f"Redis connection attempt {attempt}/{max_retries} failed, retrying...",
                    *endpoint,
                    param("delay", delay),
                    param("error", str(e)),
                )
                await asyncio.sleep(delay)
                continue

            self.logger.info("Connected to Redis", *endpoint, param("db", self.config.db))
            return

    async def close(self) -> None:
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis connection closed")

    def get_redis(self) -> Redis:
        """
        Connected Redis instance.

        Raises:
            RuntimeError: If connect() has not succeeded
        """
        if self.redis is None:
            raise RuntimeError("RedisClient not connected. Call connect() first.")
        return self.redis
