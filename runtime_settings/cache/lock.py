"""Cross-process mutual exclusion on top of the cache's SET NX."""

import os
import socket
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param


class LockBackend(Protocol):
    async def set_if_absent(self, key: str, value: Any, ttl: float | None = None) -> bool: ...

    async def delete_if_equal(self, key: str, value: Any) -> bool: ...


class LockUnavailableError(ConnectionError):
    """The lock backend could not be asked for the lock."""


def _holder_token() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex}"


@asynccontextmanager
async def distributed_lock(
    backend: LockBackend,
    key: str,
    ttl: float,
) -> AsyncIterator[bool]:
    """
    Try to take ``key`` for at most ``ttl`` seconds.

    Yields whether the lock was acquired; it does not wait for a holder to
    finish. On every exit path the key is deleted if it still holds this
    acquisition's token, so a lock that expired and was taken by another
    process is left alone. A failed release is logged, the TTL frees the key.

    Raises:
        LockUnavailableError: If the backend fails while acquiring

    Example:
        >>> async with distributed_lock(cache, "runtime:upgrade", 600) as acquired:
        ...     if acquired:
        ...         await do_exclusive_work()
    """
    logger = get_logger().with_category(Category.CACHE)
    token = _holder_token()

    try:
        acquired = await backend.set_if_absent(key, token, ttl)
    except Exception as e:
        raise LockUnavailableError(f"Failed to acquire lock {key}: {e}") from e

    if acquired:
        logger.debug("Lock acquired", param("key", key), param("ttl", ttl))
    else:
        logger.debug("Lock held by another process", param("key", key))

    try:
        yield acquired
    finally:
        if acquired:
            await _release(backend, key, token, ttl)


async def _release(backend: LockBackend, key: str, token: str, ttl: float) -> None:
    logger = get_logger().with_category(Category.CACHE)
    try:
        released = await backend.delete_if_equal(key, token)
    except Exception as e:
        logger.error(
            "Failed to release lock, it expires by ttl", e, param("key", key), param("ttl", ttl)
        )
        return

    if released:
        logger.debug("Lock released", param("key", key))
    else:
        logger.warn("Lock expired before release", param("key", key), param("ttl", ttl))
