"""
Runtime settings service.

    runtime.fetch(k)                    # v1
    runtime.fetch_all({k1: True, k2: True})  # {k1: v1, k2: v2}
    runtime.set(k, v)
    runtime.update(k, lambda v: v + 1)

Reads go cache -> database; a declared setting without a record is created
from its default on first read. Writes go database -> cache.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Union

from runtime_settings.cache.cache import Cache
from runtime_settings.domain.config import ConfigDescriptor, ConfigRecord
from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param
from runtime_settings.registry.schema import SchemaRegistry
from runtime_settings.repository.base import SettingStore
from runtime_settings.runtime.errors import NotFoundError
from runtime_settings.runtime.validation import validate_value

DEFAULT_CACHE_PREFIX = "SERVER_RUNTIME:"
DEFAULT_CACHE_TTL_SECONDS = 60.0

Modifier = Callable[[Any], Union[Any, Awaitable[Any]]]


class RuntimeConfig:
    """Typed, persisted, cached runtime settings."""

    def __init__(
        self,
        registry: SchemaRegistry,
        store: SettingStore,
        cache: Cache,
        cache_prefix: str = DEFAULT_CACHE_PREFIX,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        """
        Initialize RuntimeConfig.

        Args:
            registry: Declared settings; frozen here, only read afterwards
            store: Persistent store of setting records
            cache: Read-through cache
            cache_prefix: Namespace of setting values in the cache
            cache_ttl: Lifetime of cached values in seconds
        """
        registry.freeze()
        self.registry = registry
        self.store = store
        self.cache = cache
        self.cache_prefix = cache_prefix
        self.cache_ttl = cache_ttl
        self.logger = get_logger().with_category(Category.RUNTIME_CONFIG)

    async def fetch(self, setting_id: str) -> Any:
        """
        Get current value of a setting.

        Args:
            setting_id: Setting id (``module/dotted.key``)

        Returns:
            Current value

        Raises:
            NotFoundError: If the id is not declared
        """
        descriptor = self._descriptor(setting_id)

        cached = await self._load_cache(setting_id)
        if cached is not None:
            return cached

        value = await self._load_db(descriptor)
        await self._set_cache(setting_id, value)
        return value

    async def fetch_all(self, selector: Iterable[str] | Mapping[str, bool]) -> dict[str, Any]:
        """
        Get several values with one database read.

        The cache is bypassed so all values come from the same snapshot.
        Missing records are not created.

        Args:
            selector: Setting ids, or a mapping of id -> True

        Returns:
            Setting id -> value, only for ids that have a record
        """
        if isinstance(selector, Mapping):
            setting_ids = [setting_id for setting_id, wanted in selector.items() if wanted]
        else:
            setting_ids = list(selector)

        if not setting_ids:
            return {}

        records = await asyncio.to_thread(self.store.get_many, list(dict.fromkeys(setting_ids)))
        return {record.id: record.value for record in records}

    async def list(self, module: str | None = None) -> list[ConfigRecord]:
        """
        Get active records.

        Args:
            module: Only records of this module

        Returns:
            Active records ordered by id
        """
        return await asyncio.to_thread(self.store.find_active, module)

    async def set(self, setting_id: str, value: Any) -> ConfigRecord:
        """
        Persist a new value and refresh the cache.

        Args:
            setting_id: Setting id
            value: New value; must match the shape of the declared default

        Returns:
            Stored record

        Raises:
            NotFoundError: If the id is not declared
            ValidationError: If the value shape does not match
        """
        descriptor = self._descriptor(setting_id)
        validate_value(descriptor, value)

        create = descriptor.to_record()
        create.value = value
        record = await asyncio.to_thread(
            self.store.upsert, setting_id, create, {"value": value}
        )

        await self._set_cache(setting_id, record.value)
        self.logger.info(
            f"Runtime config updated: {setting_id}",
            param("setting_id", setting_id),
        )
        return record

    async def update(self, setting_id: str, modifier: Modifier) -> Any:
        """
        Read, modify and write back a value.

        Not atomic: a concurrent write between the read and the write is
        overwritten (last write wins).

        Args:
            setting_id: Setting id
            modifier: Function of the current value; may be async

        Returns:
            The value written
        """
        current = await self.fetch(setting_id)

        updated = modifier(current)
        if inspect.isawaitable(updated):
            updated = await updated

        await self.set(setting_id, updated)
        return updated

    async def invalidate(self, setting_id: str) -> None:
        """Drop the cached value so the next fetch reads the database."""
        await self.cache.delete(self._cache_key(setting_id))

    def _descriptor(self, setting_id: str) -> ConfigDescriptor:
        descriptor = self.registry.get(setting_id)
        if descriptor is None:
            raise NotFoundError(setting_id)
        return descriptor

    async def _load_db(self, descriptor: ConfigDescriptor) -> Any:
        record = await asyncio.to_thread(self.store.get, descriptor.id)
        if record is None:
            record = await asyncio.to_thread(self.store.create, descriptor.to_record())
            self.logger.info(
                f"Runtime config materialized from default: {descriptor.id}",
                param("setting_id", descriptor.id),
            )
        return record.value

    def _cache_key(self, setting_id: str) -> str:
        return f"{self.cache_prefix}{setting_id}"

    async def _load_cache(self, setting_id: str) -> Any:
        return await self.cache.get(self._cache_key(setting_id))

    async def _set_cache(self, setting_id: str, value: Any) -> None:
        if value is None:
            await self.cache.delete(self._cache_key(setting_id))
            return
        await self.cache.set(self._cache_key(setting_id), value, self.cache_ttl)
