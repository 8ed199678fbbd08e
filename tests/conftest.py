"""
Shared fixtures for runtime settings tests.
"""

import json
import threading
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Any

import pytest

from runtime_settings.domain.config import ConfigRecord
from runtime_settings.logger.logger import init_logger
from runtime_settings.registry.modules import default_declarations
from runtime_settings.registry.schema import SchemaRegistry


class FakeSettingStore:
    """In-memory SettingStore; ``calls`` counts every method call."""

    def __init__(self) -> None:
        self.records: dict[str, ConfigRecord] = {}
        self.calls: Counter[str] = Counter()
        self.fail_on: set[str] = set()
        self._lock = threading.Lock()

    def _track(self, method: str) -> None:
        self.calls[method] += 1
        if method in self.fail_on:
            raise RuntimeError(f"{method} failed")

    def seed(self, *records: ConfigRecord) -> None:
        for record in records:
            self.records[record.id] = replace(record)

    def get(self, setting_id: str) -> ConfigRecord | None:
        self._track("get")
        record = self.records.get(setting_id)
        return replace(record) if record else None

    def get_many(self, setting_ids: list[str]) -> list[ConfigRecord]:
        self._track("get_many")
        return [replace(self.records[i]) for i in setting_ids if i in self.records]

    def create(self, record: ConfigRecord) -> ConfigRecord:
        self._track("create")
        with self._lock:
            if record.id not in self.records:
                self.records[record.id] = replace(record, created_at=datetime.now())
            return replace(self.records[record.id])

    def upsert(
        self, setting_id: str, create: ConfigRecord, update: dict[str, Any]
    ) -> ConfigRecord:
        self._track("upsert")
        with self._lock:
            existing = self.records.get(setting_id)
            if existing is None:
                stored = replace(create, id=setting_id, created_at=datetime.now())
            else:
                stored = replace(existing, **update, updated_at=datetime.now())
            self.records[setting_id] = stored
            return replace(stored)

    def soft_delete_many(self, setting_ids: list[str], deleted_at: datetime) -> int:
        self._track("soft_delete_many")
        count = 0
        with self._lock:
            for setting_id in setting_ids:
                record = self.records.get(setting_id)
                if record is not None and record.is_active():
                    self.records[setting_id] = replace(record, deleted_at=deleted_at)
                    count += 1
        return count

    def find_active_ids(self) -> list[str]:
        self._track("find_active_ids")
        return sorted(i for i, r in self.records.items() if r.is_active())

    def find_active(self, module: str | None = None) -> list[ConfigRecord]:
        self._track("find_active")
        return [
            replace(self.records[i])
            for i in sorted(self.records)
            if self.records[i].is_active()
            and (module is None or self.records[i].module == module)
        ]

    @property
    def write_calls(self) -> int:
        return self.calls["create"] + self.calls["upsert"] + self.calls["soft_delete_many"]

    @property
    def read_calls(self) -> int:
        return (
            self.calls["get"]
            + self.calls["get_many"]
            + self.calls["find_active_ids"]
            + self.calls["find_active"]
        )


class FakeCache:
    """In-memory stand-in for Cache; values are kept JSON-encoded like Redis."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, float | None] = {}
        self.calls: Counter[str] = Counter()
        self.fail_on: set[str] = set()

    def _track(self, method: str) -> None:
        self.calls[method] += 1
        if method in self.fail_on:
            raise ConnectionError(f"{method} failed")

    async def get(self, key: str) -> Any:
        self._track("get")
        raw = self.data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        self._track("set")
        self.data[key] = json.dumps(value)
        self.ttls[key] = ttl
        return True

    async def set_if_absent(self, key: str, value: Any, ttl: float | None = None) -> bool:
        self._track("set_if_absent")
        if key in self.data:
            return False
        self.data[key] = json.dumps(value)
        self.ttls[key] = ttl
        return True

    async def delete(self, key: str) -> bool:
        self._track("delete")
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        self._track("delete_if_equal")
        if self.data.get(key) != json.dumps(value):
            return False
        self.ttls.pop(key, None)
        del self.data[key]
        return True


@pytest.fixture(autouse=True)
def logger():
    """Initialize the global logger without a database writer."""
    return init_logger("runtime-settings-test", "test", writer=None, level="warn")


@pytest.fixture
def store() -> FakeSettingStore:
    return FakeSettingStore()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def registry() -> SchemaRegistry:
    """Frozen registry of the settings shipped with the server."""
    return SchemaRegistry.collect(default_declarations())


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable read by Settings."""
    for name in (
        "ENVIRONMENT",
        "SERVICE_NAME",
        "SERVICE_VERSION",
        "LOG_LEVEL",
        "DEPLOYMENT_TYPE",
        "ENABLE_TELEMETRY",
        "ENABLED_FEATURES",
        "CACHE_HOST",
        "CACHE_PORT",
        "CACHE_DB",
        "CACHE_PASSWORD",
        "RUNTIME_CACHE_PREFIX",
        "RUNTIME_CACHE_TTL_SECONDS",
        "RUNTIME_LOCK_KEY",
        "RUNTIME_LOCK_TTL_SECONDS",
        "DB_HOST",
        "DB_PORT",
        "DB_NAME",
        "DB_USER",
        "DB_PASSWORD",
        "DB_STATEMENT_TIMEOUT_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
