"""Persistent store interface for runtime setting records."""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from runtime_settings.domain.config import ConfigRecord


class SettingStore(Protocol):
    """Durable, id-addressed storage of runtime setting records.

    Implementations are blocking; async callers run them in a worker thread.
    """

    def get(self, setting_id: str) -> ConfigRecord | None: ...

    def get_many(self, setting_ids: Iterable[str]) -> list[ConfigRecord]: ...

    def create(self, record: ConfigRecord) -> ConfigRecord: ...

    def upsert(
        self,
        setting_id: str,
        create: ConfigRecord,
        update: Mapping[str, Any],
    ) -> ConfigRecord: ...

    def soft_delete_many(self, setting_ids: Iterable[str], deleted_at: datetime) -> int: ...

    def find_active_ids(self) -> list[str]: ...

    def find_active(self, module: str | None = None) -> list[ConfigRecord]: ...
