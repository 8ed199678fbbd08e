"""Startup reconciliation of declared settings with persisted records."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from runtime_settings.cache.lock import LockBackend, LockUnavailableError, distributed_lock
from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, duration_ms, param
from runtime_settings.registry.schema import SchemaRegistry
from runtime_settings.repository.base import SettingStore

DEFAULT_LOCK_KEY = "runtime:upgrade"
DEFAULT_LOCK_TTL_SECONDS = 10 * 60

SKIPPED_UP_TO_DATE = "up_to_date"
SKIPPED_LOCK_HELD = "lock_held"
SKIPPED_LOCK_UNAVAILABLE = "lock_unavailable"


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation run."""

    new_ids: list[str] = field(default_factory=list)
    stale_ids: list[str] = field(default_factory=list)
    applied: bool = False
    skipped: str | None = None  # up_to_date, lock_held, lock_unavailable
    error: str | None = None

    @property
    def has_changes(self) -> bool:
        return bool(self.new_ids or self.stale_ids)


class BootstrapReconciler:
    """
    Aligns persisted records with the declared settings once per process start.

    New ids are created (or restored if soft-deleted), ids no longer declared
    are soft-deleted. Only the process holding the distributed lock applies
    the diff; any leftover drift is picked up on a later start.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: SettingStore,
        lock_backend: LockBackend,
        lock_key: str = DEFAULT_LOCK_KEY,
        lock_ttl: float = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        """
        Initialize BootstrapReconciler.

        Args:
            registry: Declared settings; frozen here
            store: Persistent store of setting records
            lock_backend: Cache providing set_if_absent/delete_if_equal
            lock_key: Well-known lock key shared by all processes
            lock_ttl: Lock lifetime in seconds, bounds recovery after a crash
        """
        registry.freeze()
        self.registry = registry
        self.store = store
        self.lock_backend = lock_backend
        self.lock_key = lock_key
        self.lock_ttl = lock_ttl
        self.logger = get_logger().with_category(Category.BOOTSTRAP)

    async def run(self) -> ReconcileResult:
        """
        Compute the diff and apply it if this process wins the lock.

        Errors while applying and an unreachable lock backend are logged and
        reported in the result, never raised, so startup can continue.

        Returns:
            ReconcileResult
        """
        active = set(await asyncio.to_thread(self.store.find_active_ids))
        declared = self.registry.ids()

        result = ReconcileResult(
            new_ids=sorted(declared - active),
            stale_ids=sorted(active - declared),
        )

        if not result.has_changes:
            result.skipped = SKIPPED_UP_TO_DATE
            self.logger.debug("Runtime config is up to date")
            return result

        self.logger.info(
            "Found runtime config changes, upgrading...",
            param("new", len(result.new_ids)),
            param("stale", len(result.stale_ids)),
        )

        try:
            async with distributed_lock(
                self.lock_backend, self.lock_key, self.lock_ttl
            ) as acquired:
                if not acquired:
                    result.skipped = SKIPPED_LOCK_HELD
                    self.logger.info(
                        "Runtime config upgrade is running in another process, skipping",
                        param("lock_key", self.lock_key),
                    )
                    return result

                started = datetime.now(timezone.utc)
                try:
                    await self._apply(result.new_ids, result.stale_ids)
                except Exception as e:
                    result.error = str(e)
                    self.logger.error(
                        "Runtime config upgrade failed",
                        e,
                        param("new_ids", result.new_ids),
                        param("stale_ids", result.stale_ids),
                    )
                    return result
        except LockUnavailableError as e:
            result.skipped = SKIPPED_LOCK_UNAVAILABLE
            self.logger.warn(
                "Lock backend unavailable, runtime config upgrade skipped",
                param("lock_key", self.lock_key),
                param("error", str(e)),
            )
            return result

        result.applied = True
        elapsed = datetime.now(timezone.utc) - started
        self.logger.info(
            "Upgrade completed",
            param("created_or_restored", result.new_ids),
            param("soft_deleted", result.stale_ids),
            duration_ms(int(elapsed.total_seconds() * 1000)),
        )
        return result

    async def _apply(self, new_ids: list[str], stale_ids: list[str]) -> None:
        for setting_id in new_ids:
            descriptor = self.registry.get(setting_id)
            if descriptor is None:
                continue

            # A soft-deleted record is restored with the current default
            await asyncio.to_thread(
                self.store.upsert,
                setting_id,
                descriptor.to_record(),
                {
                    "module": descriptor.module,
                    "key": descriptor.key,
                    "description": descriptor.description,
                    "value": descriptor.default,
                    "deleted_at": None,
                },
            )

        if stale_ids:
            await asyncio.to_thread(
                self.store.soft_delete_many, stale_ids, datetime.now(timezone.utc)
            )
