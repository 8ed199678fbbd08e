"""Runtime setting repository for PostgreSQL."""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from psycopg2.extras import Json

from runtime_settings.database.postgres import PostgresClient
from runtime_settings.domain.config import ConfigRecord
from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param

_COLUMNS = "id, module, key, value, description, deleted_at, created_at, updated_at"

# Columns a caller may overwrite on upsert conflict
_UPDATABLE_COLUMNS = ("module", "key", "value", "description", "deleted_at")


class RuntimeSettingRepository:
    """Repository for ConfigRecord CRUD operations in PostgreSQL.

    Records are never hard-deleted: removal sets ``deleted_at`` so the stored
    value survives until the setting is declared again.
    """

    TABLE_NAME = "app_runtime_settings"

    def __init__(self, postgres_client: PostgresClient) -> None:
        """
        Initialize RuntimeSettingRepository.

        Args:
            postgres_client: PostgreSQL client instance
        """
        self.postgres = postgres_client
        self.logger = get_logger().with_category(Category.DATABASE)

    def get(self, setting_id: str) -> ConfigRecord | None:
        """
        Get record by id, including soft-deleted ones.

        Args:
            setting_id: Setting id (``module/dotted.key``)

        Returns:
            ConfigRecord or None if not found
        """
        row = self.postgres.fetch_one(
            f"SELECT {_COLUMNS} FROM {self.TABLE_NAME} WHERE id = %s",
            (setting_id,),
        )
        return self._row_to_record(row) if row else None

    def get_many(self, setting_ids: Iterable[str]) -> list[ConfigRecord]:
        """
        Get all existing records for the given ids in one query.

        Args:
            setting_ids: Setting ids

        Returns:
            Records found; ids without a record are simply absent
        """
        ids = list(setting_ids)
        if not ids:
            return []

        rows = self.postgres.fetch_all(
            f"SELECT {_COLUMNS} FROM {self.TABLE_NAME} WHERE id = ANY(%s)",
            (ids,),
        )
        return [self._row_to_record(row) for row in rows]

    def create(self, record: ConfigRecord) -> ConfigRecord:
        """
        Insert a new record.

        If another process inserted the same id first, the existing row is
        returned unchanged.

        Args:
            record: Record to insert

        Returns:
            The stored record
        """
        try:
            with self.postgres.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self.TABLE_NAME} (
                        id, module, key, value, description, deleted_at
                    ) VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING {_COLUMNS}
                    """,
                    (
                        record.id,
                        record.module,
                        record.key,
                        Json(record.value),
                        record.description,
                        record.deleted_at,
                    ),
                )
                row = cur.fetchone()
                created = row is not None

                if row is None:
                    cur.execute(
                        f"SELECT {_COLUMNS} FROM {self.TABLE_NAME} WHERE id = %s",
                        (record.id,),
                    )
                    row = cur.fetchone()

        except Exception as e:
            self.logger.error(
                f"Failed to create runtime setting {record.id}",
                e,
                param("setting_id", record.id),
            )
            raise

        if created:
            self.logger.info(
                f"Runtime setting created: {record.id}",
                param("setting_id", record.id),
                param("module", record.module),
            )
        return self._row_to_record(row)

    def upsert(
        self,
        setting_id: str,
        create: ConfigRecord,
        update: Mapping[str, Any],
    ) -> ConfigRecord:
        """
        Insert ``create`` or, if ``setting_id`` exists, overwrite ``update`` columns.

        Uses PostgreSQL ON CONFLICT DO UPDATE for idempotent writes.

        Args:
            setting_id: Setting id
            create: Full record used when no row exists
            update: Column -> value applied when the row exists

        Returns:
            The stored record
        """
        unknown = set(update) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not update:
            raise ValueError("upsert requires at least one column to update")

        assignments = ", ".join(f"{column} = %s" for column in update)
        update_params = tuple(
            Json(value) if column == "value" else value
            for column, value in update.items()
        )

        try:
            row = self.postgres.fetch_one(
                f"""
                INSERT INTO {self.TABLE_NAME} (
                    id, module, key, value, description, deleted_at
                ) VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    {assignments},
                    updated_at = NOW()
                RETURNING {_COLUMNS}
                """,
                (
                    setting_id,
                    create.module,
                    create.key,
                    Json(create.value),
                    create.description,
                    create.deleted_at,
                    *update_params,
                ),
            )
        except Exception as e:
            self.logger.error(
                f"Failed to upsert runtime setting {setting_id}",
                e,
                param("setting_id", setting_id),
            )
            raise

        self.logger.debug(
            f"Runtime setting upserted: {setting_id}",
            param("setting_id", setting_id),
            param("columns", list(update)),
        )
        return self._row_to_record(row)

    def soft_delete_many(self, setting_ids: Iterable[str], deleted_at: datetime) -> int:
        """
        Mark active records as deleted in one statement.

        Args:
            setting_ids: Setting ids to soft-delete
            deleted_at: Deletion timestamp

        Returns:
            Number of records marked deleted
        """
        ids = list(setting_ids)
        if not ids:
            return 0

        try:
            count = self.postgres.execute(
                f"""
                UPDATE {self.TABLE_NAME}
                SET deleted_at = %s, updated_at = NOW()
                WHERE id = ANY(%s) AND deleted_at IS NULL
                """,
                (deleted_at, ids),
            )
        except Exception as e:
            self.logger.error(
                "Failed to soft-delete runtime settings",
                e,
                param("setting_ids", ids),
            )
            raise

        self.logger.info(
            "Runtime settings soft-deleted",
            param("setting_ids", ids),
            param("count", count),
        )
        return count

    def find_active_ids(self) -> list[str]:
        """Get ids of all records that are not soft-deleted."""
        rows = self.postgres.fetch_all(
            f"SELECT id FROM {self.TABLE_NAME} WHERE deleted_at IS NULL ORDER BY id"
        )
        return [row["id"] for row in rows]

    def find_active(self, module: str | None = None) -> list[ConfigRecord]:
        """
        Get active records, optionally restricted to one module.

        Args:
            module: Module name filter

        Returns:
            List of ConfigRecord ordered by id
        """
        if module:
            rows = self.postgres.fetch_all(
                f"""
                SELECT {_COLUMNS} FROM {self.TABLE_NAME}
                WHERE deleted_at IS NULL AND module = %s
                ORDER BY id
                """,
                (module,),
            )
        else:
            rows = self.postgres.fetch_all(
                f"""
                SELECT {_COLUMNS} FROM {self.TABLE_NAME}
                WHERE deleted_at IS NULL
                ORDER BY id
                """
            )
        return [self._row_to_record(row) for row in rows]

    def ensure_table_exists(self) -> bool:
        """
        Create the runtime settings table if missing.

        Returns:
            True if table exists or was created
        """
        try:
            self.postgres.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                    id TEXT PRIMARY KEY,
                    module TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value JSONB,
                    description TEXT,
                    deleted_at TIMESTAMPTZ,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            self.postgres.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.TABLE_NAME}_module "
                f"ON {self.TABLE_NAME} (module)"
            )
            return True

        except Exception as e:
            self.logger.error(f"Failed to ensure {self.TABLE_NAME} table exists", e)
            return False

    def _row_to_record(self, row: dict[str, Any]) -> ConfigRecord:
        """Convert database row to ConfigRecord."""
        return ConfigRecord(
            id=row["id"],
            module=row["module"],
            key=row["key"],
            value=row["value"],
            description=row["description"],
            deleted_at=row["deleted_at"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
