"""Батчинг-запись логов в таблицу logs."""

import asyncio
import contextlib
import json
import sys
import threading
from typing import Any

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as Connection

from runtime_settings.logger.types import LogEntry

LOG_COLUMNS = (
    "timestamp",
    "service_name",
    "instance_id",
    "node_name",
    "environment",
    "level",
    "category",
    "function_name",
    "file_path",
    "line_number",
    "message",
    "error_message",
    "stack_trace",
    "context",
    "duration_ms",
    "ingestion_time",
)

CREATE_LOGS_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS logs (
        timestamp TIMESTAMP NOT NULL,
        service_name TEXT NOT NULL,
        instance_id TEXT NOT NULL,
        node_name TEXT,
        environment TEXT NOT NULL,
        level TEXT NOT NULL,
        category TEXT,
        function_name TEXT,
        file_path TEXT,
        line_number INTEGER,
        message TEXT NOT NULL,
        error_message TEXT,
        stack_trace TEXT,
        context JSONB,
        duration_ms INTEGER,
        ingestion_time TIMESTAMP NOT NULL
    )
"""

INSERT_LOGS_SQL = f"INSERT INTO logs ({', '.join(LOG_COLUMNS)}) VALUES %s"


def _to_row(entry: LogEntry) -> tuple[Any, ...]:
    """LogEntry -> значения в порядке LOG_COLUMNS."""
    return (
        entry.timestamp,
        entry.service_name,
        entry.instance_id,
        entry.node_name,
        entry.environment,
        entry.level.value,
        entry.category.value if entry.category else None,
        entry.function_name,
        entry.file_path,
        entry.line_number,
        entry.message,
        entry.error_message,
        entry.stack_trace,
        json.dumps(entry.context, default=str) if entry.context is not None else None,
        entry.duration_ms,
        entry.ingestion_time,
    )


def _report(problem: str, err: BaseException) -> None:
    print(f"[LOGGER ERROR] {problem}: {err}", file=sys.stderr)


class PostgresWriter:
    """
    Копит записи в памяти и вставляет их одним execute_values.

    Flush происходит при заполнении батча, по таймеру и при close().
    Если PostgreSQL недоступен, записи уходят в stderr как JSON.
    """

    def __init__(
        self,
        dsn: str,
        batch_size: int = 100,
        flush_interval: float = 5.0,
    ) -> None:
        """
        Initialize PostgresWriter.

        Args:
            dsn: PostgreSQL connection string
            batch_size: Записей в одном INSERT
            flush_interval: Секунд между фоновыми flush
        """
        self.dsn = dsn
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.buffer: list[LogEntry] = []
        self._buffer_lock = threading.Lock()
        self._lock = asyncio.Lock()
        self._conn: Connection | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._closed = False

    async def connect(self) -> None:
        """Открывает соединение, создаёт таблицу и запускает фоновый flush."""
        try:
            self._conn = psycopg2.connect(self.dsn)
            self._conn.set_session(autocommit=False)
            with self._conn.cursor() as cursor:
                cursor.execute(CREATE_LOGS_TABLE_SQL)
            self._conn.commit()
        except Exception as e:
            _report("Failed to connect to PostgreSQL", e)
            raise

        self._flush_task = asyncio.create_task(self._background_flush())

    async def write(self, entry: LogEntry) -> None:
        if self._closed:
            return

        async with self._lock:
            if self.append(entry) >= self.batch_size:
                self._drain()

    def append(self, entry: LogEntry) -> int:
        """Добавляет запись из любого потока; возвращает размер буфера."""
        with self._buffer_lock:
            self.buffer.append(entry)
            return len(self.buffer)

    async def flush(self) -> None:
        async with self._lock:
            self._drain()

    def _drain(self) -> None:
        """Сбрасывает буфер; вызывается под self._lock."""
        with self._buffer_lock:
            batch, self.buffer = self.buffer, []
        if not batch:
            return

        if self._conn is None:
            self._to_stderr(batch)
            return

        try:
            with self._conn.cursor() as cursor:
                psycopg2.extras.execute_values(
                    cursor,
                    INSERT_LOGS_SQL,
                    [_to_row(entry) for entry in batch],
                    page_size=self.batch_size,
                )
            self._conn.commit()
        except Exception as e:
            _report("Failed to insert logs into PostgreSQL", e)
            self._conn.rollback()
            self._to_stderr(batch)

    @staticmethod
    def _to_stderr(batch: list[LogEntry]) -> None:
        for entry in batch:
            print(json.dumps(entry.to_json_dict(), default=str), file=sys.stderr)

    async def _background_flush(self) -> None:
        while not self._closed:
            try:
                await asyncio.sleep(self.flush_interval)
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                _report("Background flush failed", e)

    async def close(self) -> None:
        """Останавливает фоновый flush, пишет остаток буфера, закрывает соединение."""
        self._closed = True

        if self._flush_task:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task

        await self.flush()

        if self._conn:
            self._conn.close()
            self._conn = None
