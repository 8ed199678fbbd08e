"""Структурированный logger сервиса runtime settings."""

import asyncio
import inspect
import os
import sys
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from types import FrameType
from typing import Any

from runtime_settings.logger.postgres_writer import PostgresWriter
from runtime_settings.logger.types import Category, Field, Level, LogEntry

_PACKAGE_DIR = "runtime_settings"


class Logger:
    """
    Logger со структурированными полями.

    Записи уходят в PostgresWriter, а без writer печатаются в stdout одной
    строкой. Экземпляры неизменяемы: with_category/with_fields возвращают копию.
    """

    def __init__(
        self,
        service_name: str,
        environment: str,
        writer: PostgresWriter | None = None,
        min_level: Level = Level.DEBUG,
    ) -> None:
        """
        Initialize Logger.

        Args:
            service_name: Имя сервиса в записях
            environment: dev, stage, prod
            writer: Батчинг-запись в таблицу logs (None = stdout)
            min_level: Записи ниже этого уровня отбрасываются
        """
        self.service_name = service_name
        self.environment = environment
        self.writer = writer
        self.min_level = min_level
        self.instance_id = os.getenv("HOSTNAME") or os.getenv("CONTAINER_ID") or str(uuid.uuid4())
        self.node_name = os.getenv("NODE_NAME")

        self._fields: dict[str, Any] = {}
        self._category: Category | None = None

    def trace(self, msg: str, *fields: Field) -> None:
        self._log(Level.TRACE, msg, None, fields)

    def debug(self, msg: str, *fields: Field) -> None:
        self._log(Level.DEBUG, msg, None, fields)

    def info(self, msg: str, *fields: Field) -> None:
        self._log(Level.INFO, msg, None, fields)

    def warn(self, msg: str, *fields: Field) -> None:
        self._log(Level.WARN, msg, None, fields)

    def error(self, msg: str, err: BaseException | None = None, *fields: Field) -> None:
        """Ошибка, после которой сервис продолжает работу."""
        self._log(Level.ERROR, msg, err, fields)

    def fatal(self, msg: str, err: BaseException | None = None, *fields: Field) -> None:
        """Фатальная ошибка: запись и выход из процесса."""
        self._log(Level.FATAL, msg, err, fields)
        raise SystemExit(1)

    def with_category(self, category: Category) -> "Logger":
        """Копия logger с категорией по умолчанию."""
        return self._copy(category=category)

    def with_fields(self, *fields: Field) -> "Logger":
        """Копия logger с полями, добавляемыми в context каждой записи."""
        return self._copy(fields={**self._fields, **{f.key: f.value for f in fields}})

    def _log(
        self,
        level: Level,
        msg: str,
        err: BaseException | None,
        fields: tuple[Field, ...],
    ) -> None:
        if level.rank < self.min_level.rank:
            return

        # _log <- info/error/... <- caller
        frame = inspect.currentframe()
        caller = frame.f_back.f_back if frame and frame.f_back else None

        entry = self._build_entry(level, msg, err, fields, caller)
        self._emit(entry)

    def _build_entry(
        self,
        level: Level,
        msg: str,
        err: BaseException | None,
        fields: tuple[Field, ...],
        caller: FrameType | None,
    ) -> LogEntry:
        category = self._category
        context = dict(self._fields)
        for field in fields:
            if field.key == "_category":
                category = field.value
            else:
                context[field.key] = field.value

        duration = context.pop("duration_ms", None)

        entry = LogEntry(
            timestamp=datetime.utcnow(),
            service_name=self.service_name,
            instance_id=self.instance_id,
            node_name=self.node_name,
            environment=self.environment,
            level=level,
            category=category,
            message=msg,
            context=context or None,
            duration_ms=int(duration) if duration is not None else None,
        )

        if caller is not None:
            entry.function_name = caller.f_code.co_name
            entry.file_path = self._clean_file_path(caller.f_code.co_filename)
            entry.line_number = caller.f_lineno

        if err is not None:
            entry.error_message = str(err)
            if level in (Level.ERROR, Level.FATAL):
                entry.stack_trace = "".join(traceback.format_exception(err))

        return entry

    def _emit(self, entry: LogEntry) -> None:
        if self.writer is None:
            print(entry.format_line(), file=sys.stdout)
            return

        try:
            asyncio.get_running_loop().create_task(self.writer.write(entry))
        except RuntimeError:
            # Worker thread (asyncio.to_thread) или нет event loop
            self.writer.append(entry)

    def _copy(
        self,
        category: Category | None = None,
        fields: dict[str, Any] | None = None,
    ) -> "Logger":
        clone = Logger(self.service_name, self.environment, self.writer, self.min_level)
        clone.instance_id = self.instance_id
        clone.node_name = self.node_name
        clone._category = category or self._category
        clone._fields = dict(self._fields if fields is None else fields)
        return clone

    @staticmethod
    def _clean_file_path(file_path: str) -> str:
        """Путь относительно пакета runtime_settings, иначе имя файла."""
        parts = Path(file_path).parts
        if _PACKAGE_DIR in parts:
            return str(Path(*parts[parts.index(_PACKAGE_DIR):]))
        return Path(file_path).name


_global_logger: Logger | None = None


def get_logger() -> Logger:
    """Глобальный logger; init_logger() должен быть вызван раньше."""
    if _global_logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _global_logger


def init_logger(
    service_name: str,
    environment: str,
    writer: PostgresWriter | None = None,
    level: str | Level = Level.DEBUG,
) -> Logger:
    """
    Создаёт глобальный logger.

    Args:
        service_name: Имя сервиса
        environment: Окружение (dev, stage, prod)
        writer: PostgresWriter или None для вывода в stdout
        level: Минимальный уровень, например "info"

    Returns:
        Logger instance
    """
    global _global_logger
    _global_logger = Logger(service_name, environment, writer, Level(level))
    return _global_logger
