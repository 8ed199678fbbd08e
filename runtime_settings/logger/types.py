"""Типы записей структурированного лога."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Level(str, Enum):
    """Уровень важности записи, по возрастанию."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"  # recoverable
    FATAL = "fatal"  # process exits

    @property
    def rank(self) -> int:
        return list(Level).index(self)


class Category(str, Enum):
    """Подсистема, к которой относится запись."""

    RUNTIME_CONFIG = "runtime_config"  # fetch/set/update
    REGISTRY = "registry"
    BOOTSTRAP = "bootstrap"  # startup reconciliation
    DATABASE = "database"
    CACHE = "cache"  # Redis cache and lock


@dataclass
class LogEntry:
    """Одна строка таблицы logs."""

    timestamp: datetime
    service_name: str
    instance_id: str
    environment: str
    level: Level
    message: str
    ingestion_time: datetime = field(default_factory=datetime.utcnow)
    node_name: str | None = None
    category: Category | None = None
    function_name: str | None = None
    file_path: str | None = None
    line_number: int | None = None
    error_message: str | None = None
    stack_trace: str | None = None
    context: dict[str, Any] | None = None
    duration_ms: int | None = None

    def format_line(self) -> str:
        """Однострочное представление для stdout."""
        category_name = self.category.value if self.category else "-"
        line = f"[{self.level.value}] {category_name}: {self.message}"
        if self.context:
            line += f" {self.context}"
        if self.error_message:
            line += f" error={self.error_message}"
        return line

    def to_json_dict(self) -> dict[str, Any]:
        """Сокращённая запись для stderr, когда PostgreSQL недоступен."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "category": self.category.value if self.category else None,
            "message": self.message,
            "service_name": self.service_name,
            "environment": self.environment,
        }
        if self.error_message:
            data["error"] = self.error_message
        if self.context:
            data["context"] = self.context
        return data


@dataclass
class Field:
    """Пара ключ/значение для context записи."""

    key: str
    value: Any


def category(cat: Category) -> Field:
    """Переопределяет категорию logger для одной записи."""
    return Field(key="_category", value=cat)


def param(key: str, value: Any) -> Field:
    return Field(key=key, value=value)


def duration_ms(value: int) -> Field:
    """Длительность операции, пишется в отдельную колонку."""
    return Field(key="duration_ms", value=value)
