"""Structured logger for the runtime settings service."""

from runtime_settings.logger.logger import Logger, get_logger, init_logger
from runtime_settings.logger.postgres_writer import PostgresWriter
from runtime_settings.logger.types import Category, Field, Level, LogEntry

__all__ = [
    "Logger",
    "get_logger",
    "init_logger",
    "PostgresWriter",
    "Category",
    "Level",
    "LogEntry",
    "Field",
]
