"""Runtime configuration domain models."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union


@dataclass(frozen=True)
class Leaf:
    """Single declared setting: documentation plus default value."""

    description: str
    default: Any = None


@dataclass(frozen=True)
class Branch:
    """Nested group of settings, flattened into dotted keys on registration."""

    children: Mapping[str, "Node"] = field(default_factory=dict)


Node = Union[Leaf, Branch]


@dataclass(frozen=True)
class ModuleDeclaration:
    """All runtime settings declared by one server module."""

    module: str
    tree: Branch


@dataclass(frozen=True)
class ConfigDescriptor:
    """
    Compiled-in declaration of a runtime setting.

    Immutable after registration. ``id`` has the form ``module/dotted.key``.
    """

    id: str
    module: str
    key: str
    description: str
    default: Any = None

    def to_record(self) -> "ConfigRecord":
        """Build a fresh active record holding the default value."""
        return ConfigRecord(
            id=self.id,
            module=self.module,
            key=self.key,
            value=self.default,
            description=self.description,
        )


@dataclass
class ConfigRecord:
    """
    Persisted state of a runtime setting.

    A record with ``deleted_at`` set is soft-deleted: its value is kept so a
    later registration of the same id can restore it.
    """

    id: str
    module: str
    key: str
    value: Any
    description: str | None = None
    deleted_at: datetime | None = None
    created_at: datetime | None = None  # Set by database
    updated_at: datetime | None = None  # Set by database

    def is_active(self) -> bool:
        """Check if record is not soft-deleted."""
        return self.deleted_at is None
