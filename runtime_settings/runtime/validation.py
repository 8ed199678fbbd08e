"""Shape check of runtime setting values against their declared default."""

from typing import Any

from runtime_settings.domain.config import ConfigDescriptor
from runtime_settings.runtime.errors import ValidationError


def _expected_type(default: Any) -> tuple[str, tuple[type, ...]] | None:
    # bool before int: bool is a subclass of int
    if default is None:
        return None
    if isinstance(default, bool):
        return "bool", (bool,)
    if isinstance(default, int):
        return "int", (int,)
    if isinstance(default, float):
        return "float", (int, float)
    if isinstance(default, str):
        return "str", (str,)
    if isinstance(default, list):
        return "list", (list,)
    if isinstance(default, dict):
        return "dict", (dict,)
    return type(default).__name__, (type(default),)


def validate_value(descriptor: ConfigDescriptor, value: Any) -> None:
    """
    Check that ``value`` has the same shape as the descriptor's default.

    A ``None`` default accepts any value. Numbers never accept ``bool``.

    Raises:
        ValidationError: If the value does not match
    """
    expected = _expected_type(descriptor.default)
    if expected is None:
        return

    name, types = expected
    if isinstance(value, bool) and name != "bool":
        raise ValidationError(descriptor.id, name, value)
    if not isinstance(value, types):
        raise ValidationError(descriptor.id, name, value)
