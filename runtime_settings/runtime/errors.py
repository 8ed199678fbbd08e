"""Runtime settings exceptions."""


class RuntimeConfigError(Exception):
    """Base class for runtime settings errors."""


class NotFoundError(RuntimeConfigError, KeyError):
    """Setting id is not declared in the schema registry."""

    def __init__(self, setting_id: str) -> None:
        super().__init__(setting_id)
        self.setting_id = setting_id

    def __str__(self) -> str:
        return f"Runtime config {self.setting_id} not found"


class ValidationError(RuntimeConfigError, ValueError):
    """Value does not match the declared type of a setting."""

    def __init__(self, setting_id: str, expected: str, value: object) -> None:
        super().__init__(
            f"Invalid value for runtime config {setting_id}: "
            f"expected {expected}, got {type(value).__name__} ({value!r})"
        )
        self.setting_id = setting_id
        self.expected = expected
        self.value = value


class RegistryFrozenError(RuntimeConfigError):
    """Registration attempted after the registry was frozen."""
