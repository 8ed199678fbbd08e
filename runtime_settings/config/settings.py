"""Settings module for the runtime settings service."""

import os

from runtime_settings.database.postgres import PostgresConfig


def _read_secret(secret_path: str, env_var: str) -> str | None:
    """Read a value from a Docker secret file, falling back to environment."""
    try:
        with open(secret_path) as f:
            return f.read().strip()
    except FileNotFoundError:
        return os.getenv(env_var)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class RedisConfig:
    """Redis (cache) configuration."""

    def __init__(self) -> None:
        self.host = os.getenv("CACHE_HOST", "localhost")
        self.port = int(os.getenv("CACHE_PORT", "6379"))
        self.db = int(os.getenv("CACHE_DB", "0"))
        self.password = _read_secret("/run/secrets/redis_password", "CACHE_PASSWORD")


class RuntimeSettingsConfig:
    """Runtime settings cache and reconciliation lock tuning."""

    def __init__(self) -> None:
        self.cache_prefix = os.getenv("RUNTIME_CACHE_PREFIX", "SERVER_RUNTIME:")
        self.cache_ttl_seconds = float(os.getenv("RUNTIME_CACHE_TTL_SECONDS", "60"))
        self.lock_key = os.getenv("RUNTIME_LOCK_KEY", "runtime:upgrade")
        self.lock_ttl_seconds = float(os.getenv("RUNTIME_LOCK_TTL_SECONDS", "600"))


class Settings:
    """Application settings."""

    def __init__(self) -> None:
        # Service info
        self.environment = os.getenv("ENVIRONMENT", "dev")
        self.service_name = os.getenv("SERVICE_NAME", "runtime-settings")
        self.service_version = os.getenv("SERVICE_VERSION", "0.1.0")
        self.log_level = os.getenv("LOG_LEVEL", "debug")

        # Server identity, exposed read-only to clients
        self.deployment_type = os.getenv("DEPLOYMENT_TYPE", "selfhosted")
        self.enable_telemetry = _env_bool("ENABLE_TELEMETRY", True)
        self.enabled_features: list[str] = [
            feature.strip()
            for feature in os.getenv("ENABLED_FEATURES", "").split(",")
            if feature.strip()
        ]

        self.postgres = PostgresConfig()
        self.redis = RedisConfig()
        self.runtime = RuntimeSettingsConfig()
