"""Read-only server identity and credential limits exposed to clients."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param
from runtime_settings.runtime.service import RuntimeConfig

if TYPE_CHECKING:
    from runtime_settings.config.settings import Settings

PASSWORD_MIN_ID = "auth/password.min"
PASSWORD_MAX_ID = "auth/password.max"


class ServerFeature(str, Enum):
    """Optional server features."""

    COPILOT = "copilot"
    PAYMENT = "payment"
    OAUTH = "oauth"


@dataclass
class PasswordLimits:
    min_length: int
    max_length: int


@dataclass
class ServerConfig:
    """Snapshot of server identity."""

    name: str
    version: str
    type: str
    flavor: str  # Deprecated: same as type
    features: list[ServerFeature] = field(default_factory=list)
    enable_telemetry: bool = True


class ServerConfigResolver:
    """Builds the public server config from settings and runtime config."""

    def __init__(self, settings: "Settings", runtime: RuntimeConfig) -> None:
        self.settings = settings
        self.runtime = runtime
        self.logger = get_logger().with_category(Category.RUNTIME_CONFIG)

    def enabled_features(self) -> list[ServerFeature]:
        features = []
        for name in self.settings.enabled_features:
            try:
                features.append(ServerFeature(name))
            except ValueError:
                self.logger.warn("Unknown server feature ignored", param("feature", name))
        return features

    def server_config(self) -> ServerConfig:
        return ServerConfig(
            name=self.settings.service_name,
            version=self.settings.service_version,
            type=self.settings.deployment_type,
            flavor=self.settings.deployment_type,
            features=self.enabled_features(),
            enable_telemetry=self.settings.enable_telemetry,
        )

    async def credentials_requirement(self) -> PasswordLimits:
        """Password length limits, read in one snapshot."""
        values = await self.runtime.fetch_all({PASSWORD_MIN_ID: True, PASSWORD_MAX_ID: True})

        # Not reconciled yet: fall back to fetch, which creates the record
        for setting_id in (PASSWORD_MIN_ID, PASSWORD_MAX_ID):
            if setting_id not in values:
                values[setting_id] = await self.runtime.fetch(setting_id)

        return PasswordLimits(
            min_length=values[PASSWORD_MIN_ID],
            max_length=values[PASSWORD_MAX_ID],
        )
