"""
Conference cleanup configuration.

Resolved fresh on every read: kill switch env var, then the settings store
entry, then the CONFERENCE_* environment variables, then defaults.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from conference_cleanup.settings.store import SettingsStore
from conference_cleanup.shared.logging import get_logger

logger = get_logger(__name__)

CONFIG_SETTING_KEY = "conference_cleanup_config"

DEFAULT_STALE_TIMEOUT_MINUTES = 30
DEFAULT_MAX_CONFERENCE_DURATION_HOURS = 4
DEFAULT_CLEANUP_INTERVAL_MINUTES = 15
DEFAULT_METRICS_INTERVAL_MINUTES = 60
DEFAULT_COST_THRESHOLD_USD = 10.0


class CleanupEnvSettings(BaseSettings):
    """CONFERENCE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONFERENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    cleanup_enabled: str | None = None
    stale_timeout: str | None = None
    max_duration: str | None = None

    @property
    def kill_switch(self) -> bool:
        """CONFERENCE_CLEANUP_ENABLED=false|0 disables cleanup regardless of the store."""
        return (self.cleanup_enabled or "").strip().lower() in {"false", "0"}

    @property
    def enabled(self) -> bool:
        return (self.cleanup_enabled or "").strip().lower() != "false"

    @staticmethod
    def _positive_int(value: str | None) -> int | None:
        try:
            parsed = int((value or "").strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None

    @property
    def stale_timeout_minutes(self) -> int | None:
        return self._positive_int(self.stale_timeout)

    @property
    def max_duration_hours(self) -> int | None:
        return self._positive_int(self.max_duration)


class CleanupConfig(BaseModel):
    """Effective cleanup configuration.

    Field aliases match the camelCase JSON the admin UI stores.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    enabled: bool = True
    stale_timeout_minutes: int = Field(
        default=DEFAULT_STALE_TIMEOUT_MINUTES, alias="staleTimeoutMinutes", ge=1
    )
    max_conference_duration_hours: float = Field(
        default=DEFAULT_MAX_CONFERENCE_DURATION_HOURS, alias="maxConferenceDurationHours", gt=0
    )
    cleanup_interval_minutes: int = Field(
        default=DEFAULT_CLEANUP_INTERVAL_MINUTES, alias="cleanupIntervalMinutes", ge=1, le=1440
    )
    metrics_interval_minutes: int = Field(
        default=DEFAULT_METRICS_INTERVAL_MINUTES, alias="metricsIntervalMinutes", ge=1, le=1440
    )
    cost_threshold_usd: float = Field(
        default=DEFAULT_COST_THRESHOLD_USD, alias="costThresholdUSD", ge=0
    )
    notify_on_cleanup: bool = Field(default=False, alias="notifyOnCleanup")

    @property
    def stale_timeout_seconds(self) -> float:
        return self.stale_timeout_minutes * 60.0

    @property
    def max_conference_duration_seconds(self) -> float:
        return self.max_conference_duration_hours * 3600.0

    def to_setting(self) -> dict[str, Any]:
        """Serialize in the stored (camelCase) form."""
        return self.model_dump(by_alias=True)


class CleanupConfigProvider:
    """Resolves the merged cleanup configuration."""

    def __init__(
        self,
        settings_store: SettingsStore | None = None,
        setting_key: str = CONFIG_SETTING_KEY,
    ) -> None:
        self._settings_store = settings_store
        self._setting_key = setting_key

    async def get_config(self) -> CleanupConfig:
        env = CleanupEnvSettings()
        if env.kill_switch:
            return CleanupConfig(enabled=False)

        stored = await self._load_stored()
        if stored is not None:
            data = dict(stored)
            data["enabled"] = data.get("enabled") is not False
            # Explicit nulls in the stored JSON mean "use the default"
            data = {k: v for k, v in data.items() if v is not None}
            try:
                return CleanupConfig.model_validate(data)
            except ValidationError:
                logger.exception(
                    "Invalid stored conference cleanup config; using environment",
                    extra={"setting_key": self._setting_key},
                )

        return CleanupConfig(
            enabled=env.enabled,
            stale_timeout_minutes=env.stale_timeout_minutes or DEFAULT_STALE_TIMEOUT_MINUTES,
            max_conference_duration_hours=env.max_duration_hours or DEFAULT_MAX_CONFERENCE_DURATION_HOURS,
        )

    async def save_config(self, config: CleanupConfig) -> None:
        """Persist `config` under the settings key, in its stored camelCase form."""
        if self._settings_store is None:
            raise RuntimeError("No settings store configured for conference cleanup")
        await self._settings_store.set_setting(
            self._setting_key,
            config.to_setting(),
        )
        logger.info(
            "Conference cleanup config saved",
            extra={"setting_key": self._setting_key},
        )

    async def _load_stored(self) -> dict[str, Any] | None:
        if self._settings_store is None:
            return None
        try:
            value = await self._settings_store.get_setting(self._setting_key)
        except Exception:
            logger.exception(
                "Failed to read conference cleanup config from settings store",
                extra={"setting_key": self._setting_key},
            )
            return None
        if not value:
            return None
        if not isinstance(value, dict):
            logger.warning(
                "Ignoring non-object conference cleanup config",
                extra={"setting_key": self._setting_key, "value_type": type(value).__name__},
            )
            return None
        return value
