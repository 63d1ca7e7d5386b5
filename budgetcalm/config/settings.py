"""
Configuration Management for BudgetCalm

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Only infrastructure configuration lives here (paths,
sync cadence, logging). Values the user edits at runtime (currency,
sync token, last sync date) belong to the preferences collaborator.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Local document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETCALM_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path.home() / ".budgetcalm",
        description="Directory holding the local database and preferences"
    )
    database_name: str = Field(
        default="localdb_budgetscalm_v0",
        min_length=1,
        description="File name (without extension) of the local database"
    )
    preferences_file: str = Field(
        default="settings.json",
        description="File name of the user preferences store"
    )

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @property
    def database_path(self) -> Path:
        """Full path of the sqlite file."""
        return self.data_dir / f"{self.database_name}.sqlite3"

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / self.preferences_file


class SyncSettings(BaseSettings):
    """Replication cadence and retry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETCALM_SYNC_",
        extra="ignore"
    )

    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a live replication idles before polling the remote"
    )
    retry_min_seconds: float = Field(
        default=1.0,
        gt=0,
        description="First backoff delay after a transport failure"
    )
    retry_max_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound of the backoff delay"
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum documents moved per push or pull round"
    )
    remote_timeout_ms: int = Field(
        default=5000,
        ge=100,
        description="Server selection timeout for the remote endpoint"
    )
    remote_database: str = Field(
        default="budgetscalm",
        description="Remote database used when the sync token names none"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUDGETCALM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    log_level: str = Field(
        default="INFO",
        description="Minimum level of emitted log events"
    )
    json_logs: bool = Field(
        default=True,
        description="Render log events as JSON (False renders for a console)"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry describing each failure.
    """
    results = {}
    settings = get_settings()

    for name in ("storage", "sync", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
