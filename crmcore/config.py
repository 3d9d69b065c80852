from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environments."""

    DEVELOPMENT = "dev"
    STAGING = "staging"
    PRODUCTION = "prod"


class DataBackend(str, Enum):
    """Backend data service implementations."""

    SQL = "sql"
    REST = "rest"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Current environment (dev, staging, or prod)",
    )
    data_backend: DataBackend = Field(
        default=DataBackend.SQL,
        description="Which backend data service to talk to (sql or rest)",
    )
    session_refresh_margin_seconds: int = Field(
        default=60,
        ge=0,
        description="Refresh the access token when it expires within this many seconds",
    )
    session_storage_path: str | None = Field(
        default=None,
        description="JSON file used to persist the session between runs (in-memory if unset)",
    )


_app_settings: AppSettings | None = None


def get_app_settings() -> AppSettings:
    global _app_settings
    if _app_settings is None:
        _app_settings = AppSettings()
    return _app_settings


def set_app_settings(settings: AppSettings) -> None:
    """Replace the global app settings (useful for testing)."""
    global _app_settings
    _app_settings = settings
