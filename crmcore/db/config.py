"""
Configuration management for the backend data service.

Covers both the direct SQL connection and the PostgREST endpoint.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from crmcore.utils.logger import logger


class DatabaseSettings(BaseSettings):
    """Database configuration using Pydantic settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False, extra="ignore", env_prefix="DB_"
    )

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="crm", description="Database name")
    username: str = Field(default="crm", description="Database username")
    password: str = Field(default="", description="Database user password")
    url: str | None = Field(
        default=None,
        description="Full async SQLAlchemy URL; overrides host/port/name when set",
    )

    # Connection pool settings
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    echo: bool = Field(default=False, description="Echo SQL statements to logs")

    # PostgREST data API
    rest_url: str | None = Field(
        default=None, description="Base URL of the PostgREST data API"
    )
    rest_api_key: str | None = Field(
        default=None, description="API key sent with every PostgREST request"
    )
    rest_timeout_seconds: float = Field(
        default=10.0, description="Timeout for PostgREST requests"
    )

    def get_sync_url(self) -> str:
        """
        Get synchronous database URL for psycopg2 (used by Alembic).

        Returns:
            str: Database connection URL for sync operations
        """
        if self.url:
            return self.url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")
        return f"postgresql+psycopg2://{self.username}:{self.password}@{self.host}:{self.port}/{self.name}"

    def get_async_url(self) -> str:
        """
        Get asynchronous database URL for asyncpg.

        Returns:
            str: Database connection URL for async operations
        """
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.username}:{self.password}@{self.host}:{self.port}/{self.name}"

    @property
    def is_sqlite(self) -> bool:
        return self.get_async_url().startswith("sqlite")


_db_settings: DatabaseSettings | None = None


def get_db_settings() -> DatabaseSettings:
    """
    Get the global database settings instance.

    Returns:
        DatabaseSettings: The global settings instance
    """
    global _db_settings
    if _db_settings is None:
        _db_settings = DatabaseSettings()
        logger.info(
            "DatabaseSettings loaded",
            db_host=_db_settings.host,
            db_port=_db_settings.port,
            db_name=_db_settings.name,
        )
    return _db_settings


def set_db_settings(settings: DatabaseSettings) -> None:
    """
    Set the global database settings instance.

    Useful for testing.

    Args:
        settings: The settings to set
    """
    global _db_settings
    _db_settings = settings
