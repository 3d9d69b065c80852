"""
Configuration management for the auth package.

Selects the auth provider and holds the GoTrue connection settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from crmcore.auth.constants import AuthProviderName
from crmcore.utils.logger import logger


class AuthSettings(BaseSettings):
    """Configuration for the auth system using Pydantic settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False, extra="ignore", env_prefix="AUTH_"
    )

    # Provider configuration
    provider: AuthProviderName = Field(
        default=AuthProviderName.GOTRUE, description="Authentication provider to use"
    )

    # GoTrue configuration
    gotrue_url: str | None = Field(
        default=None, description="Project URL hosting the /auth/v1 API"
    )
    api_key: str | None = Field(
        default=None, description="API key sent as the apikey header"
    )
    request_timeout_seconds: float = Field(
        default=10.0, description="Timeout for auth API requests"
    )

    # In-memory provider
    memory_session_ttl_seconds: int = Field(
        default=3600, ge=1, description="Access token lifetime for the in-memory provider"
    )

    def is_gotrue_provider(self) -> bool:
        """Check if using the GoTrue provider."""
        return self.provider == AuthProviderName.GOTRUE


# Global settings instance
_auth_settings: AuthSettings | None = None


def get_auth_settings() -> AuthSettings:
    """
    Get the global auth settings instance.

    Returns:
        AuthSettings: The global settings instance
    """
    global _auth_settings
    if _auth_settings is None:
        _auth_settings = AuthSettings()
        logger.info(
            "AuthSettings loaded",
            auth_provider=_auth_settings.provider.value,
            gotrue_url=_auth_settings.gotrue_url,
        )
    return _auth_settings


def set_auth_settings(settings: AuthSettings) -> None:
    """
    Set the global auth settings instance.

    Args:
        settings: The settings to set
    """
    global _auth_settings
    _auth_settings = settings
