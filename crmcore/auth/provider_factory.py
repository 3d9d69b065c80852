"""
Auth provider factory.

This module provides a factory function to create the appropriate auth provider
based on configuration.
"""

from crmcore.auth.config import get_auth_settings
from crmcore.auth.constants import AuthProviderName
from crmcore.auth.service import AuthProvider, GoTrueAuthProvider, InMemoryAuthProvider


def create_auth_provider() -> AuthProvider:
    """
    Create an auth provider based on environment configuration.

    Returns:
        AuthProvider: The configured auth provider instance.

    Raises:
        ValueError: If the provider is unknown or missing its URL.
    """
    settings = get_auth_settings()

    if settings.provider == AuthProviderName.GOTRUE:
        if not settings.gotrue_url:
            raise ValueError("AUTH_GOTRUE_URL must be set for the gotrue provider")
        return GoTrueAuthProvider(
            base_url=settings.gotrue_url,
            api_key=settings.api_key,
            timeout=settings.request_timeout_seconds,
        )
    elif settings.provider == AuthProviderName.MEMORY:
        return InMemoryAuthProvider(
            session_ttl_seconds=settings.memory_session_ttl_seconds
        )
    else:
        raise ValueError(f"Unknown auth provider: {settings.provider}")
