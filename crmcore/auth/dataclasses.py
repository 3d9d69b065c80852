"""
Core authentication result types.

Providers report expected failures (bad credentials, expired refresh token)
through these results rather than by raising.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class AuthResult:
    """Result of authentication operations."""

    success: bool
    session: Any | None = None  # Session from schemas
    user: Any | None = None  # User from schemas, set when there is no session
    error: str | None = None
    requires_confirmation: bool = False


@dataclass
class SignUpData:
    """Data required for user registration."""

    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    organization_name: str | None = None
    avatar_url: str | None = None
    extra_metadata: dict[str, Any] = field(default_factory=dict)

    def metadata(self) -> dict[str, Any]:
        """Identity metadata attached to the new user."""
        values = {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "organization_name": self.organization_name,
            "avatar_url": self.avatar_url,
        }
        return {
            **self.extra_metadata,
            **{key: value for key, value in values.items() if value},
        }
