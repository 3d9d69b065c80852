"""
Auth-specific Pydantic schemas.

Identity (``User``) and credentials (``Session``) come from the auth
provider; ``Profile`` and ``Organization`` are rows in the data service.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from crmcore.auth.constants import Role, SubscriptionPlan


# Core domain models
class User(BaseModel):
    """Authenticated identity as reported by the auth provider."""

    id: str = Field(..., description="User's unique identifier")
    email: str = Field(..., description="User's email address")
    email_verified: bool = Field(
        default=False, description="Whether user's email is verified"
    )
    user_metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Identity metadata attached at sign-up (name fragments, avatar, organization)",
    )
    created_at: datetime | None = Field(None, description="User creation timestamp")


class Session(BaseModel):
    """User session information."""

    user: User = Field(..., description="User information")
    access_token: str = Field(..., description="Access token")
    refresh_token: str = Field(..., description="Refresh token")
    expires_at: datetime = Field(..., description="Token expiration timestamp")
    token_type: str = Field(default="bearer", description="Token type")

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        """Whether the access token expires within the given margin."""
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at - now <= timedelta(seconds=seconds)


class Organization(BaseModel):
    """Organization (tenant) row."""

    id: str = Field(..., description="Organization UUID")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    subscription_plan: SubscriptionPlan = Field(default=SubscriptionPlan.FREE)
    created_at: datetime | None = Field(None, description="Creation timestamp")
    updated_at: datetime | None = Field(None, description="Last update timestamp")


class Profile(BaseModel):
    """Organization-scoped profile of an actor."""

    id: str = Field(..., description="Auth provider user id")
    email: str = Field(..., description="User's email address")
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    role: Role = Field(default=Role.USER, description="Role inside the organization")
    organization_id: str = Field(..., description="Organization UUID")
    onboarding_completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class ProfileUpdate(BaseModel):
    """Schema for updating the current actor's profile."""

    model_config = {"extra": "forbid"}

    first_name: str | None = Field(None, max_length=128)
    last_name: str | None = Field(None, max_length=128)
    job_title: str | None = Field(None, max_length=128)
    phone: str | None = Field(None, max_length=64)
    avatar_url: str | None = None
    onboarding_completed: bool | None = None


class Actor(BaseModel):
    """Stable view of the signed-in actor exposed to the rest of the system."""

    user: User
    profile: Profile | None = None

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def email(self) -> str:
        return self.profile.email if self.profile else self.user.email

    @property
    def organization_id(self) -> str | None:
        return self.profile.organization_id if self.profile else None


class PersistedAuthState(BaseModel):
    """What is kept between runs: the session and the cached profile."""

    session: Session | None = None
    profile: Profile | None = None
