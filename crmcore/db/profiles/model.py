"""
SQLAlchemy model for actor profiles.

Authentication is handled by the auth provider; the profile row stores the
actor's organization membership and display attributes. The primary key is
the provider's user id, so at most one profile can exist per actor.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from crmcore.db.database import Base


class Profile(Base):
    """Profile model linking an authenticated actor to one organization."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(
        String(255), primary_key=True, comment="Auth provider user id"
    )
    email: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True, comment="User email address"
    )
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="user",
        server_default="user",
        comment="Role inside the organization (owner, admin, manager, user, agent)",
    )

    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Organization UUID",
    )
    onboarding_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="0"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="Record creation timestamp",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        comment="Record last update timestamp",
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email={self.email}, organization_id={self.organization_id})>"
