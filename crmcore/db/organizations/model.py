"""
SQLAlchemy model for organizations.

Organizations are the tenant boundary: every contact, deal, task and
activity row belongs to exactly one of them.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from crmcore.db.database import Base


class Organization(Base):
    """Organization (tenant) model. Each profile belongs to exactly one."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
        comment="Organization UUID",
    )

    # Display names are not unique; two tenants may share a company name
    name: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Organization display name"
    )
    subscription_plan: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="free",
        server_default="free",
        comment="Subscription plan (free, pro, enterprise)",
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
        return f"<Organization(id={self.id}, name={self.name})>"
