"""
SQLAlchemy model for activity (audit) records.

Rows are append-only. Subject references are plain columns rather than
foreign keys so that a record survives the deletion of the entity it
describes.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from crmcore.db.database import Base


class Activity(Base):
    """Immutable activity record describing one mutation."""

    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
        comment="Activity UUID",
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Acting profile id"
    )

    # Subject references (zero or more)
    contact_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    deal_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Entity and activity kind, e.g. deal_stage_changed",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict, server_default=text("'{}'")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="Record creation timestamp",
    )

    __table_args__ = (
        Index("idx_activities_org_created", "organization_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Activity(id={self.id}, type={self.type})>"
