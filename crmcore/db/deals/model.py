"""SQLAlchemy model for deals."""

from datetime import date

from sqlalchemy import Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from crmcore.db.database import Base
from crmcore.db.mixins import TenantEntityMixin


class Deal(TenantEntityMixin, Base):
    """Deal record: monetary value, pipeline stage and win probability."""

    __tablename__ = "deals"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    value: Mapped[float] = mapped_column(
        Numeric(14, 2, asdecimal=False),
        nullable=False,
        default=0,
        server_default="0",
        comment="Deal amount in the deal currency",
    )
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD", server_default="USD"
    )
    stage: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="prospecting",
        server_default="prospecting",
        comment="Pipeline stage",
    )
    probability: Mapped[int] = mapped_column(
        Integer, nullable=False, default=10, server_default="10"
    )
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    lead_source: Mapped[str | None] = mapped_column(String(32), nullable=True)

    contact_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("contacts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        Index("idx_deals_org_created", "organization_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Deal(id={self.id}, title={self.title}, stage={self.stage})>"
