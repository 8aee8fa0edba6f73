"""Rate card models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from engagement_ledger.models.base import Base, TimestampMixin


class RateCard(Base, TimestampMixin):
    """Versioned table of hourly rates; exactly one is active per tenant."""

    __tablename__ = "rate_card"

    rate_card_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "version", name="rate_card_tenant_version_unique"),
    )

    # Relationships
    lines: Mapped[list[RateLine]] = relationship(
        back_populates="rate_card",
        order_by="RateLine.role_name",
    )


class RateLine(Base):
    """Hourly rate for a role, optionally qualified by a named person."""

    __tablename__ = "rate_line"

    rate_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    rate_card_id: Mapped[UUID] = mapped_column(
        ForeignKey("rate_card.rate_card_id", ondelete="CASCADE"),
        nullable=False,
    )
    role_name: Mapped[str] = mapped_column(String, nullable=False)
    person_id: Mapped[UUID | None] = mapped_column(nullable=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Relationships
    rate_card: Mapped[RateCard] = relationship(back_populates="lines")
