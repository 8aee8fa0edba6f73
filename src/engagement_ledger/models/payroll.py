"""Contractor pay rate, pay run and pay line models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from engagement_ledger.models.base import Base, TimestampMixin


class ContractorPayRate(Base, TimestampMixin):
    """Effective-dated hourly pay rate for a contractor."""

    __tablename__ = "contractor_pay_rate"

    contractor_pay_rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "user_id", "effective_date", name="contractor_pay_rate_unique"
        ),
        CheckConstraint("hourly_rate >= 0", name="contractor_pay_rate_positive"),
    )


class ContractorPayRun(Base, TimestampMixin):
    """Batch calculation of contractor pay for a period."""

    __tablename__ = "contractor_pay_run"

    pay_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    warnings: Mapped[list[Any]] = mapped_column(nullable=False, default=list)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_APPROVAL', 'APPROVED', 'EXPORTED')",
            name="contractor_pay_run_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="contractor_pay_run_dates_check"),
    )

    # Relationships
    lines: Mapped[list[ContractorPayLine]] = relationship(back_populates="pay_run")


class ContractorPayLine(Base, TimestampMixin):
    """Amount owed to one contractor, denominated in the contractor's pay currency."""

    __tablename__ = "contractor_pay_line"

    pay_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pay_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("contractor_pay_run.pay_run_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id"),
        nullable=False,
    )
    hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    fx_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    fx_source: Mapped[str] = mapped_column(String, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("pay_run_id", "user_id", name="contractor_pay_line_unique"),
    )

    # Relationships
    pay_run: Mapped[ContractorPayRun] = relationship(back_populates="lines")
