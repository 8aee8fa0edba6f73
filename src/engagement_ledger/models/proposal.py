"""Client request, proposal, job, estimate and approval models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from engagement_ledger.models.base import Base, TimestampMixin


class ClientRequest(Base, TimestampMixin):
    """Inbound client request that proposals are written against."""

    __tablename__ = "client_request"

    request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    client_name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="NEW")

    __table_args__ = (
        CheckConstraint(
            "status IN ('NEW', 'PROPOSAL_CREATED')",
            name="client_request_status_check",
        ),
    )


class Proposal(Base, TimestampMixin):
    """Priced, versioned offer of work for a client request."""

    __tablename__ = "proposal"

    proposal_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("client_request.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    pricing_model: Mapped[str] = mapped_column(String, nullable=False, default="FIXED_PER_JOB")
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    rate_card_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("rate_card.rate_card_id"),
        nullable=True,
    )
    review_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("request_id", "version", name="proposal_request_version_unique"),
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_REVIEW', 'PENDING_APPROVAL', "
            "'APPROVED', 'REJECTED', 'SUPERSEDED')",
            name="proposal_status_check",
        ),
    )

    # Relationships
    jobs: Mapped[list[Job]] = relationship(
        back_populates="proposal",
        order_by="Job.sort_order",
    )
    approvals: Mapped[list[Approval]] = relationship(
        back_populates="proposal",
        order_by="Approval.created_at",
    )


class Job(Base, TimestampMixin):
    """Unit of proposed work; line_total is the sum of its estimates."""

    __tablename__ = "job"

    job_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    proposal_id: Mapped[UUID] = mapped_column(
        ForeignKey("proposal.proposal_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    line_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )

    # Relationships
    proposal: Mapped[Proposal] = relationship(back_populates="jobs")
    estimates: Mapped[list[JobEstimate]] = relationship(
        back_populates="job",
        order_by="JobEstimate.created_at",
    )


class JobEstimate(Base, TimestampMixin):
    """Hours for one role on a job, priced at creation time."""

    __tablename__ = "job_estimate"

    job_estimate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("job.job_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_name: Mapped[str] = mapped_column(String, nullable=False)
    person_id: Mapped[UUID | None] = mapped_column(nullable=True)
    hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    __table_args__ = (CheckConstraint("hours >= 0", name="job_estimate_hours_check"),)

    # Relationships
    job: Mapped[Job] = relationship(back_populates="estimates")


class Approval(Base, TimestampMixin):
    """Append-only record of one review or client decision."""

    __tablename__ = "approval"

    approval_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    proposal_id: Mapped[UUID] = mapped_column(
        ForeignKey("proposal.proposal_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approval_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    review_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "approval_type IN ('INTERNAL_REVIEW', 'CLIENT_APPROVAL')",
            name="approval_type_check",
        ),
        CheckConstraint("status IN ('APPROVED', 'REJECTED')", name="approval_status_check"),
    )

    # Relationships
    proposal: Mapped[Proposal] = relationship(back_populates="approvals")
