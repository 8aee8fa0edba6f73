"""Delivery project, budgeted work units, assignments and time entries."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from engagement_ledger.models.base import Base, TimestampMixin


class Project(Base, TimestampMixin):
    """Delivery project provisioned from exactly one approved proposal."""

    __tablename__ = "project"

    project_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposal_id: Mapped[UUID] = mapped_column(
        ForeignKey("proposal.proposal_id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    pm_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")

    __table_args__ = (
        UniqueConstraint("proposal_id", name="project_one_per_proposal"),
        CheckConstraint(
            "status IN ('ACTIVE', 'ON_HOLD', 'COMPLETED', 'CANCELLED')",
            name="project_status_check",
        ),
    )

    # Relationships
    project_jobs: Mapped[list[ProjectJob]] = relationship(back_populates="project")


class ProjectJob(Base, TimestampMixin):
    """Budgeted work unit; budget figures are frozen at provisioning time."""

    __tablename__ = "project_job"

    project_job_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("project.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id: Mapped[UUID] = mapped_column(ForeignKey("job.job_id"), nullable=False)
    budget_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    budget_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="NOT_STARTED")

    __table_args__ = (
        CheckConstraint(
            "status IN ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED')",
            name="project_job_status_check",
        ),
    )

    # Relationships
    project: Mapped[Project] = relationship(back_populates="project_jobs")


class ProjectAssignment(Base, TimestampMixin):
    """User staffed on a project as employee or contractor."""

    __tablename__ = "project_assignment"

    project_assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("project.project_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignment_type: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="project_assignment_unique"),
        CheckConstraint(
            "assignment_type IN ('EMPLOYEE', 'CONTRACTOR')",
            name="project_assignment_type_check",
        ),
    )


class TimeEntry(Base, TimestampMixin):
    """Hours logged against a project job."""

    __tablename__ = "time_entry"

    time_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    project_job_id: Mapped[UUID] = mapped_column(
        ForeignKey("project_job.project_job_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default="MANUAL")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("hours > 0", name="time_entry_hours_check"),
        CheckConstraint("source IN ('MANUAL', 'IMPORT', 'API')", name="time_entry_source_check"),
    )
