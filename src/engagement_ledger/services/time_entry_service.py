"""Project staffing, time logging and time review."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.calculators.money import quantize_hours
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import NotFoundError, ValidationFailedError
from engagement_ledger.models import AppUser, Project, ProjectAssignment, ProjectJob, TimeEntry
from engagement_ledger.services.audit_service import AuditRecorder, snapshot

logger = logging.getLogger(__name__)

ASSIGNMENT_TYPES = ("EMPLOYEE", "CONTRACTOR")
ENTRY_SOURCES = ("MANUAL", "IMPORT", "API")
REVIEW_ACTIONS = ("approve", "reject")


@dataclass(frozen=True)
class ReviewResult:
    action: str
    processed: int


class TimeEntryService:
    """Staffing and hours against provisioned project jobs.

    Approved entries feed contractor pay runs; rejecting an entry deletes it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditRecorder(session)

    async def assign_user(
        self,
        ctx: ActorContext,
        project_id: UUID,
        user_id: UUID,
        assignment_type: str,
    ) -> ProjectAssignment:
        """Staff a user on a project as EMPLOYEE or CONTRACTOR."""
        if assignment_type not in ASSIGNMENT_TYPES:
            raise ValidationFailedError(
                f"assignmentType must be one of {', '.join(ASSIGNMENT_TYPES)}"
            )
        project = await self.session.scalar(
            select(Project).where(Project.project_id == project_id, Project.tenant_id == ctx.tenant_id)
        )
        if project is None:
            raise NotFoundError("Project", project_id)
        await self._require_user(ctx, user_id)

        assignment = ProjectAssignment(
            project_assignment_id=uuid4(),
            project_id=project_id,
            user_id=user_id,
            assignment_type=assignment_type,
        )
        self.session.add(assignment)
        await self.session.flush()
        await self.audit.record_create(
            ctx, "ProjectAssignment", assignment.project_assignment_id, snapshot(assignment)
        )
        return assignment

    async def log_time(
        self,
        ctx: ActorContext,
        project_job_id: UUID,
        user_id: UUID,
        work_date: date,
        hours: Decimal,
        notes: str | None = None,
        source: str = "MANUAL",
    ) -> TimeEntry:
        result = await self.session.execute(
            select(ProjectJob)
            .join(Project, ProjectJob.project_id == Project.project_id)
            .where(
                ProjectJob.project_job_id == project_job_id,
                Project.tenant_id == ctx.tenant_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("ProjectJob", project_job_id)
        await self._require_user(ctx, user_id)

        if work_date is None:
            raise ValidationFailedError("date is required")
        amount = quantize_hours(hours)
        if amount <= 0:
            raise ValidationFailedError(f"hours must be positive (got {amount})")
        if source not in ENTRY_SOURCES:
            raise ValidationFailedError(f"source must be one of {', '.join(ENTRY_SOURCES)}")

        entry = TimeEntry(
            time_entry_id=uuid4(),
            project_job_id=project_job_id,
            user_id=user_id,
            work_date=work_date,
            hours=amount,
            approved=False,
            source=source,
            notes=notes,
        )
        self.session.add(entry)
        await self.session.flush()
        await self.audit.record_create(ctx, "TimeEntry", entry.time_entry_id, snapshot(entry))
        return entry

    async def review(
        self,
        ctx: ActorContext,
        time_entry_ids: Sequence[UUID],
        action: str,
    ) -> ReviewResult:
        """Approve or reject entries in bulk.

        Ids outside the tenant are ignored, so processed may be lower than
        the number of ids given.
        """
        if not time_entry_ids:
            raise ValidationFailedError("ids required")
        if action not in REVIEW_ACTIONS:
            raise ValidationFailedError("action must be approve or reject")

        result = await self.session.execute(
            select(TimeEntry)
            .join(ProjectJob, TimeEntry.project_job_id == ProjectJob.project_job_id)
            .join(Project, ProjectJob.project_id == Project.project_id)
            .where(
                TimeEntry.time_entry_id.in_(list(time_entry_ids)),
                Project.tenant_id == ctx.tenant_id,
            )
        )
        entries = list(result.scalars().all())

        for entry in entries:
            if action == "approve":
                if not entry.approved:
                    entry.approved = True
                    await self.audit.record_update(
                        ctx, "TimeEntry", entry.time_entry_id, {"approved": False}, {"approved": True}
                    )
            else:
                await self.audit.record_delete(ctx, "TimeEntry", entry.time_entry_id, snapshot(entry))
                await self.session.delete(entry)
        await self.session.flush()

        logger.info("Time review %s: %d of %d entries", action, len(entries), len(time_entry_ids))
        return ReviewResult(action=action, processed=len(entries))

    async def _require_user(self, ctx: ActorContext, user_id: UUID) -> None:
        user = await self.session.scalar(
            select(AppUser.user_id).where(AppUser.user_id == user_id, AppUser.tenant_id == ctx.tenant_id)
        )
        if user is None:
            raise NotFoundError("AppUser", user_id)
