"""Project provisioning from an approved proposal."""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engagement_ledger.calculators.money import money_sum
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import AlreadyProvisionedError
from engagement_ledger.models import ClientRequest, Job, Project, ProjectJob, Proposal
from engagement_ledger.services.audit_service import AuditRecorder, snapshot

logger = logging.getLogger(__name__)


class ProjectProvisioner:
    """Materializes a delivery project from an approved proposal.

    Runs inside the approval transaction. Budgets are copied from the
    proposal's jobs at this instant and are never recomputed afterwards.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditRecorder(session)

    async def provision(self, ctx: ActorContext, proposal: Proposal) -> Project:
        """Create the project and one budgeted project job per proposal job.

        Raises:
            AlreadyProvisionedError: If the proposal already has a project
        """
        existing = await self.session.scalar(
            select(Project.project_id).where(Project.proposal_id == proposal.proposal_id)
        )
        if existing is not None:
            raise AlreadyProvisionedError(proposal.proposal_id, existing)

        request = await self.session.get(ClientRequest, proposal.request_id)
        jobs_result = await self.session.execute(
            select(Job)
            .where(Job.proposal_id == proposal.proposal_id)
            .order_by(Job.sort_order)
            .options(selectinload(Job.estimates))
            .execution_options(populate_existing=True)
        )
        jobs = list(jobs_result.scalars().all())

        project = Project(
            project_id=uuid4(),
            tenant_id=proposal.tenant_id,
            proposal_id=proposal.proposal_id,
            name=request.title if request is not None else f"Proposal v{proposal.version}",
            pm_user_id=ctx.actor_id,
            status="ACTIVE",
        )
        self.session.add(project)

        for job in jobs:
            self.session.add(
                ProjectJob(
                    project_job_id=uuid4(),
                    project_id=project.project_id,
                    job_id=job.job_id,
                    budget_amount=job.line_total,
                    budget_hours=money_sum(e.hours for e in job.estimates),
                    status="NOT_STARTED",
                )
            )
        await self.session.flush()

        await self.audit.record_create(
            ctx,
            "Project",
            project.project_id,
            {**snapshot(project), "auto_created": True, "job_count": len(jobs)},
        )
        logger.info(
            "Provisioned project %s from proposal %s with %d jobs",
            project.project_id,
            proposal.proposal_id,
            len(jobs),
        )
        return project
