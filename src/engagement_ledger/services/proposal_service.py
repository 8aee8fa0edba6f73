"""Proposal service - versioned proposals from draft to client approval."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engagement_ledger.calculators.money import quantize_money, to_decimal
from engagement_ledger.calculators.pricing import (
    EstimateRequest,
    JobRequest,
    PricedJob,
    PricingEngine,
)
from engagement_ledger.calculators.rate_resolver import RateResolver, ResolvedRate
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import (
    InvalidTransitionError,
    NoActiveRateCardError,
    NotFoundError,
    ValidationFailedError,
)
from engagement_ledger.models import (
    Approval,
    ClientRequest,
    Job,
    JobEstimate,
    Project,
    Proposal,
    RateCard,
    Tenant,
    utcnow,
)
from engagement_ledger.services.audit_service import AuditRecorder, snapshot
from engagement_ledger.services.provisioning_service import ProjectProvisioner
from engagement_ledger.services.state_machine import (
    ApprovalDecision,
    ApprovalType,
    ProposalAction,
    ProposalStateMachine,
    ProposalStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class DecisionResult:
    """Outcome of a review or client decision."""

    proposal: Proposal
    approval: Approval
    project: Project | None = None


class ProposalService:
    """Service for the proposal lifecycle.

    Operations:
    - create_request: Record an inbound client request
    - create_proposal: New priced version; supersedes in-flight siblings
    - add_job / add_estimate: Edit a DRAFT proposal, keeping totals in step
    - submit: DRAFT → PENDING_REVIEW
    - decide: Internal review or client decision; client approval provisions the project
    - revise: REJECTED → DRAFT with a fresh review cycle
    - send_to_client: Notify the client about a proposal awaiting approval

    Status changes are conditional on the status that was read, so two
    concurrent transitions cannot both succeed.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.resolver = RateResolver(session)
        self.pricing = PricingEngine(session, self.resolver)
        self.audit = AuditRecorder(session)

    async def create_request(
        self,
        ctx: ActorContext,
        title: str,
        client_name: str,
        description: str | None = None,
    ) -> ClientRequest:
        if not title or not title.strip():
            raise ValidationFailedError("title is required")
        if not client_name or not client_name.strip():
            raise ValidationFailedError("clientName is required")

        request = ClientRequest(
            request_id=uuid4(),
            tenant_id=ctx.tenant_id,
            title=title.strip(),
            client_name=client_name.strip(),
            description=description,
            status="NEW",
        )
        self.session.add(request)
        await self.session.flush()

        await self.audit.record_create(ctx, "ClientRequest", request.request_id, snapshot(request))
        return request

    async def create_proposal(
        self,
        ctx: ActorContext,
        request_id: UUID,
        jobs: Sequence[JobRequest] = (),
        pricing_model: str = "FIXED_PER_JOB",
        notes: str | None = None,
    ) -> Proposal:
        """Create the next version of a proposal for a client request.

        The request row is locked while the version number is chosen, so
        concurrent creations serialize instead of colliding on
        (request_id, version).

        Raises:
            NotFoundError: If the request does not belong to the tenant
            NoActiveRateCardError: If jobs are given and no rate card applies
        """
        result = await self.session.execute(
            select(ClientRequest)
            .where(
                ClientRequest.request_id == request_id,
                ClientRequest.tenant_id == ctx.tenant_id,
            )
            .with_for_update()
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("ClientRequest", request_id)

        latest_version = await self.session.scalar(
            select(func.max(Proposal.version)).where(Proposal.request_id == request_id)
        )
        version = (latest_version or 0) + 1

        priced_jobs: list[PricedJob] = []
        total = quantize_money(0)
        rate_card_id = None
        if jobs:
            priced = await self.pricing.price_jobs(ctx.tenant_id, jobs)
            priced_jobs = priced.jobs
            total = priced.total_amount
            rate_card_id = priced.rate_card_id
            if priced.unpriced_roles:
                logger.warning(
                    "Proposal for request %s has unpriced roles: %s",
                    request_id,
                    ", ".join(priced.unpriced_roles),
                )

        superseded = await self._supersede_siblings(ctx, request_id)

        proposal = Proposal(
            proposal_id=uuid4(),
            tenant_id=ctx.tenant_id,
            request_id=request_id,
            version=version,
            status=ProposalStatus.DRAFT.value,
            pricing_model=pricing_model or "FIXED_PER_JOB",
            total_amount=total,
            rate_card_id=rate_card_id,
            review_cycle=1,
            notes=notes,
            created_by=ctx.actor_id,
        )
        self.session.add(proposal)
        for sort_order, priced_job in enumerate(priced_jobs):
            self._add_priced_job(proposal.proposal_id, priced_job, sort_order)

        request_before = snapshot(request)
        request.status = "PROPOSAL_CREATED"
        await self.session.flush()

        await self.audit.record_create(
            ctx,
            "Proposal",
            proposal.proposal_id,
            {**snapshot(proposal), "job_count": len(priced_jobs)},
        )
        if request_before["status"] != request.status:
            await self.audit.record_update(
                ctx, "ClientRequest", request.request_id, request_before, snapshot(request)
            )

        logger.info(
            "Created proposal %s v%d for request %s (total %s, superseded %d)",
            proposal.proposal_id,
            version,
            request_id,
            total,
            len(superseded),
        )
        return await self.get_proposal(ctx, proposal.proposal_id)

    async def add_job(self, ctx: ActorContext, proposal_id: UUID, job: JobRequest) -> Job:
        """Append a priced job to a DRAFT proposal."""
        proposal = await self._load(ctx, proposal_id)
        self._require_editable(proposal, "add_job")

        card = await self._pricing_card(proposal)
        priced_job = self.pricing.price_with_card(card, [job]).jobs[0]

        sort_order = await self.session.scalar(
            select(func.count(Job.job_id)).where(Job.proposal_id == proposal_id)
        )
        await self._increment_total(proposal, priced_job.line_total, "add_job")

        new_job = self._add_priced_job(proposal_id, priced_job, sort_order or 0)
        await self.session.flush()

        await self.audit.record_create(
            ctx,
            "Job",
            new_job.job_id,
            {**snapshot(new_job), "estimate_count": len(priced_job.estimates)},
        )
        await self.audit.record_update(
            ctx,
            "Proposal",
            proposal_id,
            {"total_amount": str(quantize_money(proposal.total_amount - priced_job.line_total))},
            {"total_amount": str(proposal.total_amount)},
        )
        return await self._get_job(new_job.job_id)

    async def add_estimate(
        self,
        ctx: ActorContext,
        job_id: UUID,
        role_name: str,
        hours: Decimal,
        hourly_rate: Decimal | None = None,
        person_id: UUID | None = None,
    ) -> JobEstimate:
        """Add an estimate to a job on a DRAFT proposal.

        The rate is taken as given when supplied, otherwise resolved from
        the proposal's rate card. The proposal total is incremented first,
        conditional on the proposal still being DRAFT, and only then the
        job total.
        """
        result = await self.session.execute(
            select(Job, Proposal)
            .join(Proposal, Job.proposal_id == Proposal.proposal_id)
            .where(Job.job_id == job_id, Proposal.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("Job", job_id)
        job, proposal = row
        self._require_editable(proposal, "add_estimate")

        if not role_name or not role_name.strip():
            raise ValidationFailedError("roleName is required")
        if hours is None:
            raise ValidationFailedError("hours is required")

        if hourly_rate is None:
            card = await self._pricing_card(proposal)
            resolved = self.resolver.match(card, role_name, person_id)
        else:
            rate = to_decimal(hourly_rate)
            if rate < 0:
                raise ValidationFailedError("hourlyRate must not be negative")
            resolved = ResolvedRate(
                hourly_rate=quantize_money(rate),
                currency=await self._explicit_rate_currency(proposal, role_name, person_id),
                rate_card_id=proposal.rate_card_id,
                matched_by="explicit",
            )

        priced = self.pricing.price_estimate(
            EstimateRequest(role_name=role_name, hours=hours, person_id=person_id),
            resolved,
        )

        await self._increment_total(proposal, priced.line_total, "add_estimate")
        await self.session.execute(
            update(Job)
            .where(Job.job_id == job_id)
            .values(line_total=Job.line_total + priced.line_total)
            .execution_options(synchronize_session=False)
        )

        estimate = JobEstimate(
            job_estimate_id=uuid4(),
            job_id=job_id,
            role_name=priced.role_name.strip(),
            person_id=priced.person_id,
            hours=priced.hours,
            hourly_rate=priced.hourly_rate,
            line_total=priced.line_total,
        )
        self.session.add(estimate)
        await self.session.flush()
        await self.session.refresh(job)

        await self.audit.record_create(ctx, "JobEstimate", estimate.job_estimate_id, snapshot(estimate))
        await self.audit.record_update(
            ctx,
            "Proposal",
            proposal.proposal_id,
            {"total_amount": str(quantize_money(proposal.total_amount - priced.line_total))},
            {"total_amount": str(proposal.total_amount), "job_id": str(job_id)},
        )
        return estimate

    async def submit(self, ctx: ActorContext, proposal_id: UUID) -> Proposal:
        """Send a DRAFT proposal to internal review."""
        proposal = await self._load(ctx, proposal_id)
        await self._transition(ctx, proposal, ProposalAction.SUBMIT)
        return await self.get_proposal(ctx, proposal_id)

    async def decide(
        self,
        ctx: ActorContext,
        proposal_id: UUID,
        approval_type: str,
        decision: str,
        notes: str | None = None,
        terms_accepted: bool = False,
    ) -> DecisionResult:
        """Record an internal review or client decision.

        INTERNAL_REVIEW applies only in PENDING_REVIEW and CLIENT_APPROVAL
        only in PENDING_APPROVAL. A client approval provisions the delivery
        project in the same transaction.
        """
        try:
            approval_type = ApprovalType(approval_type).value
            decision = ApprovalDecision(decision).value
        except ValueError as exc:
            raise ValidationFailedError(str(exc)) from exc

        proposal = await self._load(ctx, proposal_id)
        action = ProposalStateMachine.action_for_decision(approval_type, decision)
        # Fail before anything is written when the type does not fit the status
        ProposalStateMachine.next_status(proposal.status, action)

        approval = Approval(
            approval_id=uuid4(),
            proposal_id=proposal_id,
            approval_type=approval_type,
            status=decision,
            review_cycle=proposal.review_cycle,
            approved_by=ctx.actor_id,
            terms_accepted=bool(terms_accepted),
            notes=notes,
        )
        self.session.add(approval)
        await self.session.flush()
        await self._transition(ctx, proposal, action)
        await self.audit.record_create(ctx, "Approval", approval.approval_id, snapshot(approval))

        project = None
        if action == ProposalAction.CLIENT_APPROVE.value:
            project = await ProjectProvisioner(self.session).provision(ctx, proposal)

        logger.info(
            "Proposal %s %s %s (cycle %d) -> %s",
            proposal_id,
            approval_type,
            decision,
            approval.review_cycle,
            proposal.status,
        )
        return DecisionResult(
            proposal=await self.get_proposal(ctx, proposal_id),
            approval=approval,
            project=project,
        )

    async def revise(self, ctx: ActorContext, proposal_id: UUID) -> Proposal:
        """Return a REJECTED proposal to DRAFT under a new review cycle.

        Approvals from earlier cycles stay on record but no longer count
        towards the proposal's current standing.
        """
        proposal = await self._load(ctx, proposal_id)
        ProposalStateMachine.next_status(proposal.status, ProposalAction.REVISE)

        sibling = await self.session.scalar(
            select(Proposal.proposal_id)
            .where(
                Proposal.request_id == proposal.request_id,
                Proposal.proposal_id != proposal_id,
                Proposal.status.in_(ProposalStateMachine.NON_TERMINAL),
            )
            .limit(1)
        )
        if sibling is not None:
            raise InvalidTransitionError(
                proposal.status,
                ProposalAction.REVISE.value,
                f"proposal {sibling} is already in progress for this request",
            )

        await self._transition(
            ctx,
            proposal,
            ProposalAction.REVISE,
            review_cycle=Proposal.review_cycle + 1,
        )
        return await self.get_proposal(ctx, proposal_id)

    async def send_to_client(self, ctx: ActorContext, proposal_id: UUID) -> Proposal:
        """Notify the client that a proposal awaits their decision."""
        result = await self.session.execute(
            select(Proposal, ClientRequest)
            .join(ClientRequest, Proposal.request_id == ClientRequest.request_id)
            .where(Proposal.proposal_id == proposal_id, Proposal.tenant_id == ctx.tenant_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("Proposal", proposal_id)
        proposal, request = row

        if proposal.status != ProposalStatus.PENDING_APPROVAL.value:
            raise InvalidTransitionError(
                proposal.status,
                "send_to_client",
                "only PENDING_APPROVAL proposals can be sent to clients",
            )

        before = {"sent_at": proposal.sent_at}
        sent_at = utcnow()
        updated = await self.session.execute(
            update(Proposal)
            .where(
                Proposal.proposal_id == proposal_id,
                Proposal.status == ProposalStatus.PENDING_APPROVAL.value,
            )
            .values(sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount == 0:
            raise InvalidTransitionError(
                proposal.status, "send_to_client", "proposal was changed concurrently"
            )
        await self.session.refresh(proposal)

        logger.info(
            "Notification: proposal %s v%d sent to client %s",
            proposal_id,
            proposal.version,
            request.client_name,
        )
        await self.audit.record_update(
            ctx,
            "Proposal",
            proposal_id,
            before,
            {"sent_at": sent_at, "notified": request.client_name},
        )
        return await self.get_proposal(ctx, proposal_id)

    async def get_proposal(self, ctx: ActorContext, proposal_id: UUID) -> Proposal:
        """Load a proposal with jobs, estimates and approvals."""
        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.proposal_id == proposal_id, Proposal.tenant_id == ctx.tenant_id)
            .options(
                selectinload(Proposal.jobs).selectinload(Job.estimates),
                selectinload(Proposal.approvals),
            )
            .execution_options(populate_existing=True)
        )
        proposal = result.scalar_one_or_none()
        if proposal is None:
            raise NotFoundError("Proposal", proposal_id)
        return proposal

    async def _load(self, ctx: ActorContext, proposal_id: UUID) -> Proposal:
        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.proposal_id == proposal_id, Proposal.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        proposal = result.scalar_one_or_none()
        if proposal is None:
            raise NotFoundError("Proposal", proposal_id)
        return proposal

    async def _get_job(self, job_id: UUID) -> Job:
        result = await self.session.execute(
            select(Job)
            .where(Job.job_id == job_id)
            .options(selectinload(Job.estimates))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _pricing_card(self, proposal: Proposal) -> RateCard:
        """The card the proposal was priced with, falling back to the one in effect now."""
        if proposal.rate_card_id is not None:
            result = await self.session.execute(
                select(RateCard)
                .where(RateCard.rate_card_id == proposal.rate_card_id)
                .options(selectinload(RateCard.lines))
            )
            card = result.scalar_one_or_none()
            if card is not None:
                return card
        return await self.resolver.get_applicable_card(proposal.tenant_id)

    async def _explicit_rate_currency(
        self, proposal: Proposal, role_name: str, person_id: UUID | None
    ) -> str:
        """Label a caller-supplied rate with the currency the card would have used."""
        try:
            card = await self._pricing_card(proposal)
        except NoActiveRateCardError:
            tenant = await self.session.get(Tenant, proposal.tenant_id)
            return tenant.base_currency
        return self.resolver.currency_for(card, role_name, person_id)

    def _add_priced_job(self, proposal_id: UUID, priced_job: PricedJob, sort_order: int) -> Job:
        job = Job(
            job_id=uuid4(),
            proposal_id=proposal_id,
            name=priced_job.name.strip(),
            scope=priced_job.scope,
            sort_order=sort_order,
            line_total=priced_job.line_total,
        )
        self.session.add(job)
        for estimate in priced_job.estimates:
            self.session.add(
                JobEstimate(
                    job_estimate_id=uuid4(),
                    job_id=job.job_id,
                    role_name=estimate.role_name.strip(),
                    person_id=estimate.person_id,
                    hours=estimate.hours,
                    hourly_rate=estimate.hourly_rate,
                    line_total=estimate.line_total,
                )
            )
        return job

    async def _supersede_siblings(self, ctx: ActorContext, request_id: UUID) -> list[UUID]:
        result = await self.session.execute(
            select(Proposal.proposal_id, Proposal.status).where(
                Proposal.request_id == request_id,
                Proposal.tenant_id == ctx.tenant_id,
                Proposal.status.in_(ProposalStateMachine.NON_TERMINAL),
            )
        )
        superseded: list[UUID] = []
        for sibling_id, status in result.all():
            to_status = ProposalStateMachine.next_status(status, ProposalAction.SUPERSEDE)
            updated = await self.session.execute(
                update(Proposal)
                .where(Proposal.proposal_id == sibling_id, Proposal.status == status)
                .values(status=to_status)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                raise InvalidTransitionError(
                    status, ProposalAction.SUPERSEDE.value, "proposal was changed concurrently"
                )
            await self.audit.record_update(
                ctx, "Proposal", sibling_id, {"status": status}, {"status": to_status}
            )
            superseded.append(sibling_id)
        return superseded

    def _require_editable(self, proposal: Proposal, action: str) -> None:
        if not ProposalStateMachine.is_editable(proposal.status):
            raise InvalidTransitionError(
                proposal.status, action, "jobs and estimates can only change on DRAFT proposals"
            )

    async def _increment_total(self, proposal: Proposal, amount: Decimal, action: str) -> None:
        """Add to the proposal total only while it is still a DRAFT."""
        result = await self.session.execute(
            update(Proposal)
            .where(
                Proposal.proposal_id == proposal.proposal_id,
                Proposal.status == ProposalStatus.DRAFT.value,
            )
            .values(total_amount=Proposal.total_amount + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.refresh(proposal)
            raise InvalidTransitionError(
                proposal.status, action, "proposal left DRAFT before the change was applied"
            )
        await self.session.refresh(proposal)

    async def _transition(
        self,
        ctx: ActorContext,
        proposal: Proposal,
        action: ProposalAction | str,
        **values: object,
    ) -> None:
        """Apply one table transition with a status-conditional UPDATE."""
        from_status = proposal.status
        before_cycle = proposal.review_cycle
        to_status = ProposalStateMachine.next_status(from_status, action)

        result = await self.session.execute(
            update(Proposal)
            .where(
                Proposal.proposal_id == proposal.proposal_id,
                Proposal.status == from_status,
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransitionError(
                from_status,
                action.value if isinstance(action, ProposalAction) else action,
                "proposal was changed concurrently",
            )
        await self.session.refresh(proposal)

        await self.audit.record_update(
            ctx,
            "Proposal",
            proposal.proposal_id,
            {"status": from_status, "review_cycle": before_cycle},
            {"status": proposal.status, "review_cycle": proposal.review_cycle},
        )
