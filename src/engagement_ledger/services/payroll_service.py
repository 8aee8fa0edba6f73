"""Contractor payroll runs: hours x pay rate, settled in the contractor's currency."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engagement_ledger.calculators.money import line_total, quantize_money, quantize_rate, to_decimal
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import (
    InvalidTransitionError,
    NoPayRateFoundError,
    NotFoundError,
    ValidationFailedError,
)
from engagement_ledger.models import (
    AppUser,
    ContractorPayLine,
    ContractorPayRate,
    ContractorPayRun,
    Project,
    ProjectAssignment,
    ProjectJob,
    Tenant,
    TimeEntry,
    utcnow,
)
from engagement_ledger.services.audit_service import AuditRecorder, snapshot
from engagement_ledger.services.fx_service import FxRateCache
from engagement_ledger.services.state_machine import (
    PayRunAction,
    PayRunStateMachine,
    PayRunStatus,
)

logger = logging.getLogger(__name__)


class PayrollService:
    """Service for contractor pay rates and pay runs.

    Operations:
    - set_pay_rate: Record an effective-dated contractor rate
    - create_run: Aggregate approved hours and price them per contractor
    - submit_run / approve_run / mark_exported: Pay run lifecycle

    A contractor without a pay rate is skipped with a warning on the run;
    any FX failure aborts the whole run.
    """

    def __init__(self, session: AsyncSession, fx: FxRateCache | None = None):
        self.session = session
        self.fx = fx or FxRateCache(session)
        self.audit = AuditRecorder(session)

    async def set_pay_rate(
        self,
        ctx: ActorContext,
        user_id: UUID,
        hourly_rate: Decimal,
        currency: str,
        effective_date: date,
    ) -> ContractorPayRate:
        user = await self.session.scalar(
            select(AppUser).where(AppUser.user_id == user_id, AppUser.tenant_id == ctx.tenant_id)
        )
        if user is None:
            raise NotFoundError("AppUser", user_id)
        rate = to_decimal(hourly_rate)
        if rate < 0:
            raise ValidationFailedError("hourlyRate must not be negative")
        if not currency or len(currency.strip()) != 3:
            raise ValidationFailedError(f"Invalid currency code {currency!r}")

        existing = await self.session.scalar(
            select(ContractorPayRate.contractor_pay_rate_id).where(
                ContractorPayRate.tenant_id == ctx.tenant_id,
                ContractorPayRate.user_id == user_id,
                ContractorPayRate.effective_date == effective_date,
            )
        )
        if existing is not None:
            raise ValidationFailedError(
                f"Contractor {user_id} already has a pay rate effective {effective_date}"
            )

        pay_rate = ContractorPayRate(
            contractor_pay_rate_id=uuid4(),
            tenant_id=ctx.tenant_id,
            user_id=user_id,
            hourly_rate=quantize_money(rate),
            currency=currency.strip().upper(),
            effective_date=effective_date,
        )
        self.session.add(pay_rate)
        await self.session.flush()
        await self.audit.record_create(
            ctx, "ContractorPayRate", pay_rate.contractor_pay_rate_id, snapshot(pay_rate)
        )
        return pay_rate

    async def get_pay_rate(
        self, tenant_id: UUID, user_id: UUID, as_of: date
    ) -> ContractorPayRate:
        """Latest rate effective on or before as_of.

        Raises:
            NoPayRateFoundError: If the contractor has no such rate
        """
        pay_rate = await self.session.scalar(
            select(ContractorPayRate)
            .where(
                ContractorPayRate.tenant_id == tenant_id,
                ContractorPayRate.user_id == user_id,
                ContractorPayRate.effective_date <= as_of,
            )
            .order_by(ContractorPayRate.effective_date.desc())
            .limit(1)
        )
        if pay_rate is None:
            raise NoPayRateFoundError(user_id, as_of)
        return pay_rate

    async def create_run(
        self,
        ctx: ActorContext,
        period_start: date,
        period_end: date,
    ) -> ContractorPayRun:
        """Create a DRAFT pay run for the period.

        Raises:
            ValidationFailedError: If the period is empty or inverted
            RateUnavailableError / RateSourceUnreachableError: On FX failure
        """
        if period_start is None or period_end is None:
            raise ValidationFailedError("periodStart and periodEnd are required")
        if period_start > period_end:
            raise ValidationFailedError(
                f"periodStart {period_start} is after periodEnd {period_end}"
            )

        tenant = await self.session.get(Tenant, ctx.tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant", ctx.tenant_id)
        base_currency = tenant.base_currency

        hours_by_user = await self._contractor_hours(ctx.tenant_id, period_start, period_end)

        run = ContractorPayRun(
            pay_run_id=uuid4(),
            tenant_id=ctx.tenant_id,
            period_start=period_start,
            period_end=period_end,
            base_currency=base_currency,
            status=PayRunStatus.DRAFT.value,
            warnings=[],
            needs_review=False,
            created_by=ctx.actor_id,
        )
        self.session.add(run)

        warnings: list[str] = []
        lines: list[ContractorPayLine] = []
        for user_id, hours in hours_by_user.items():
            try:
                pay_rate = await self.get_pay_rate(ctx.tenant_id, user_id, period_end)
            except NoPayRateFoundError as exc:
                logger.warning("Skipping contractor in pay run %s: %s", run.pay_run_id, exc)
                warnings.append(exc.message)
                continue

            quote = await self.fx.get_rate(ctx.tenant_id, base_currency, pay_rate.currency)
            line = ContractorPayLine(
                pay_line_id=uuid4(),
                pay_run_id=run.pay_run_id,
                user_id=user_id,
                hours=quantize_money(hours),
                rate=pay_rate.hourly_rate,
                currency=pay_rate.currency,
                fx_rate=quantize_rate(quote.rate),
                fx_source=quote.source.value,
                total_amount=line_total(hours, pay_rate.hourly_rate),
            )
            self.session.add(line)
            lines.append(line)

        run.warnings = warnings
        run.needs_review = bool(warnings) or not lines
        await self.session.flush()

        await self.audit.record_create(
            ctx,
            "ContractorPayRun",
            run.pay_run_id,
            {**snapshot(run), "line_count": len(lines)},
        )
        logger.info(
            "Created pay run %s for %s..%s: %d lines, %d warnings",
            run.pay_run_id,
            period_start,
            period_end,
            len(lines),
            len(warnings),
        )
        return await self.get_run(ctx, run.pay_run_id)

    async def submit_run(self, ctx: ActorContext, pay_run_id: UUID) -> ContractorPayRun:
        run = await self.get_run(ctx, pay_run_id)
        await self._transition(ctx, run, PayRunAction.SUBMIT)
        return await self.get_run(ctx, pay_run_id)

    async def approve_run(self, ctx: ActorContext, pay_run_id: UUID) -> ContractorPayRun:
        run = await self.get_run(ctx, pay_run_id)
        await self._transition(
            ctx, run, PayRunAction.APPROVE, approved_by=ctx.actor_id, approved_at=utcnow()
        )
        return await self.get_run(ctx, pay_run_id)

    async def mark_exported(self, ctx: ActorContext, pay_run_id: UUID) -> ContractorPayRun:
        run = await self.get_run(ctx, pay_run_id)
        await self._transition(ctx, run, PayRunAction.EXPORT, exported_at=utcnow())
        return await self.get_run(ctx, pay_run_id)

    async def get_run(self, ctx: ActorContext, pay_run_id: UUID) -> ContractorPayRun:
        result = await self.session.execute(
            select(ContractorPayRun)
            .where(
                ContractorPayRun.pay_run_id == pay_run_id,
                ContractorPayRun.tenant_id == ctx.tenant_id,
            )
            .options(selectinload(ContractorPayRun.lines))
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError("ContractorPayRun", pay_run_id)
        return run

    async def _contractor_hours(
        self, tenant_id: UUID, period_start: date, period_end: date
    ) -> dict[UUID, Decimal]:
        """Approved hours in the period per user holding a contractor assignment."""
        contractors = (
            select(ProjectAssignment.user_id)
            .join(Project, ProjectAssignment.project_id == Project.project_id)
            .where(
                Project.tenant_id == tenant_id,
                ProjectAssignment.assignment_type == "CONTRACTOR",
            )
        )
        result = await self.session.execute(
            select(TimeEntry.user_id, TimeEntry.hours)
            .join(ProjectJob, TimeEntry.project_job_id == ProjectJob.project_job_id)
            .join(Project, ProjectJob.project_id == Project.project_id)
            .where(
                Project.tenant_id == tenant_id,
                TimeEntry.approved.is_(True),
                TimeEntry.work_date >= period_start,
                TimeEntry.work_date <= period_end,
                TimeEntry.user_id.in_(contractors),
            )
            .order_by(TimeEntry.user_id, TimeEntry.work_date)
        )

        hours: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        for user_id, entry_hours in result.all():
            hours[user_id] += to_decimal(entry_hours)
        return dict(hours)

    async def _transition(
        self,
        ctx: ActorContext,
        run: ContractorPayRun,
        action: PayRunAction,
        **values: Any,
    ) -> None:
        from_status = run.status
        to_status = PayRunStateMachine.next_status(from_status, action)

        result = await self.session.execute(
            update(ContractorPayRun)
            .where(
                ContractorPayRun.pay_run_id == run.pay_run_id,
                ContractorPayRun.status == from_status,
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransitionError(from_status, action.value, "pay run was changed concurrently")

        await self.audit.record_update(
            ctx,
            "ContractorPayRun",
            run.pay_run_id,
            {"status": from_status},
            {"status": to_status, **values},
        )
        logger.info("Pay run %s %s -> %s", run.pay_run_id, from_status, to_status)
