"""Tests for time logging, pay rates and contractor pay runs."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from engagement_ledger.errors import (
    InvalidTransitionError,
    NoPayRateFoundError,
    NotFoundError,
    RateSourceUnreachableError,
    RateUnavailableError,
    ValidationFailedError,
)
from engagement_ledger.models import AppUser, ContractorPayRun, ProjectJob, TimeEntry
from engagement_ledger.services.fx_service import FxRateCache
from engagement_ledger.services.payroll_service import PayrollService
from engagement_ledger.services.time_entry_service import TimeEntryService

from .conftest import FakeFxSource

MARCH_1 = date(2024, 3, 1)
MARCH_31 = date(2024, 3, 31)


async def _project_job(session, project):
    return await session.scalar(select(ProjectJob).where(ProjectJob.project_id == project.project_id))


async def _approved_hours(session, ctx, project, user, entries):
    """Log (work_date, hours) pairs for user and approve them."""
    service = TimeEntryService(session)
    job = await _project_job(session, project)
    logged = [
        await service.log_time(ctx, job.project_job_id, user.user_id, work_date, Decimal(hours))
        for work_date, hours in entries
    ]
    await service.review(ctx, [entry.time_entry_id for entry in logged], "approve")
    return logged


def _payroll(session, rates=None, fail=False):
    source = FakeFxSource(rates or {"USD": {"PHP": "56", "EUR": "0.92"}}, fail=fail)
    return PayrollService(session, fx=FxRateCache(session, source=source)), source


class TestTimeEntries:
    @pytest.mark.asyncio
    async def test_log_requires_positive_hours(self, session, ctx, approved_project, contractor):
        job = await _project_job(session, approved_project)

        with pytest.raises(ValidationFailedError):
            await TimeEntryService(session).log_time(
                ctx, job.project_job_id, contractor.user_id, MARCH_1, Decimal("0")
            )

    @pytest.mark.asyncio
    async def test_hours_stored_at_two_places(self, session, ctx, approved_project, contractor):
        service = TimeEntryService(session)
        job = await _project_job(session, approved_project)

        entry = await service.log_time(ctx, job.project_job_id, contractor.user_id, MARCH_1, Decimal("2.666"))
        assert entry.hours == Decimal("2.67")

        with pytest.raises(ValidationFailedError):
            await service.log_time(ctx, job.project_job_id, contractor.user_id, MARCH_1, Decimal("0.004"))

    @pytest.mark.asyncio
    async def test_log_against_other_tenant_job(self, session, other_ctx, approved_project, contractor):
        job = await _project_job(session, approved_project)

        with pytest.raises(NotFoundError):
            await TimeEntryService(session).log_time(
                other_ctx, job.project_job_id, contractor.user_id, MARCH_1, Decimal("8")
            )

    @pytest.mark.asyncio
    async def test_review_approve_and_reject(self, session, ctx, approved_project, contractor):
        service = TimeEntryService(session)
        job = await _project_job(session, approved_project)
        keep = await service.log_time(ctx, job.project_job_id, contractor.user_id, MARCH_1, Decimal("8"))
        drop = await service.log_time(ctx, job.project_job_id, contractor.user_id, MARCH_1, Decimal("2"))

        approved = await service.review(ctx, [keep.time_entry_id, uuid4()], "approve")
        rejected = await service.review(ctx, [drop.time_entry_id], "reject")

        assert approved.processed == 1
        assert rejected.processed == 1
        assert keep.approved is True
        assert await session.get(TimeEntry, drop.time_entry_id) is None

    @pytest.mark.asyncio
    async def test_review_rejects_unknown_action(self, session, ctx):
        with pytest.raises(ValidationFailedError):
            await TimeEntryService(session).review(ctx, [uuid4()], "archive")

    @pytest.mark.asyncio
    async def test_assignment_type_validated(self, session, ctx, approved_project, contractor):
        with pytest.raises(ValidationFailedError):
            await TimeEntryService(session).assign_user(
                ctx, approved_project.project_id, contractor.user_id, "FREELANCER"
            )


class TestPayRates:
    @pytest.mark.asyncio
    async def test_latest_effective_rate_wins(self, session, ctx, contractor):
        payroll, _ = _payroll(session)
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("40"), "PHP", date(2023, 1, 1))
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "php", date(2024, 1, 1))
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("50"), "PHP", date(2024, 6, 1))

        rate = await payroll.get_pay_rate(ctx.tenant_id, contractor.user_id, MARCH_31)

        assert rate.hourly_rate == Decimal("45.00")
        assert rate.currency == "PHP"

    @pytest.mark.asyncio
    async def test_no_rate_before_first_effective_date(self, session, ctx, contractor):
        payroll, _ = _payroll(session)
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", date(2024, 6, 1))

        with pytest.raises(NoPayRateFoundError):
            await payroll.get_pay_rate(ctx.tenant_id, contractor.user_id, MARCH_31)

    @pytest.mark.asyncio
    async def test_duplicate_effective_date_rejected(self, session, ctx, contractor):
        payroll, _ = _payroll(session)
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", MARCH_1)

        with pytest.raises(ValidationFailedError):
            await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("46"), "PHP", MARCH_1)


class TestCreateRun:
    @pytest.mark.asyncio
    async def test_contractor_paid_in_own_currency(self, session, ctx, approved_project, contractor):
        """20 approved hours at PHP 45/h settle as PHP 900.00 with the USD→PHP rate recorded."""
        payroll, source = _payroll(session)
        await TimeEntryService(session).assign_user(
            ctx, approved_project.project_id, contractor.user_id, "CONTRACTOR"
        )
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", date(2024, 1, 1))
        await _approved_hours(
            session, ctx, approved_project, contractor,
            [(date(2024, 3, 4), "8"), (date(2024, 3, 5), "8"), (date(2024, 3, 6), "4")],
        )

        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        assert run.status == "DRAFT"
        assert run.base_currency == "USD"
        assert run.needs_review is False
        assert run.warnings == []
        assert len(run.lines) == 1
        line = run.lines[0]
        assert line.user_id == contractor.user_id
        assert line.hours == Decimal("20.00")
        assert line.rate == Decimal("45.00")
        assert line.currency == "PHP"
        assert line.total_amount == Decimal("900.00")
        assert line.fx_rate == Decimal("56.000000")
        assert line.fx_source == "live"
        assert source.calls == ["USD"]

    @pytest.mark.asyncio
    async def test_only_approved_contractor_hours_in_period(
        self, session, ctx, approved_project, contractor, project_manager
    ):
        payroll, _ = _payroll(session)
        staffing = TimeEntryService(session)
        await staffing.assign_user(ctx, approved_project.project_id, contractor.user_id, "CONTRACTOR")
        await staffing.assign_user(ctx, approved_project.project_id, project_manager.user_id, "EMPLOYEE")
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", date(2024, 1, 1))
        await payroll.set_pay_rate(ctx, project_manager.user_id, Decimal("80"), "USD", date(2024, 1, 1))

        await _approved_hours(session, ctx, approved_project, contractor, [(date(2024, 3, 4), "6")])
        await _approved_hours(session, ctx, approved_project, contractor, [(date(2024, 4, 2), "8")])
        await _approved_hours(session, ctx, approved_project, project_manager, [(date(2024, 3, 4), "8")])
        job = await _project_job(session, approved_project)
        await staffing.log_time(ctx, job.project_job_id, contractor.user_id, date(2024, 3, 5), Decimal("3"))

        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        assert [(line.user_id, line.hours) for line in run.lines] == [
            (contractor.user_id, Decimal("6.00"))
        ]

    @pytest.mark.asyncio
    async def test_missing_pay_rate_is_a_warning(
        self, session, ctx, approved_project, contractor, test_tenant
    ):
        payroll, _ = _payroll(session)
        unpriced = AppUser(
            user_id=uuid4(),
            tenant_id=test_tenant.tenant_id,
            first_name="Tomas",
            last_name="Berg",
            email="tomas@example.se",
            user_type="INTERNAL",
        )
        session.add(unpriced)
        await session.flush()
        staffing = TimeEntryService(session)
        for user in (contractor, unpriced):
            await staffing.assign_user(ctx, approved_project.project_id, user.user_id, "CONTRACTOR")
            await _approved_hours(session, ctx, approved_project, user, [(date(2024, 3, 4), "5")])
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", date(2024, 1, 1))

        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        assert [line.user_id for line in run.lines] == [contractor.user_id]
        assert run.needs_review is True
        assert len(run.warnings) == 1
        assert str(unpriced.user_id) in run.warnings[0]

    @pytest.mark.asyncio
    async def test_empty_period_needs_review(self, session, ctx):
        payroll, source = _payroll(session)

        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        assert run.lines == []
        assert run.needs_review is True
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_inverted_period_rejected(self, session, ctx):
        payroll, _ = _payroll(session)

        with pytest.raises(ValidationFailedError):
            await payroll.create_run(ctx, MARCH_31, MARCH_1)

    @pytest.mark.asyncio
    async def test_fx_failure_aborts_run(self, session, ctx, approved_project, contractor):
        payroll, _ = _payroll(session, fail=True)
        await TimeEntryService(session).assign_user(
            ctx, approved_project.project_id, contractor.user_id, "CONTRACTOR"
        )
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", date(2024, 1, 1))
        await _approved_hours(session, ctx, approved_project, contractor, [(date(2024, 3, 4), "8")])

        with pytest.raises(RateSourceUnreachableError):
            await payroll.create_run(ctx, MARCH_1, MARCH_31)

    @pytest.mark.asyncio
    async def test_unknown_pay_currency_aborts_run(self, session, ctx, approved_project, contractor):
        payroll, _ = _payroll(session, rates={"USD": {"EUR": "0.92"}})
        await TimeEntryService(session).assign_user(
            ctx, approved_project.project_id, contractor.user_id, "CONTRACTOR"
        )
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("45"), "PHP", date(2024, 1, 1))
        await _approved_hours(session, ctx, approved_project, contractor, [(date(2024, 3, 4), "8")])

        with pytest.raises(RateUnavailableError):
            await payroll.create_run(ctx, MARCH_1, MARCH_31)

    @pytest.mark.asyncio
    async def test_base_currency_pay_is_identity(self, session, ctx, approved_project, contractor):
        payroll, source = _payroll(session)
        await TimeEntryService(session).assign_user(
            ctx, approved_project.project_id, contractor.user_id, "CONTRACTOR"
        )
        await payroll.set_pay_rate(ctx, contractor.user_id, Decimal("32.50"), "USD", date(2024, 1, 1))
        await _approved_hours(session, ctx, approved_project, contractor, [(date(2024, 3, 4), "7.5")])

        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        line = run.lines[0]
        assert line.total_amount == Decimal("243.75")
        assert line.fx_rate == Decimal("1.000000")
        assert line.fx_source == "identity"
        assert source.calls == []


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_submit_approve_export(self, session, ctx):
        payroll, _ = _payroll(session)
        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        run = await payroll.submit_run(ctx, run.pay_run_id)
        assert run.status == "PENDING_APPROVAL"
        run = await payroll.approve_run(ctx, run.pay_run_id)
        assert run.status == "APPROVED"
        assert run.approved_by == ctx.actor_id
        run = await payroll.mark_exported(ctx, run.pay_run_id)
        assert run.status == "EXPORTED"
        assert run.exported_at is not None

    @pytest.mark.asyncio
    async def test_cannot_approve_draft_run(self, session, ctx):
        payroll, _ = _payroll(session)
        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        with pytest.raises(InvalidTransitionError):
            await payroll.approve_run(ctx, run.pay_run_id)

    @pytest.mark.asyncio
    async def test_run_hidden_from_other_tenant(self, session, ctx, other_ctx):
        payroll, _ = _payroll(session)
        run = await payroll.create_run(ctx, MARCH_1, MARCH_31)

        with pytest.raises(NotFoundError):
            await payroll.get_run(other_ctx, run.pay_run_id)
        assert await session.get(ContractorPayRun, run.pay_run_id) is not None
