"""Tests for invoice drafts, approval and numbering."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from engagement_ledger.errors import (
    InvalidTransitionError,
    NotFoundError,
    NumberingConflictError,
    ValidationFailedError,
)
from engagement_ledger.models import AuditEvent, Invoice, InvoiceDraft, InvoiceSequence, utcnow
from engagement_ledger.services.invoice_service import (
    InvoiceLineInput,
    InvoiceService,
    format_invoice_number,
    price_line_items,
)


async def _pending_draft(service, ctx, project, amount="2000.00"):
    draft = await service.create_draft(
        ctx,
        project.project_id,
        [InvoiceLineInput("Milestone 1", Decimal("1"), Decimal(amount))],
    )
    return await service.submit_draft(ctx, draft.invoice_draft_id)


async def _seed_invoices(session, ctx, project, count, start=1):
    now = utcnow()
    for n in range(start, start + count):
        session.add(
            Invoice(
                invoice_id=uuid4(),
                tenant_id=ctx.tenant_id,
                project_id=project.project_id,
                invoice_number=format_invoice_number(n),
                amount=Decimal("100.00"),
                issued_date=now,
                due_date=now + timedelta(days=30),
                status="ISSUED",
            )
        )
    await session.flush()


class TestLineItems:
    def test_total_is_sum_of_line_amounts(self):
        items, total = price_line_items(
            [
                InvoiceLineInput("Design", Decimal("12.5"), Decimal("95")),
                InvoiceLineInput("Hosting", Decimal("1"), Decimal("49.99")),
            ]
        )

        assert [i["amount"] for i in items] == ["1187.50", "49.99"]
        assert total == Decimal("1237.49")

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationFailedError):
            price_line_items([InvoiceLineInput("Refund", Decimal("-1"), Decimal("10"))])

    def test_number_format(self):
        assert format_invoice_number(5) == "INV-00005"
        assert format_invoice_number(123456) == "INV-123456"


class TestDraftWorkflow:
    @pytest.mark.asyncio
    async def test_draft_for_other_tenant_project_is_not_found(self, session, other_ctx, approved_project):
        with pytest.raises(NotFoundError):
            await InvoiceService(session).create_draft(
                other_ctx,
                approved_project.project_id,
                [InvoiceLineInput("x", Decimal("1"), Decimal("1"))],
            )

    @pytest.mark.asyncio
    async def test_cannot_approve_unsubmitted_draft(self, session, ctx, approved_project):
        service = InvoiceService(session)
        draft = await service.create_draft(
            ctx, approved_project.project_id, [InvoiceLineInput("x", Decimal("1"), Decimal("10"))]
        )

        with pytest.raises(InvalidTransitionError):
            await service.approve_draft(ctx, draft.invoice_draft_id)

    @pytest.mark.asyncio
    async def test_reject_draft(self, session, ctx, approved_project):
        service = InvoiceService(session)
        draft = await _pending_draft(service, ctx, approved_project)

        rejected = await service.reject_draft(ctx, draft.invoice_draft_id, "wrong rate")

        assert rejected.status == "REJECTED"
        with pytest.raises(InvalidTransitionError):
            await service.approve_draft(ctx, draft.invoice_draft_id)


class TestApproval:
    @pytest.mark.asyncio
    async def test_fifth_invoice_number_and_net_30(self, session, ctx, approved_project):
        """Tenant with four invoices: the approved draft becomes INV-00005, due 30 days later."""
        service = InvoiceService(session, due_days=30)
        await _seed_invoices(session, ctx, approved_project, 4)
        draft = await _pending_draft(service, ctx, approved_project, "2000.00")

        invoice = await service.approve_draft(ctx, draft.invoice_draft_id)

        assert invoice.invoice_number == "INV-00005"
        assert invoice.amount == Decimal("2000.00")
        assert invoice.due_date - invoice.issued_date == timedelta(days=30)
        assert invoice.invoice_draft_id == draft.invoice_draft_id

        draft = await service.get_draft(ctx, draft.invoice_draft_id)
        assert draft.status == "APPROVED"
        assert draft.approved_by == ctx.actor_id
        assert draft.approved_at is not None

    @pytest.mark.asyncio
    async def test_numbers_are_sequential_and_never_reused(self, session, ctx, approved_project):
        service = InvoiceService(session)
        first = await service.approve_draft(
            ctx, (await _pending_draft(service, ctx, approved_project)).invoice_draft_id
        )
        await service.void_invoice(ctx, first.invoice_id, "issued in error")
        second = await service.approve_draft(
            ctx, (await _pending_draft(service, ctx, approved_project)).invoice_draft_id
        )

        assert first.invoice_number == "INV-00001"
        assert second.invoice_number == "INV-00002"
        sequence = await session.get(InvoiceSequence, ctx.tenant_id)
        await session.refresh(sequence)
        assert sequence.last_value == 2

    @pytest.mark.asyncio
    async def test_draft_approved_once(self, session, ctx, approved_project):
        service = InvoiceService(session)
        draft = await _pending_draft(service, ctx, approved_project)
        await service.approve_draft(ctx, draft.invoice_draft_id)

        with pytest.raises(InvalidTransitionError):
            await service.approve_draft(ctx, draft.invoice_draft_id)

        invoices = (
            await session.execute(
                select(Invoice).where(Invoice.invoice_draft_id == draft.invoice_draft_id)
            )
        ).scalars().all()
        assert len(invoices) == 1

    @pytest.mark.asyncio
    async def test_numbering_is_per_tenant(self, session, ctx, approved_project, other_tenant):
        service = InvoiceService(session)
        invoice = await service.approve_draft(
            ctx, (await _pending_draft(service, ctx, approved_project)).invoice_draft_id
        )

        assert invoice.invoice_number == "INV-00001"
        assert await session.get(InvoiceSequence, other_tenant.tenant_id) is None

    @pytest.mark.asyncio
    async def test_audit_events_visible_when_approval_returns(self, session, ctx, approved_project):
        service = InvoiceService(session)
        draft = await _pending_draft(service, ctx, approved_project)

        invoice = await service.approve_draft(ctx, draft.invoice_draft_id)

        actions = (
            await session.execute(
                select(AuditEvent.entity_type, AuditEvent.action).where(
                    AuditEvent.entity_id.in_([str(invoice.invoice_id), str(draft.invoice_draft_id)])
                )
            )
        ).all()
        assert ("Invoice", "CREATE") in actions
        assert ("InvoiceDraft", "UPDATE") in actions

    @pytest.mark.asyncio
    async def test_number_collision_raises_and_rolls_back(self, session, ctx, approved_project):
        """An imported INV-00002 collides with the counter's next value."""
        service = InvoiceService(session)
        await _seed_invoices(session, ctx, approved_project, 1, start=2)
        draft_id = (await _pending_draft(service, ctx, approved_project)).invoice_draft_id
        await session.commit()

        with pytest.raises(NumberingConflictError) as exc_info:
            await service.approve_draft(ctx, draft_id)
        await session.rollback()

        assert exc_info.value.details["invoice_number"] == "INV-00002"
        stored = await session.scalar(
            select(InvoiceDraft.status).where(InvoiceDraft.invoice_draft_id == draft_id)
        )
        assert stored == "PENDING_APPROVAL"
        assert await session.scalar(
            select(Invoice).where(Invoice.invoice_draft_id == draft_id)
        ) is None
        assert await session.get(InvoiceSequence, ctx.tenant_id) is None


class TestVoid:
    @pytest.mark.asyncio
    async def test_void_keeps_number(self, session, ctx, approved_project):
        service = InvoiceService(session)
        invoice = await service.approve_draft(
            ctx, (await _pending_draft(service, ctx, approved_project)).invoice_draft_id
        )

        voided = await service.void_invoice(ctx, invoice.invoice_id, "client cancelled")

        assert voided.status == "VOID"
        assert voided.invoice_number == invoice.invoice_number
        assert voided.void_reason == "client cancelled"

    @pytest.mark.asyncio
    async def test_void_twice_rejected(self, session, ctx, approved_project):
        service = InvoiceService(session)
        invoice = await service.approve_draft(
            ctx, (await _pending_draft(service, ctx, approved_project)).invoice_draft_id
        )
        await service.void_invoice(ctx, invoice.invoice_id, "duplicate")

        with pytest.raises(InvalidTransitionError):
            await service.void_invoice(ctx, invoice.invoice_id, "again")

    @pytest.mark.asyncio
    async def test_void_requires_reason(self, session, ctx, approved_project):
        with pytest.raises(ValidationFailedError):
            await InvoiceService(session).void_invoice(ctx, uuid4(), "")
