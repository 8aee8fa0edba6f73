"""Invoice service - draft approval cycle and sequential invoice numbering."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.calculators.money import line_total, money_sum, to_decimal
from engagement_ledger.config import get_settings
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import (
    InvalidTransitionError,
    NotFoundError,
    NumberingConflictError,
    ValidationFailedError,
)
from engagement_ledger.models import Invoice, InvoiceDraft, InvoiceSequence, Project, utcnow
from engagement_ledger.services.audit_service import AuditRecorder, snapshot
from engagement_ledger.services.state_machine import (
    InvoiceDraftAction,
    InvoiceDraftStateMachine,
    InvoiceDraftStatus,
    InvoiceStatus,
)

logger = logging.getLogger(__name__)

INVOICE_NUMBER_WIDTH = 5


def format_invoice_number(value: int) -> str:
    """INV- followed by the zero-padded sequence value."""
    return f"INV-{value:0{INVOICE_NUMBER_WIDTH}d}"


@dataclass(frozen=True)
class InvoiceLineInput:
    description: str
    quantity: Decimal
    unit_price: Decimal


def price_line_items(items: Sequence[InvoiceLineInput]) -> tuple[list[dict[str, Any]], Decimal]:
    """Compute line amounts and the draft total.

    Returns the JSON-ready line items and their sum.
    """
    priced: list[dict[str, Any]] = []
    for item in items:
        if not item.description or not item.description.strip():
            raise ValidationFailedError("Line item description is required")
        quantity = to_decimal(item.quantity)
        unit_price = to_decimal(item.unit_price)
        if quantity < 0 or unit_price < 0:
            raise ValidationFailedError(
                f"Line item {item.description!r} must not have negative quantity or price"
            )
        priced.append(
            {
                "description": item.description.strip(),
                "quantity": str(quantity),
                "unit_price": str(unit_price),
                "amount": str(line_total(quantity, unit_price)),
            }
        )
    return priced, money_sum(p["amount"] for p in priced)


class InvoiceService:
    """Service for invoice drafts and issued invoices.

    Operations:
    - create_draft: Draft for one of the tenant's projects
    - submit_draft: DRAFT → PENDING_APPROVAL
    - approve_draft: PENDING_APPROVAL → APPROVED, issuing a numbered invoice
    - reject_draft: PENDING_APPROVAL → REJECTED
    - void_invoice: ISSUED → VOID; the number stays taken
    """

    def __init__(self, session: AsyncSession, due_days: int | None = None):
        self.session = session
        self.due_days = due_days if due_days is not None else get_settings().invoice_due_days
        self.audit = AuditRecorder(session)

    async def create_draft(
        self,
        ctx: ActorContext,
        project_id: UUID,
        line_items: Sequence[InvoiceLineInput],
        notes: str | None = None,
    ) -> InvoiceDraft:
        project = await self.session.scalar(
            select(Project).where(
                Project.project_id == project_id,
                Project.tenant_id == ctx.tenant_id,
            )
        )
        if project is None:
            raise NotFoundError("Project", project_id)
        if not line_items:
            raise ValidationFailedError("At least one line item is required")

        items, total = price_line_items(line_items)
        draft = InvoiceDraft(
            invoice_draft_id=uuid4(),
            tenant_id=ctx.tenant_id,
            project_id=project_id,
            status=InvoiceDraftStatus.DRAFT.value,
            line_items=items,
            total_amount=total,
            notes=notes,
            created_by=ctx.actor_id,
        )
        self.session.add(draft)
        await self.session.flush()

        await self.audit.record_create(ctx, "InvoiceDraft", draft.invoice_draft_id, snapshot(draft))
        logger.info("Created invoice draft %s for project %s (%s)", draft.invoice_draft_id, project_id, total)
        return draft

    async def submit_draft(self, ctx: ActorContext, draft_id: UUID) -> InvoiceDraft:
        draft = await self.get_draft(ctx, draft_id)
        await self._transition(ctx, draft, InvoiceDraftAction.SUBMIT)
        return draft

    async def reject_draft(
        self, ctx: ActorContext, draft_id: UUID, reason: str | None = None
    ) -> InvoiceDraft:
        draft = await self.get_draft(ctx, draft_id)
        await self._transition(ctx, draft, InvoiceDraftAction.REJECT, reason=reason)
        return draft

    async def approve_draft(self, ctx: ActorContext, draft_id: UUID) -> Invoice:
        """Approve a draft and issue its invoice in one unit of work.

        The draft is moved to APPROVED first (conditional on it still being
        PENDING_APPROVAL), then the tenant's counter is advanced and the
        invoice inserted. Any failure leaves all three untouched once the
        caller rolls back.

        Raises:
            InvalidTransitionError: If the draft is not PENDING_APPROVAL
            NumberingConflictError: If the allocated number is already taken
        """
        draft = await self.get_draft(ctx, draft_id)
        approved_at = utcnow()
        await self._transition(
            ctx,
            draft,
            InvoiceDraftAction.APPROVE,
            approved_by=ctx.actor_id,
            approved_at=approved_at,
        )

        sequence_value = await self._next_sequence_value(ctx.tenant_id)
        invoice = Invoice(
            invoice_id=uuid4(),
            tenant_id=ctx.tenant_id,
            project_id=draft.project_id,
            invoice_draft_id=draft.invoice_draft_id,
            invoice_number=format_invoice_number(sequence_value),
            amount=draft.total_amount,
            issued_date=approved_at,
            due_date=approved_at + timedelta(days=self.due_days),
            status=InvoiceStatus.ISSUED.value,
        )
        self.session.add(invoice)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise NumberingConflictError(
                f"Invoice number {invoice.invoice_number} is already in use",
                tenant_id=str(ctx.tenant_id),
                invoice_number=invoice.invoice_number,
            ) from exc

        await self.audit.record_create(ctx, "Invoice", invoice.invoice_id, snapshot(invoice))
        logger.info(
            "Issued invoice %s for draft %s (%s due %s)",
            invoice.invoice_number,
            draft_id,
            invoice.amount,
            invoice.due_date.date(),
        )
        return invoice

    async def void_invoice(self, ctx: ActorContext, invoice_id: UUID, reason: str) -> Invoice:
        if not reason or not reason.strip():
            raise ValidationFailedError("A reason is required to void an invoice")
        invoice = await self.get_invoice(ctx, invoice_id)

        result = await self.session.execute(
            update(Invoice)
            .where(
                Invoice.invoice_id == invoice_id,
                Invoice.status == InvoiceStatus.ISSUED.value,
            )
            .values(status=InvoiceStatus.VOID.value, void_reason=reason.strip())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransitionError(invoice.status, "void", "only ISSUED invoices can be voided")
        before = {"status": invoice.status}
        await self.session.refresh(invoice)

        await self.audit.record_update(
            ctx,
            "Invoice",
            invoice_id,
            before,
            {"status": invoice.status, "void_reason": invoice.void_reason},
        )
        logger.info("Voided invoice %s: %s", invoice.invoice_number, invoice.void_reason)
        return invoice

    async def get_draft(self, ctx: ActorContext, draft_id: UUID) -> InvoiceDraft:
        draft = await self.session.scalar(
            select(InvoiceDraft)
            .where(
                InvoiceDraft.invoice_draft_id == draft_id,
                InvoiceDraft.tenant_id == ctx.tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        if draft is None:
            raise NotFoundError("InvoiceDraft", draft_id)
        return draft

    async def get_invoice(self, ctx: ActorContext, invoice_id: UUID) -> Invoice:
        invoice = await self.session.scalar(
            select(Invoice)
            .where(Invoice.invoice_id == invoice_id, Invoice.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _next_sequence_value(self, tenant_id: UUID) -> int:
        """Advance the tenant's invoice counter and return the new value.

        The counter row is created on first use, seeded with the number of
        invoices the tenant already has. The increment is a single UPDATE
        ... RETURNING, which holds the row lock until commit.
        """
        existing = await self.session.scalar(
            select(func.count(Invoice.invoice_id)).where(Invoice.tenant_id == tenant_id)
        )
        dialect = self.session.get_bind().dialect.name
        dialect_insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        await self.session.execute(
            dialect_insert(InvoiceSequence)
            .values(tenant_id=tenant_id, last_value=existing or 0)
            .on_conflict_do_nothing(index_elements=["tenant_id"])
        )

        result = await self.session.execute(
            update(InvoiceSequence)
            .where(InvoiceSequence.tenant_id == tenant_id)
            .values(last_value=InvoiceSequence.last_value + 1)
            .returning(InvoiceSequence.last_value)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one()

    async def _transition(
        self,
        ctx: ActorContext,
        draft: InvoiceDraft,
        action: InvoiceDraftAction,
        reason: str | None = None,
        **values: Any,
    ) -> None:
        from_status = draft.status
        to_status = InvoiceDraftStateMachine.next_status(from_status, action)

        result = await self.session.execute(
            update(InvoiceDraft)
            .where(
                InvoiceDraft.invoice_draft_id == draft.invoice_draft_id,
                InvoiceDraft.status == from_status,
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransitionError(from_status, action.value, "draft was changed concurrently")
        await self.session.refresh(draft)

        after: dict[str, Any] = {"status": draft.status, **values}
        if reason:
            after["reason"] = reason
        await self.audit.record_update(
            ctx, "InvoiceDraft", draft.invoice_draft_id, {"status": from_status}, after
        )
