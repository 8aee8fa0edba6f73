"""Invoice draft and invoice endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from engagement_ledger.api.dependencies import DbSession, require_permission
from engagement_ledger.api.schemas import (
    ErrorResponse,
    InvoiceDraftCreate,
    InvoiceDraftResponse,
    InvoiceResponse,
    RejectRequest,
    VoidRequest,
)
from engagement_ledger.context import ActorContext
from engagement_ledger.services.invoice_service import InvoiceLineInput, InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])

CanCreate = Annotated[ActorContext, require_permission("invoices:create")]
CanApprove = Annotated[ActorContext, require_permission("invoices:approve")]


@router.post(
    "/drafts",
    response_model=InvoiceDraftResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
)
async def create_draft(
    db: DbSession,
    ctx: CanCreate,
    payload: InvoiceDraftCreate,
) -> InvoiceDraftResponse:
    draft = await InvoiceService(db).create_draft(
        ctx,
        payload.project_id,
        [
            InvoiceLineInput(
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in payload.line_items
        ],
        notes=payload.notes,
    )
    response = InvoiceDraftResponse.model_validate(draft)
    await db.commit()
    return response


@router.post(
    "/drafts/{draft_id}/submit",
    response_model=InvoiceDraftResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_draft(
    db: DbSession,
    ctx: CanCreate,
    draft_id: Annotated[UUID, Path()],
) -> InvoiceDraftResponse:
    draft = await InvoiceService(db).submit_draft(ctx, draft_id)
    response = InvoiceDraftResponse.model_validate(draft)
    await db.commit()
    return response


@router.post(
    "/drafts/{draft_id}/approve",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_draft(
    db: DbSession,
    ctx: CanApprove,
    draft_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    """Approve a draft and issue the numbered invoice."""
    invoice = await InvoiceService(db).approve_draft(ctx, draft_id)
    response = InvoiceResponse.model_validate(invoice)
    await db.commit()
    return response


@router.post(
    "/drafts/{draft_id}/reject",
    response_model=InvoiceDraftResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reject_draft(
    db: DbSession,
    ctx: CanApprove,
    draft_id: Annotated[UUID, Path()],
    payload: RejectRequest,
) -> InvoiceDraftResponse:
    draft = await InvoiceService(db).reject_draft(ctx, draft_id, payload.reason)
    response = InvoiceDraftResponse.model_validate(draft)
    await db.commit()
    return response


@router.post(
    "/{invoice_id}/void",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def void_invoice(
    db: DbSession,
    ctx: CanApprove,
    invoice_id: Annotated[UUID, Path()],
    payload: VoidRequest,
) -> InvoiceResponse:
    invoice = await InvoiceService(db).void_invoice(ctx, invoice_id, payload.reason)
    response = InvoiceResponse.model_validate(invoice)
    await db.commit()
    return response
