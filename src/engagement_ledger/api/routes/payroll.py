"""Contractor payroll endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from engagement_ledger.api.dependencies import Context, DbSession, RateSourceDep, require_permission
from engagement_ledger.api.schemas import (
    ErrorResponse,
    PayRateCreate,
    PayRateResponse,
    PayRunCreate,
    PayRunResponse,
)
from engagement_ledger.context import ActorContext
from engagement_ledger.services.batch_export import BatchExportService
from engagement_ledger.services.fx_service import FxRateCache
from engagement_ledger.services.payroll_service import PayrollService

router = APIRouter(prefix="/payroll", tags=["payroll"])

CanManage = Annotated[ActorContext, require_permission("payroll:manage")]


@router.post(
    "/pay-rates",
    response_model=PayRateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def set_pay_rate(
    db: DbSession,
    ctx: CanManage,
    payload: PayRateCreate,
) -> PayRateResponse:
    pay_rate = await PayrollService(db).set_pay_rate(
        ctx,
        payload.user_id,
        payload.hourly_rate,
        payload.currency,
        payload.effective_date,
    )
    response = PayRateResponse.model_validate(pay_rate)
    await db.commit()
    return response


@router.post(
    "/runs",
    response_model=PayRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_pay_run(
    db: DbSession,
    ctx: CanManage,
    fx_source: RateSourceDep,
    payload: PayRunCreate,
) -> PayRunResponse:
    """Create a DRAFT pay run from approved contractor hours in the period."""
    payroll = PayrollService(db, fx=FxRateCache(db, source=fx_source))
    run = await payroll.create_run(ctx, payload.period_start, payload.period_end)
    response = PayRunResponse.model_validate(run)
    await db.commit()
    return response


@router.get(
    "/runs/{pay_run_id}",
    response_model=PayRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_pay_run(
    db: DbSession,
    ctx: Context,
    pay_run_id: Annotated[UUID, Path()],
) -> PayRunResponse:
    run = await PayrollService(db).get_run(ctx, pay_run_id)
    return PayRunResponse.model_validate(run)


@router.post(
    "/runs/{pay_run_id}/submit",
    response_model=PayRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_pay_run(
    db: DbSession,
    ctx: CanManage,
    pay_run_id: Annotated[UUID, Path()],
) -> PayRunResponse:
    run = await PayrollService(db).submit_run(ctx, pay_run_id)
    response = PayRunResponse.model_validate(run)
    await db.commit()
    return response


@router.post(
    "/runs/{pay_run_id}/approve",
    response_model=PayRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_pay_run(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("payroll:approve")],
    pay_run_id: Annotated[UUID, Path()],
) -> PayRunResponse:
    run = await PayrollService(db).approve_run(ctx, pay_run_id)
    response = PayRunResponse.model_validate(run)
    await db.commit()
    return response


@router.post(
    "/runs/{pay_run_id}/wise-export",
    response_class=Response,
    responses={
        200: {"content": {"text/csv": {}}},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def export_pay_run(
    db: DbSession,
    ctx: CanManage,
    pay_run_id: Annotated[UUID, Path()],
    mark_exported: Annotated[bool, Query()] = False,
) -> Response:
    """Download the payment batch CSV for an approved run."""
    export = await BatchExportService(db).export_run(ctx, pay_run_id, mark_exported=mark_exported)
    await db.commit()
    return Response(
        content=export.content,
        media_type=export.content_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )
