"""Project staffing and time entry endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from engagement_ledger.api.dependencies import DbSession, require_permission
from engagement_ledger.api.schemas import (
    AssignmentCreate,
    AssignmentResponse,
    ErrorResponse,
    TimeEntryCreate,
    TimeEntryResponse,
    TimeReviewRequest,
    TimeReviewResponse,
)
from engagement_ledger.context import ActorContext
from engagement_ledger.services.time_entry_service import TimeEntryService

router = APIRouter(tags=["time"])


@router.post(
    "/projects/{project_id}/assignments",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
)
async def assign_user(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("projects:edit")],
    project_id: Annotated[UUID, Path()],
    payload: AssignmentCreate,
) -> AssignmentResponse:
    assignment = await TimeEntryService(db).assign_user(
        ctx, project_id, payload.user_id, payload.assignment_type
    )
    response = AssignmentResponse.model_validate(assignment)
    await db.commit()
    return response


@router.post(
    "/time-entries",
    response_model=TimeEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
)
async def log_time(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("time:log")],
    payload: TimeEntryCreate,
) -> TimeEntryResponse:
    entry = await TimeEntryService(db).log_time(
        ctx,
        payload.project_job_id,
        payload.user_id,
        payload.work_date,
        payload.hours,
        notes=payload.notes,
        source=payload.source,
    )
    response = TimeEntryResponse.model_validate(entry)
    await db.commit()
    return response


@router.patch(
    "/time-entries/review",
    response_model=TimeReviewResponse,
)
async def review_time(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("time:approve")],
    payload: TimeReviewRequest,
) -> TimeReviewResponse:
    """Bulk approve or reject; rejected entries are deleted."""
    result = await TimeEntryService(db).review(ctx, payload.ids, payload.action)
    await db.commit()
    return TimeReviewResponse(action=result.action, processed=result.processed)
