"""Client request, proposal, job and estimate endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from engagement_ledger.api.dependencies import Context, DbSession, require_permission
from engagement_ledger.api.schemas import (
    ApprovalResponse,
    ClientRequestCreate,
    ClientRequestResponse,
    DecisionRequest,
    DecisionResponse,
    ErrorResponse,
    EstimateCreate,
    EstimateResponse,
    JobCreate,
    JobResponse,
    ProposalCreate,
    ProposalResponse,
)
from engagement_ledger.calculators.pricing import EstimateRequest, JobRequest
from engagement_ledger.context import ActorContext
from engagement_ledger.services.proposal_service import ProposalService

router = APIRouter(tags=["proposals"])

CanEdit = Annotated[ActorContext, require_permission("proposals:edit")]


def _job_request(job: JobCreate) -> JobRequest:
    return JobRequest(
        name=job.name,
        scope=job.scope,
        estimates=[
            EstimateRequest(role_name=e.role_name, hours=e.hours, person_id=e.person_id)
            for e in job.estimates
        ],
    )


@router.post(
    "/requests",
    response_model=ClientRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_request(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("requests:create")],
    payload: ClientRequestCreate,
) -> ClientRequestResponse:
    request = await ProposalService(db).create_request(
        ctx, payload.title, payload.client_name, payload.description
    )
    response = ClientRequestResponse.model_validate(request)
    await db.commit()
    return response


@router.post(
    "/proposals",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_proposal(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("proposals:create")],
    payload: ProposalCreate,
) -> ProposalResponse:
    """Create the next proposal version for a request, priced from the active rate card."""
    proposal = await ProposalService(db).create_proposal(
        ctx,
        payload.request_id,
        jobs=[_job_request(job) for job in payload.jobs],
        pricing_model=payload.pricing_model,
        notes=payload.notes,
    )
    response = ProposalResponse.model_validate(proposal)
    await db.commit()
    return response


@router.get(
    "/proposals/{proposal_id}",
    response_model=ProposalResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_proposal(
    db: DbSession,
    ctx: Context,
    proposal_id: Annotated[UUID, Path()],
) -> ProposalResponse:
    proposal = await ProposalService(db).get_proposal(ctx, proposal_id)
    return ProposalResponse.model_validate(proposal)


@router.post(
    "/proposals/{proposal_id}/jobs",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def add_job(
    db: DbSession,
    ctx: CanEdit,
    proposal_id: Annotated[UUID, Path()],
    payload: JobCreate,
) -> JobResponse:
    job = await ProposalService(db).add_job(ctx, proposal_id, _job_request(payload))
    response = JobResponse.model_validate(job)
    await db.commit()
    return response


@router.post(
    "/jobs/{job_id}/estimates",
    response_model=EstimateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def add_estimate(
    db: DbSession,
    ctx: CanEdit,
    job_id: Annotated[UUID, Path()],
    payload: EstimateCreate,
) -> EstimateResponse:
    """Add an estimate; job and proposal totals move with it."""
    estimate = await ProposalService(db).add_estimate(
        ctx,
        job_id,
        role_name=payload.role_name,
        hours=payload.hours,
        hourly_rate=payload.hourly_rate,
        person_id=payload.person_id,
    )
    response = EstimateResponse.model_validate(estimate)
    await db.commit()
    return response


@router.post(
    "/proposals/{proposal_id}/submit",
    response_model=ProposalResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_proposal(
    db: DbSession,
    ctx: CanEdit,
    proposal_id: Annotated[UUID, Path()],
) -> ProposalResponse:
    proposal = await ProposalService(db).submit(ctx, proposal_id)
    response = ProposalResponse.model_validate(proposal)
    await db.commit()
    return response


@router.post(
    "/proposals/{proposal_id}/approve",
    response_model=DecisionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def decide_proposal(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("proposals:approve")],
    proposal_id: Annotated[UUID, Path()],
    payload: DecisionRequest,
) -> DecisionResponse:
    """Record an internal review or client decision.

    A client approval provisions the delivery project in the same commit.
    """
    result = await ProposalService(db).decide(
        ctx,
        proposal_id,
        approval_type=payload.approval_type,
        decision=payload.decision,
        notes=payload.notes,
        terms_accepted=payload.terms_accepted,
    )
    response = DecisionResponse(
        proposal=ProposalResponse.model_validate(result.proposal),
        approval=ApprovalResponse.model_validate(result.approval),
        project_id=result.project.project_id if result.project else None,
    )
    await db.commit()
    return response


@router.post(
    "/proposals/{proposal_id}/revise",
    response_model=ProposalResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def revise_proposal(
    db: DbSession,
    ctx: CanEdit,
    proposal_id: Annotated[UUID, Path()],
) -> ProposalResponse:
    proposal = await ProposalService(db).revise(ctx, proposal_id)
    response = ProposalResponse.model_validate(proposal)
    await db.commit()
    return response


@router.post(
    "/proposals/{proposal_id}/send",
    response_model=ProposalResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def send_proposal(
    db: DbSession,
    ctx: CanEdit,
    proposal_id: Annotated[UUID, Path()],
) -> ProposalResponse:
    proposal = await ProposalService(db).send_to_client(ctx, proposal_id)
    response = ProposalResponse.model_validate(proposal)
    await db.commit()
    return response
