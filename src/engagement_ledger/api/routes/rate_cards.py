"""Rate card API endpoints."""

from typing import Annotated

from fastapi import APIRouter, status

from engagement_ledger.api.dependencies import DbSession, require_permission
from engagement_ledger.api.schemas import ErrorResponse, RateCardCreate, RateCardResponse
from engagement_ledger.context import ActorContext
from engagement_ledger.services.rate_card_service import RateCardService, RateLineInput

router = APIRouter(prefix="/rate-cards", tags=["rate-cards"])


@router.post(
    "",
    response_model=RateCardResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_rate_card(
    db: DbSession,
    ctx: Annotated[ActorContext, require_permission("rate_cards:manage")],
    payload: RateCardCreate,
) -> RateCardResponse:
    """Create a rate card and make it the tenant's only active card."""
    card = await RateCardService(db).create_rate_card(
        ctx,
        name=payload.name,
        effective_date=payload.effective_date,
        lines=[
            RateLineInput(
                role_name=line.role_name,
                hourly_rate=line.hourly_rate,
                currency=line.currency,
                person_id=line.person_id,
            )
            for line in payload.lines
        ],
    )
    response = RateCardResponse.model_validate(card)
    await db.commit()
    return response
