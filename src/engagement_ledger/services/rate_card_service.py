"""Rate card creation with single-active-card enforcement."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engagement_ledger.calculators.money import quantize_money, to_decimal
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import ValidationFailedError
from engagement_ledger.models import RateCard, RateLine
from engagement_ledger.services.audit_service import AuditRecorder, snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLineInput:
    role_name: str
    hourly_rate: Decimal
    currency: str = "USD"
    person_id: UUID | None = None


class RateCardService:
    """Creates rate cards.

    The "one active card per tenant" rule is kept by the write path: all of
    the tenant's active cards are deactivated and the new card inserted as
    active within the same transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditRecorder(session)

    async def create_rate_card(
        self,
        ctx: ActorContext,
        name: str,
        effective_date: date,
        lines: Sequence[RateLineInput],
    ) -> RateCard:
        """Create and activate a new rate card version."""
        if not name or not name.strip():
            raise ValidationFailedError("Rate card name is required")
        if effective_date is None:
            raise ValidationFailedError("effectiveDate is required")
        if not lines:
            raise ValidationFailedError("At least one rate line is required")
        for line in lines:
            if not line.role_name or not line.role_name.strip():
                raise ValidationFailedError("Rate line roleName is required")
            if to_decimal(line.hourly_rate) < 0:
                raise ValidationFailedError(
                    f"Hourly rate for {line.role_name!r} must not be negative"
                )

        latest_version = await self.session.scalar(
            select(func.max(RateCard.version)).where(RateCard.tenant_id == ctx.tenant_id)
        )
        next_version = (latest_version or 0) + 1

        # Deactivate previous active cards
        deactivated = await self.session.execute(
            update(RateCard)
            .where(RateCard.tenant_id == ctx.tenant_id, RateCard.is_active.is_(True))
            .values(is_active=False)
            .returning(RateCard.rate_card_id)
            .execution_options(synchronize_session=False)
        )
        deactivated_ids = list(deactivated.scalars().all())

        card = RateCard(
            rate_card_id=uuid4(),
            tenant_id=ctx.tenant_id,
            name=name.strip(),
            version=next_version,
            effective_date=effective_date,
            is_active=True,
        )
        self.session.add(card)
        for line in lines:
            self.session.add(
                RateLine(
                    rate_line_id=uuid4(),
                    rate_card_id=card.rate_card_id,
                    role_name=line.role_name.strip(),
                    person_id=line.person_id,
                    hourly_rate=quantize_money(line.hourly_rate),
                    currency=(line.currency or "USD").upper(),
                )
            )
        await self.session.flush()

        for card_id in deactivated_ids:
            await self.audit.record_update(
                ctx, "RateCard", card_id, {"is_active": True}, {"is_active": False}
            )
        await self.audit.record_create(
            ctx,
            "RateCard",
            card.rate_card_id,
            {**snapshot(card), "lines": [_line_payload(l) for l in lines]},
        )
        await self.session.flush()

        logger.info(
            "Activated rate card %s v%d for tenant %s (deactivated %d)",
            card.rate_card_id,
            next_version,
            ctx.tenant_id,
            len(deactivated_ids),
        )
        return await self.get_rate_card(ctx, card.rate_card_id)

    async def get_rate_card(self, ctx: ActorContext, rate_card_id: UUID) -> RateCard:
        result = await self.session.execute(
            select(RateCard)
            .where(RateCard.rate_card_id == rate_card_id, RateCard.tenant_id == ctx.tenant_id)
            .options(selectinload(RateCard.lines))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()


def _line_payload(line: RateLineInput) -> dict[str, object]:
    return {
        "role_name": line.role_name,
        "hourly_rate": str(quantize_money(line.hourly_rate)),
        "currency": line.currency,
        "person_id": str(line.person_id) if line.person_id else None,
    }
