"""Hourly rate resolution against the tenant's active rate card."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engagement_ledger.calculators.money import ZERO
from engagement_ledger.errors import NoActiveRateCardError
from engagement_ledger.models import RateCard, RateLine

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def normalize_role(role_name: str) -> str:
    """Compare roles ignoring case, spacing and punctuation ("Senior Developer" == "SeniorDeveloper")."""
    return _NON_ALNUM.sub("", role_name.casefold())


@dataclass(frozen=True)
class RateMatcher:
    """One rung of the fallback chain."""

    name: str
    predicate: Callable[[RateLine, str, UUID | None], bool]

    def find(self, lines: list[RateLine], role_key: str, person_id: UUID | None) -> RateLine | None:
        for line in lines:
            if self.predicate(line, role_key, person_id):
                return line
        return None


def _same_role(line: RateLine, role_key: str) -> bool:
    return normalize_role(line.role_name) == role_key


# Tried in order; the first hit wins.
RATE_MATCHERS: tuple[RateMatcher, ...] = (
    RateMatcher(
        "person_and_role",
        lambda line, role_key, person_id: (
            person_id is not None and line.person_id == person_id and _same_role(line, role_key)
        ),
    ),
    RateMatcher(
        "role_only",
        lambda line, role_key, person_id: line.person_id is None and _same_role(line, role_key),
    ),
    RateMatcher(
        "any_role",
        lambda line, role_key, person_id: _same_role(line, role_key),
    ),
)


@dataclass(frozen=True)
class ResolvedRate:
    """Outcome of a rate lookup; hourly_rate is zero when nothing matched."""

    hourly_rate: Decimal
    currency: str
    rate_card_id: UUID
    rate_line_id: UUID | None = None
    matched_by: str | None = None

    @property
    def is_missing(self) -> bool:
        return self.rate_line_id is None


class RateResolver:
    """Resolves role/person hourly rates.

    Card selection: the tenant's active card, whatever its effective_date.
    Line selection walks RATE_MATCHERS in order.
    """

    def __init__(self, session: AsyncSession, matchers: tuple[RateMatcher, ...] = RATE_MATCHERS):
        self.session = session
        self.matchers = matchers

    async def get_applicable_card(self, tenant_id: UUID) -> RateCard:
        """Load the tenant's active card with its lines.

        Raises:
            NoActiveRateCardError: If the tenant has no active card
        """
        result = await self.session.execute(
            select(RateCard)
            .where(
                RateCard.tenant_id == tenant_id,
                RateCard.is_active.is_(True),
            )
            .order_by(RateCard.version.desc())
            .options(selectinload(RateCard.lines))
            .limit(1)
        )
        card = result.scalar_one_or_none()
        if card is None:
            raise NoActiveRateCardError(tenant_id)
        return card

    def find_line(
        self, card: RateCard, role_name: str, person_id: UUID | None = None
    ) -> tuple[RateLine, str] | None:
        """First line hit by the matcher chain, with the matcher's name."""
        role_key = normalize_role(role_name)
        lines = list(card.lines)
        for matcher in self.matchers:
            line = matcher.find(lines, role_key, person_id)
            if line is not None:
                return line, matcher.name
        return None

    def currency_for(self, card: RateCard, role_name: str, person_id: UUID | None = None) -> str:
        """Currency of the line that would price this role, else the card's."""
        found = self.find_line(card, role_name, person_id)
        if found is not None:
            return found[0].currency
        return card.lines[0].currency if card.lines else "USD"

    def match(
        self,
        card: RateCard,
        role_name: str,
        person_id: UUID | None = None,
    ) -> ResolvedRate:
        """Find the best line on an already-loaded card."""
        found = self.find_line(card, role_name, person_id)
        if found is not None:
            line, matched_by = found
            return ResolvedRate(
                hourly_rate=line.hourly_rate,
                currency=line.currency,
                rate_card_id=card.rate_card_id,
                rate_line_id=line.rate_line_id,
                matched_by=matched_by,
            )

        logger.warning(
            "No rate line for role %r (person %s) on rate card %s v%s; pricing at zero",
            role_name,
            person_id,
            card.rate_card_id,
            card.version,
        )
        return ResolvedRate(
            hourly_rate=ZERO,
            currency=card.lines[0].currency if card.lines else "USD",
            rate_card_id=card.rate_card_id,
        )

    async def resolve(
        self,
        tenant_id: UUID,
        role_name: str,
        person_id: UUID | None = None,
    ) -> ResolvedRate:
        """Resolve the hourly rate for a role (and optional person)."""
        card = await self.get_applicable_card(tenant_id)
        return self.match(card, role_name, person_id)
