"""Pricing engine - prices proposed jobs from the active rate card."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.calculators.money import line_total, money_sum, quantize_hours
from engagement_ledger.calculators.rate_resolver import RateResolver, ResolvedRate
from engagement_ledger.errors import ValidationFailedError
from engagement_ledger.models import RateCard


@dataclass(frozen=True)
class EstimateRequest:
    """Hours requested for a role on a job."""

    role_name: str
    hours: Decimal
    person_id: UUID | None = None


@dataclass(frozen=True)
class JobRequest:
    """A job to be priced."""

    name: str
    estimates: Sequence[EstimateRequest] = ()
    scope: str | None = None


@dataclass
class PricedEstimate:
    role_name: str
    hours: Decimal
    hourly_rate: Decimal
    line_total: Decimal
    person_id: UUID | None = None
    matched_by: str | None = None


@dataclass
class PricedJob:
    name: str
    scope: str | None
    estimates: list[PricedEstimate] = field(default_factory=list)
    line_total: Decimal = Decimal("0.00")


@dataclass
class PricedProposal:
    """Pricing output; total_amount always equals the sum of job totals."""

    jobs: list[PricedJob]
    total_amount: Decimal
    rate_card_id: UUID
    unpriced_roles: list[str] = field(default_factory=list)


class PricingEngine:
    """Prices jobs as sum(hours x rate) per role, using one rate card for the whole batch."""

    def __init__(self, session: AsyncSession, resolver: RateResolver | None = None):
        self.session = session
        self.resolver = resolver or RateResolver(session)

    async def price_jobs(
        self,
        tenant_id: UUID,
        jobs: Sequence[JobRequest],
    ) -> PricedProposal:
        """Price a set of jobs.

        Raises:
            NoActiveRateCardError: If the tenant has no active card
            ValidationFailedError: If a job or estimate is malformed
        """
        card = await self.resolver.get_applicable_card(tenant_id)
        return self.price_with_card(card, jobs)

    def price_with_card(self, card: RateCard, jobs: Sequence[JobRequest]) -> PricedProposal:
        """Deterministic pricing against an already-loaded card."""
        priced_jobs: list[PricedJob] = []
        unpriced: list[str] = []

        for job in jobs:
            if not job.name or not job.name.strip():
                raise ValidationFailedError("Job name is required")

            priced = PricedJob(name=job.name, scope=job.scope)
            for estimate in job.estimates:
                resolved = self.resolver.match(card, estimate.role_name, estimate.person_id)
                if resolved.is_missing:
                    unpriced.append(estimate.role_name)
                priced.estimates.append(self.price_estimate(estimate, resolved))

            priced.line_total = money_sum(e.line_total for e in priced.estimates)
            priced_jobs.append(priced)

        return PricedProposal(
            jobs=priced_jobs,
            total_amount=money_sum(j.line_total for j in priced_jobs),
            rate_card_id=card.rate_card_id,
            unpriced_roles=unpriced,
        )

    @staticmethod
    def price_estimate(
        estimate: EstimateRequest,
        resolved: ResolvedRate,
    ) -> PricedEstimate:
        """Price one estimate line."""
        if not estimate.role_name or not estimate.role_name.strip():
            raise ValidationFailedError("Estimate roleName is required")
        hours = quantize_hours(estimate.hours)
        if hours < 0:
            raise ValidationFailedError(
                f"Estimate hours must not be negative (got {hours})",
                role_name=estimate.role_name,
            )
        return PricedEstimate(
            role_name=estimate.role_name,
            hours=hours,
            hourly_rate=resolved.hourly_rate,
            line_total=line_total(hours, resolved.hourly_rate),
            person_id=estimate.person_id,
            matched_by=resolved.matched_by,
        )
