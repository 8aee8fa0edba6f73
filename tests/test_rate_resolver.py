"""Tests for hourly rate resolution."""

import logging
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from engagement_ledger.calculators.pricing import EstimateRequest, JobRequest, PricingEngine
from engagement_ledger.calculators.rate_resolver import RateResolver, normalize_role
from engagement_ledger.errors import NoActiveRateCardError, ValidationFailedError
from engagement_ledger.models import RateCard, RateLine
from engagement_ledger.services.rate_card_service import RateCardService, RateLineInput


def _card(*lines: RateLine) -> RateCard:
    return RateCard(rate_card_id=uuid4(), tenant_id=uuid4(), name="t", version=1, lines=list(lines))


def _line(role: str, rate: str, person_id=None, currency="USD") -> RateLine:
    return RateLine(
        rate_line_id=uuid4(),
        role_name=role,
        person_id=person_id,
        hourly_rate=Decimal(rate),
        currency=currency,
    )


class TestRoleNormalization:
    def test_spacing_and_case_are_ignored(self):
        assert normalize_role("Senior Developer") == normalize_role("SeniorDeveloper")
        assert normalize_role("senior-developer") == normalize_role("SENIOR DEVELOPER")

    def test_different_roles_stay_different(self):
        assert normalize_role("Developer") != normalize_role("Senior Developer")


class TestRateMatching:
    """Match priority on an already-loaded card."""

    def test_person_specific_line_wins(self, session):
        person = uuid4()
        card = _card(
            _line("SeniorDeveloper", "150"),
            _line("SeniorDeveloper", "175", person_id=person),
        )
        resolved = RateResolver(session).match(card, "Senior Developer", person)

        assert resolved.hourly_rate == Decimal("175")
        assert resolved.matched_by == "person_and_role"

    def test_role_only_line_preferred_over_other_persons_line(self, session):
        card = _card(
            _line("Designer", "110", person_id=uuid4()),
            _line("Designer", "95"),
        )
        resolved = RateResolver(session).match(card, "designer", uuid4())

        assert resolved.hourly_rate == Decimal("95")
        assert resolved.matched_by == "role_only"

    def test_any_line_for_role_as_last_resort(self, session):
        card = _card(_line("Designer", "110", person_id=uuid4()))
        resolved = RateResolver(session).match(card, "Designer")

        assert resolved.hourly_rate == Decimal("110")
        assert resolved.matched_by == "any_role"

    def test_unknown_role_prices_at_zero_with_warning(self, session, caplog):
        card = _card(_line("Designer", "95"))
        with caplog.at_level(logging.WARNING, logger="engagement_ledger.calculators.rate_resolver"):
            resolved = RateResolver(session).match(card, "Astronaut")

        assert resolved.hourly_rate == Decimal("0.00")
        assert resolved.is_missing is True
        assert resolved.matched_by is None
        assert "Astronaut" in caplog.text

    def test_currency_follows_the_role_line(self, session):
        card = _card(_line("Designer", "95", currency="EUR"), _line("Translator", "60", currency="GBP"))
        resolver = RateResolver(session)

        assert resolver.currency_for(card, "translator") == "GBP"
        assert resolver.currency_for(card, "Astronaut") == "EUR"


class TestApplicableCard:
    """Card selection against the database."""

    @pytest.mark.asyncio
    async def test_no_card_raises(self, session, test_tenant):
        with pytest.raises(NoActiveRateCardError) as exc_info:
            await RateResolver(session).resolve(test_tenant.tenant_id, "Designer")

        assert exc_info.value.tenant_id == test_tenant.tenant_id

    @pytest.mark.asyncio
    async def test_resolve_from_active_card(self, session, test_tenant, rate_card):
        resolved = await RateResolver(session).resolve(test_tenant.tenant_id, "Senior Developer")

        assert resolved.hourly_rate == Decimal("150.00")
        assert resolved.rate_card_id == rate_card.rate_card_id

    @pytest.mark.asyncio
    async def test_future_dated_card_is_used_once_active(self, session, test_tenant, ctx, rate_card):
        future = await RateCardService(session).create_rate_card(
            ctx,
            name="Next quarter",
            effective_date=date.today() + timedelta(days=30),
            lines=[RateLineInput(role_name="Designer", hourly_rate=Decimal("100"))],
        )

        card = await RateResolver(session).get_applicable_card(test_tenant.tenant_id)
        assert card.rate_card_id == future.rate_card_id

        priced = await PricingEngine(session).price_jobs(
            test_tenant.tenant_id,
            [JobRequest(name="Design", estimates=[EstimateRequest(role_name="Designer", hours=Decimal("2"))])],
        )
        assert priced.rate_card_id == future.rate_card_id
        assert priced.total_amount == Decimal("200.00")


class TestRateCardService:
    @pytest.mark.asyncio
    async def test_new_card_deactivates_previous(self, session, ctx, rate_card):
        new_card = await RateCardService(session).create_rate_card(
            ctx,
            name="Standard 2025",
            effective_date=date(2025, 1, 1),
            lines=[RateLineInput(role_name="SeniorDeveloper", hourly_rate=Decimal("160"))],
        )
        await session.refresh(rate_card)

        assert new_card.version == rate_card.version + 1
        assert new_card.is_active is True
        assert rate_card.is_active is False

        resolved = await RateResolver(session).resolve(ctx.tenant_id, "SeniorDeveloper")
        assert resolved.hourly_rate == Decimal("160.00")

    @pytest.mark.asyncio
    async def test_card_requires_lines(self, session, ctx):
        with pytest.raises(ValidationFailedError):
            await RateCardService(session).create_rate_card(
                ctx, name="Empty", effective_date=date(2024, 1, 1), lines=[]
            )

    @pytest.mark.asyncio
    async def test_cards_are_per_tenant(self, session, ctx, other_ctx, rate_card):
        with pytest.raises(NoActiveRateCardError):
            await RateResolver(session).resolve(other_ctx.tenant_id, "SeniorDeveloper")
