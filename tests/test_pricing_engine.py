"""Tests for proposal pricing."""

from decimal import Decimal

import pytest

from engagement_ledger.calculators.money import line_total, money_sum, quantize_hours, quantize_money
from engagement_ledger.calculators.pricing import EstimateRequest, JobRequest, PricingEngine
from engagement_ledger.errors import NoActiveRateCardError, ValidationFailedError


class TestMoney:
    def test_half_up_rounding(self):
        assert quantize_money("2.345") == Decimal("2.35")
        assert quantize_money("2.344") == Decimal("2.34")

    def test_float_input_keeps_its_decimal_text(self):
        assert quantize_money(0.1 + 0.2) == Decimal("0.30")

    def test_line_total_rounds_once(self):
        assert line_total("7.5", "33.333") == Decimal("250.00")

    def test_money_sum(self):
        assert money_sum(["0.10", "0.20", Decimal("0.30")]) == Decimal("0.60")

    def test_hours_round_to_two_places(self):
        assert quantize_hours("1.333") == Decimal("1.33")
        assert quantize_hours("1.335") == Decimal("1.34")


class TestPricingEngine:
    """Test pricing against the active rate card."""

    @pytest.mark.asyncio
    async def test_senior_developer_ten_hours(self, session, test_tenant, rate_card):
        """10h of 'Senior Developer' against SeniorDeveloper @ 150 prices to 1500.00."""
        priced = await PricingEngine(session).price_jobs(
            test_tenant.tenant_id,
            [JobRequest(name="Build", estimates=[EstimateRequest("Senior Developer", Decimal("10"))])],
        )

        job = priced.jobs[0]
        assert job.estimates[0].hourly_rate == Decimal("150.00")
        assert job.estimates[0].line_total == Decimal("1500.00")
        assert job.line_total == Decimal("1500.00")
        assert priced.total_amount == Decimal("1500.00")
        assert priced.rate_card_id == rate_card.rate_card_id

    @pytest.mark.asyncio
    async def test_hours_priced_at_stored_precision(self, session, test_tenant, rate_card):
        priced = await PricingEngine(session).price_jobs(
            test_tenant.tenant_id,
            [JobRequest(name="Build", estimates=[EstimateRequest("Senior Developer", Decimal("1.333"))])],
        )

        estimate = priced.jobs[0].estimates[0]
        assert estimate.hours == Decimal("1.33")
        assert estimate.line_total == Decimal("199.50")
        assert estimate.line_total == quantize_money(estimate.hours * estimate.hourly_rate)

    @pytest.mark.asyncio
    async def test_total_is_sum_of_jobs(self, session, test_tenant, rate_card):
        priced = await PricingEngine(session).price_jobs(
            test_tenant.tenant_id,
            [
                JobRequest(
                    name="Design",
                    estimates=[
                        EstimateRequest("Designer", Decimal("12.5")),
                        EstimateRequest("Project Manager", Decimal("2")),
                    ],
                ),
                JobRequest(name="Build", estimates=[EstimateRequest("SeniorDeveloper", Decimal("8"))]),
            ],
        )

        assert [j.line_total for j in priced.jobs] == [Decimal("1427.50"), Decimal("1200.00")]
        assert priced.total_amount == Decimal("2627.50")
        assert priced.unpriced_roles == []

    @pytest.mark.asyncio
    async def test_unknown_role_is_reported(self, session, test_tenant, rate_card):
        priced = await PricingEngine(session).price_jobs(
            test_tenant.tenant_id,
            [JobRequest(name="Ops", estimates=[EstimateRequest("Astronaut", Decimal("3"))])],
        )

        assert priced.total_amount == Decimal("0.00")
        assert priced.unpriced_roles == ["Astronaut"]

    @pytest.mark.asyncio
    async def test_pricing_is_deterministic(self, session, test_tenant, rate_card):
        jobs = [JobRequest(name="Build", estimates=[EstimateRequest("Designer", Decimal("3.33"))])]
        engine = PricingEngine(session)

        first = await engine.price_jobs(test_tenant.tenant_id, jobs)
        second = await engine.price_jobs(test_tenant.tenant_id, jobs)

        assert first == second

    @pytest.mark.asyncio
    async def test_negative_hours_rejected(self, session, test_tenant, rate_card):
        with pytest.raises(ValidationFailedError):
            await PricingEngine(session).price_jobs(
                test_tenant.tenant_id,
                [JobRequest(name="Build", estimates=[EstimateRequest("Designer", Decimal("-1"))])],
            )

    @pytest.mark.asyncio
    async def test_requires_active_card(self, session, test_tenant):
        with pytest.raises(NoActiveRateCardError):
            await PricingEngine(session).price_jobs(
                test_tenant.tenant_id,
                [JobRequest(name="Build", estimates=[EstimateRequest("Designer", Decimal("1"))])],
            )
