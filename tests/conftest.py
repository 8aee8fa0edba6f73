"""Pytest fixtures for engagement ledger tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Mapping
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from engagement_ledger.calculators.pricing import EstimateRequest, JobRequest
from engagement_ledger.context import ActorContext
from engagement_ledger.database import create_schema, make_session_factory
from engagement_ledger.errors import RateSourceUnreachableError
from engagement_ledger.models import AppUser, Project, RateCard, Tenant
from engagement_ledger.services.proposal_service import ProposalService
from engagement_ledger.services.rate_card_service import RateCardService, RateLineInput

# Use in-memory SQLite for tests (with async support)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeFxSource:
    """In-memory rate source that records which bases were fetched."""

    name = "fake-fx"

    def __init__(self, rates: Mapping[str, Mapping[str, str]] | None = None, fail: bool = False):
        self.rates = rates or {}
        self.fail = fail
        self.calls: list[str] = []

    async def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        self.calls.append(base_currency)
        if self.fail:
            raise RateSourceUnreachableError(f"fake source down for {base_currency}")
        return {code: Decimal(value) for code, value in self.rates.get(base_currency, {}).items()}


@pytest.fixture
async def engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def test_tenant(session: AsyncSession) -> Tenant:
    """Create a test tenant with USD as base currency."""
    tenant = Tenant(tenant_id=uuid4(), name="Northwind Consulting", base_currency="USD")
    session.add(tenant)
    await session.flush()
    return tenant


@pytest.fixture
async def other_tenant(session: AsyncSession) -> Tenant:
    tenant = Tenant(tenant_id=uuid4(), name="Contoso Partners", base_currency="EUR")
    session.add(tenant)
    await session.flush()
    return tenant


@pytest.fixture
async def project_manager(session: AsyncSession, test_tenant: Tenant) -> AppUser:
    user = AppUser(
        user_id=uuid4(),
        tenant_id=test_tenant.tenant_id,
        first_name="Priya",
        last_name="Raman",
        email="priya@northwind.test",
        user_type="INTERNAL",
    )
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def contractor(session: AsyncSession, test_tenant: Tenant) -> AppUser:
    user = AppUser(
        user_id=uuid4(),
        tenant_id=test_tenant.tenant_id,
        first_name="Maria",
        last_name="Santos",
        email="maria@example.ph",
        user_type="INTERNAL",
    )
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
def ctx(test_tenant: Tenant, project_manager: AppUser) -> ActorContext:
    """Actor context for the project manager."""
    return ActorContext(
        tenant_id=test_tenant.tenant_id,
        actor_id=project_manager.user_id,
        actor_type="INTERNAL",
        role="PM",
        ip_address="10.0.0.5",
    )


@pytest.fixture
def other_ctx(other_tenant: Tenant) -> ActorContext:
    return ActorContext(tenant_id=other_tenant.tenant_id, actor_id=uuid4())


@pytest.fixture
async def rate_card(session: AsyncSession, ctx: ActorContext) -> RateCard:
    """Active rate card v1 effective from 2024-01-01."""
    return await RateCardService(session).create_rate_card(
        ctx,
        name="Standard 2024",
        effective_date=date(2024, 1, 1),
        lines=[
            RateLineInput(role_name="SeniorDeveloper", hourly_rate=Decimal("150.00")),
            RateLineInput(role_name="Designer", hourly_rate=Decimal("95.00")),
            RateLineInput(role_name="Project Manager", hourly_rate=Decimal("120.00")),
        ],
    )


@pytest.fixture
async def approved_project(session: AsyncSession, ctx: ActorContext, rate_card: RateCard) -> Project:
    """Walk a proposal through review and client approval."""
    service = ProposalService(session)
    request = await service.create_request(ctx, "Customer portal rebuild", "Acme Retail")
    proposal = await service.create_proposal(
        ctx,
        request.request_id,
        jobs=[
            JobRequest(
                name="Build",
                estimates=[
                    EstimateRequest(role_name="Senior Developer", hours=Decimal("40")),
                    EstimateRequest(role_name="Designer", hours=Decimal("10")),
                ],
            )
        ],
    )
    await service.submit(ctx, proposal.proposal_id)
    await service.decide(ctx, proposal.proposal_id, "INTERNAL_REVIEW", "APPROVED")
    result = await service.decide(
        ctx, proposal.proposal_id, "CLIENT_APPROVAL", "APPROVED", terms_accepted=True
    )
    assert result.project is not None
    return result.project
