"""API fixtures: the FastAPI app wired to the in-memory test database."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement_ledger.api.app import create_app
from engagement_ledger.api.dependencies import get_db_session, get_fx_rate_source
from engagement_ledger.models import AppUser, Tenant

from ..conftest import FakeFxSource


@dataclass
class SeedData:
    tenant_id: UUID
    pm_id: UUID
    contractor_id: UUID

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-Tenant-ID": str(self.tenant_id),
            "X-Actor-ID": str(self.pm_id),
            "X-Role": "PM",
        }


@pytest.fixture
def fx_source() -> FakeFxSource:
    return FakeFxSource({"USD": {"PHP": "56", "EUR": "0.92"}})


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession], fx_source: FakeFxSource) -> FastAPI:
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_fx_rate_source] = lambda: fx_source
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> SeedData:
    """Commit a USD tenant with a project manager and a contractor."""
    data = SeedData(tenant_id=uuid4(), pm_id=uuid4(), contractor_id=uuid4())
    async with session_factory() as session:
        session.add(Tenant(tenant_id=data.tenant_id, name="Northwind Consulting", base_currency="USD"))
        await session.flush()
        session.add_all(
            [
                AppUser(
                    user_id=data.pm_id,
                    tenant_id=data.tenant_id,
                    first_name="Priya",
                    last_name="Raman",
                    email="priya@northwind.test",
                    user_type="INTERNAL",
                ),
                AppUser(
                    user_id=data.contractor_id,
                    tenant_id=data.tenant_id,
                    first_name="Maria",
                    last_name="Santos",
                    email="maria@example.ph",
                    user_type="INTERNAL",
                ),
            ]
        )
        await session.commit()
    return data
