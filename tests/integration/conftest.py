"""Integration test fixtures: the API wired to an in-memory database."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worktime_engine.api.app import create_app
from worktime_engine.api.dependencies import get_db_session
from worktime_engine.models import Employee


@dataclass
class SeededOrganization:
    organization_id: UUID
    team_id: UUID
    alice_id: UUID
    bob_id: UUID

    @property
    def headers(self) -> dict[str, str]:
        return {"X-Organization-ID": str(self.organization_id)}


@pytest.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> SeededOrganization:
    """One organization with two employees, Alice on a team and Bob without."""
    seeded = SeededOrganization(
        organization_id=uuid4(),
        team_id=uuid4(),
        alice_id=uuid4(),
        bob_id=uuid4(),
    )
    async with session_factory() as session:
        session.add_all(
            [
                Employee(
                    employee_id=seeded.alice_id,
                    organization_id=seeded.organization_id,
                    team_id=seeded.team_id,
                    display_name="Alice Example",
                ),
                Employee(
                    employee_id=seeded.bob_id,
                    organization_id=seeded.organization_id,
                    team_id=None,
                    display_name="Bob Example",
                ),
            ]
        )
        await session.commit()
    return seeded
