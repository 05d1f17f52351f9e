"""Pytest fixtures for worktime engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worktime_engine.calculators.types import AnySplitOption, BreakRuleSpec
from worktime_engine.database import create_engine_for_url, create_schema, make_session_factory
from worktime_engine.models import Employee, SurchargeModel, WorkingTimeRegulation
from worktime_engine.services.policy_admin import PolicyAdminService

# In-memory SQLite; each test gets a fresh database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

UTC = ZoneInfo("UTC")


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_engine_for_url(TEST_DATABASE_URL)
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
def zone() -> ZoneInfo:
    return UTC


@pytest.fixture
def organization_id():
    return uuid4()


@pytest.fixture
def team_id():
    return uuid4()


@pytest.fixture
async def employee(session, organization_id, team_id) -> Employee:
    """Employee on a team in the test organization."""
    employee = Employee(
        employee_id=uuid4(),
        organization_id=organization_id,
        team_id=team_id,
        display_name="Alice Example",
    )
    session.add(employee)
    await session.flush()
    return employee


@pytest.fixture
async def other_employee(session, organization_id) -> Employee:
    """Employee without a team in the same organization."""
    employee = Employee(
        employee_id=uuid4(),
        organization_id=organization_id,
        team_id=None,
        display_name="Bob Example",
    )
    session.add(employee)
    await session.flush()
    return employee


@pytest.fixture
async def german_regulation(session, organization_id) -> WorkingTimeRegulation:
    """German working hours act, assigned organization-wide from 2024."""
    admin = PolicyAdminService(session)
    regulation = await admin.import_preset(organization_id, "de_arbzg")
    await admin.define_policy_assignment(
        policy_family="working_time_regulation",
        policy_id=regulation.regulation_id,
        organization_id=organization_id,
        scope="organization",
        effective_from=date(2024, 1, 1),
    )
    return regulation


@pytest.fixture
async def break_regulation(session, organization_id) -> WorkingTimeRegulation:
    """30 minutes after 6 hours, any split with one part of at least 15 minutes."""
    admin = PolicyAdminService(session)
    regulation = await admin.define_working_time_regulation(
        organization_id=organization_id,
        name="Break after six hours",
        break_rules=[
            BreakRuleSpec(
                threshold_minutes=360,
                required_break_minutes=30,
                options=(AnySplitOption(minimum_longest_split_minutes=15),),
            )
        ],
    )
    await admin.define_policy_assignment(
        policy_family="working_time_regulation",
        policy_id=regulation.regulation_id,
        organization_id=organization_id,
        scope="organization",
        effective_from=date(2024, 1, 1),
    )
    return regulation


@pytest.fixture
async def night_weekend_model(session, organization_id) -> SurchargeModel:
    """Saturday at 25% and a 22:00-06:00 night window at 30%, equal priority."""
    admin = PolicyAdminService(session)
    model = await admin.define_surcharge_model(organization_id, "Night and weekend")
    await admin.define_surcharge_rule(
        model.surcharge_model_id,
        name="Night",
        rule_kind="time_window",
        percentage=Decimal("0.30"),
        priority=0,
        window_start_time="22:00",
        window_end_time="06:00",
    )
    await admin.define_surcharge_rule(
        model.surcharge_model_id,
        name="Saturday",
        rule_kind="day_of_week",
        percentage=Decimal("0.25"),
        priority=0,
        day_of_week="saturday",
    )
    await admin.define_policy_assignment(
        policy_family="surcharge_model",
        policy_id=model.surcharge_model_id,
        organization_id=organization_id,
        scope="organization",
        effective_from=date(2024, 1, 1),
    )
    return model
