from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from apps.api.metrics import MetricsRegistry, register_default_metrics
from apps.api.services.repository import SqlStaffRepository, SqlTicketRepository
from apps.api.services.service import TicketService
from apps.api.services.tickets import Actor, Staff, StaffRole
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest_asyncio.fixture
async def engine() -> AsyncEngine:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def ticket_repository(
    session_factory: async_sessionmaker, engine: AsyncEngine, clock: FakeClock, metrics: MetricsRegistry
) -> SqlTicketRepository:
    return SqlTicketRepository(session_factory, engine=engine, clock=clock, metrics=metrics)


@pytest.fixture
def staff_repository(session_factory: async_sessionmaker, clock: FakeClock) -> SqlStaffRepository:
    return SqlStaffRepository(session_factory, clock=clock)


@pytest.fixture
def service(
    ticket_repository: SqlTicketRepository,
    staff_repository: SqlStaffRepository,
    clock: FakeClock,
    metrics: MetricsRegistry,
) -> TicketService:
    return TicketService.build(ticket_repository, staff_repository, clock=clock, metrics=metrics)


@pytest_asyncio.fixture
async def admin(staff_repository: SqlStaffRepository) -> Staff:
    return await staff_repository.create(
        {"name": "Grace Admin", "email": "grace@example.com", "employee_id": "EMP-001", "role": "admin"}
    )


@pytest_asyncio.fixture
async def agent(staff_repository: SqlStaffRepository) -> Staff:
    return await staff_repository.create(
        {"name": "Alan Agent", "email": "alan@example.com", "employee_id": "EMP-002", "role": "callcentre"}
    )


@pytest.fixture
def admin_actor(admin: Staff) -> Actor:
    return Actor(id=admin.id, role=StaffRole.ADMIN)


@pytest.fixture
def agent_actor(agent: Staff) -> Actor:
    return Actor(id=agent.id, role=StaffRole.CALLCENTRE)
