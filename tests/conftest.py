"""Pytest fixtures for payroll lifecycle tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_lifecycle.api.app import create_app
from payroll_lifecycle.calculators.engine import CalculationEngine
from payroll_lifecycle.calculators.rate_resolver import RateTableProvider
from payroll_lifecycle.config import Settings
from payroll_lifecycle.models import Base, PayrollPeriod
from payroll_lifecycle.services import (
    ComponentCatalog,
    PeriodLifecycleController,
    PeriodLockRegistry,
)
from payroll_lifecycle.services.payroll_service import PayrollCommands

# In-memory SQLite, one connection shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"

PREPARER_ID = UUID("00000000-0000-0000-0000-0000000000a1")
APPROVER_ID = UUID("00000000-0000-0000-0000-0000000000b2")

SSS_TABLE = {
    "employee_rate": "0.06",
    "employer_rate": "0.095",
    "employee_cap": "1800",
    "employer_cap": "2850",
    "basis": "GROSS",
}

# Withholding tax, semi-monthly
BIR_TABLE = {
    "brackets": {
        "semi_monthly": [
            {"min": "0", "max": "10417", "rate": "0", "flat": "0"},
            {"min": "10417", "max": "16667", "rate": "0.15", "flat": "0"},
            {"min": "16667", "max": "33333", "rate": "0.20", "flat": "937.50"},
            {"min": "33333", "max": "83333", "rate": "0.25", "flat": "4270.70"},
            {"min": "83333", "max": "333333", "rate": "0.30", "flat": "16770.70"},
            {"min": "333333", "max": None, "rate": "0.35", "flat": "91770.70"},
        ]
    }
}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        calculation_workers=4,
        attendance_timeout_seconds=1.0,
        rate_table_timeout_seconds=1.0,
        transition_wait_seconds=0.5,
    )


@pytest.fixture
def locks() -> PeriodLockRegistry:
    return PeriodLockRegistry()


@pytest.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@dataclass
class PayrollWorld:
    """Seeds the catalog, rate tables, employees and periods of a test."""

    session: AsyncSession
    settings: Settings
    locks: PeriodLockRegistry

    @property
    def lifecycle(self) -> PeriodLifecycleController:
        return PeriodLifecycleController(self.session, locks=self.locks, settings=self.settings)

    @property
    def catalog(self) -> ComponentCatalog:
        return ComponentCatalog(self.session)

    def engine(self, **collaborators) -> CalculationEngine:
        return CalculationEngine(
            self.session, locks=self.locks, settings=self.settings, **collaborators
        )

    async def standard_catalog(self) -> None:
        """BASIC, RICE (non-taxable), SSS and WTAX with their rate tables."""
        rates = RateTableProvider(self.session)
        await rates.publish(
            "SSS_2025", date(2025, 1, 1), dict(SSS_TABLE), agency="SSS", kind="contribution"
        )
        await rates.publish(
            "BIR_WHT_2023", date(2023, 1, 1), dict(BIR_TABLE), agency="BIR", kind="tax"
        )

        catalog = self.catalog
        await catalog.define_component("BASIC", "Basic salary", "earning")
        await catalog.define_component("RICE", "Rice subsidy", "allowance", is_taxable=False)
        await catalog.define_component(
            "SSS", "SSS contribution", "contribution", agency="SSS", rate_table_key="SSS_2025"
        )
        await catalog.define_component(
            "WTAX", "Withholding tax", "tax", agency="BIR", rate_table_key="BIR_WHT_2023"
        )

    async def employee(
        self,
        basic: Decimal = Decimal("30000"),
        allowance: Decimal | None = Decimal("2000"),
        employee_id: UUID | None = None,
    ) -> UUID:
        employee_id = employee_id or uuid4()
        catalog = self.catalog
        effective = date(2025, 1, 1)
        await catalog.assign(employee_id, "BASIC", effective, amount=basic)
        if allowance is not None:
            await catalog.assign(employee_id, "RICE", effective, amount=allowance)
        await catalog.assign(employee_id, "SSS", effective, amount=Decimal("0"))
        await catalog.assign(employee_id, "WTAX", effective, amount=Decimal("0"))
        return employee_id

    async def period(
        self,
        start: date = date(2025, 11, 1),
        end: date = date(2025, 11, 15),
        pay: date = date(2025, 11, 17),
        period_type: str = "semi_monthly",
    ) -> PayrollPeriod:
        return await self.lifecycle.create_period(
            period_type, start, end, pay, name="P1", actor_id=PREPARER_ID
        )

    async def approved_period(self) -> PayrollPeriod:
        """Calculated, submitted and approved; assign employees first."""
        period = await self.period()
        await self.engine().run(period.period_id, PREPARER_ID)
        lifecycle = self.lifecycle
        await lifecycle.submit_for_review(period.period_id, PREPARER_ID)
        return await lifecycle.approve(period.period_id, APPROVER_ID)


@pytest.fixture
async def world(session, settings, locks) -> PayrollWorld:
    """Catalog and rate tables seeded; no employees or periods yet."""
    world = PayrollWorld(session=session, settings=settings, locks=locks)
    await world.standard_catalog()
    return world


@pytest.fixture
def commands(session_factory, settings, locks) -> PayrollCommands:
    return PayrollCommands(session_factory, locks=locks, settings=settings)


@pytest.fixture
async def seeded(session_factory, settings, locks) -> None:
    """Catalog and rate tables committed, for tests that go through commands."""
    async with session_factory() as session:
        await PayrollWorld(session=session, settings=settings, locks=locks).standard_catalog()
        await session.commit()


@pytest.fixture
async def client(commands, seeded):
    """HTTP client bound to the app over the test database."""
    transport = ASGITransport(app=create_app(commands))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
