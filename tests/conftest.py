"""Pytest fixtures for HRMS payroll tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hrms_payroll.calculators.deductions import (
    HEALTH_WELFARE_EMPLOYEE_PERCENTAGE,
    HEALTH_WELFARE_EMPLOYER_PERCENTAGE,
    PVD_PERCENTAGE,
    SAVING_FUND_PERCENTAGE,
    SOCIAL_SECURITY_EMPLOYEE_RATE,
    SOCIAL_SECURITY_EMPLOYER_RATE,
    SOCIAL_SECURITY_MAX_MONTHLY,
)
from hrms_payroll.calculators.types import (
    AllocationRequest,
    GrantItemSource,
    OrgFundedSource,
)
from hrms_payroll.config import Settings
from hrms_payroll.models import (
    Base,
    BenefitSetting,
    Employment,
    Grant,
    GrantItem,
    OrgFundedSlot,
    TaxBracket,
)

# Use in-memory SQLite for tests (with async support)
# For advisory locks and JSONB, use a test Postgres database
TEST_DATABASE_URL = "sqlite+aiosqlite://"

HOME_ORG = "SMRU"
PARTNER_ORG = "BHF"


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        fte_tolerance=Decimal("0.01"),
        allocation_rounding="ROUND_HALF_UP",
        tax_annualization="twelve_months",
        prorate_partial_months=True,
        default_probation_months=3,
        thirteenth_month_min_service_months=6,
        annual_increase_rate=Decimal("1"),
        annual_increase_min_working_days=365,
        log_level="DEBUG",
    )


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SAVEPOINT work on SQLite: stop the driver's implicit BEGIN and
    # emit our own when SQLAlchemy starts a transaction.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def funding(session: AsyncSession) -> dict[str, object]:
    """Create grants, budget lines and an org-funded slot."""
    grant_a = Grant(code="GA-2024", name="Grant A", organization=HOME_ORG)
    grant_b = Grant(
        code="GB-2023",
        name="Partner Grant",
        organization=PARTNER_ORG,
        end_date=date(2024, 12, 31),
    )
    expired = Grant(
        code="GX-2022",
        name="Expired Grant",
        organization=HOME_ORG,
        end_date=date(2023, 12, 31),
    )
    session.add_all([grant_a, grant_b, expired])
    await session.flush()

    item_a = GrantItem(grant_id=grant_a.grant_id, budget_line_code="BL-01", position_slots=2)
    item_unlimited = GrantItem(grant_id=grant_a.grant_id, budget_line_code="BL-02", position_slots=0)
    item_b = GrantItem(grant_id=grant_b.grant_id, budget_line_code="BL-10", position_slots=5)
    item_expired = GrantItem(grant_id=expired.grant_id, budget_line_code="BL-99", position_slots=5)
    slot = OrgFundedSlot(organization=HOME_ORG, description="SMRU core funding")
    session.add_all([item_a, item_unlimited, item_b, item_expired, slot])
    await session.flush()

    return {
        "grant_a": grant_a,
        "item_a": item_a,
        "item_unlimited": item_unlimited,
        "item_b": item_b,
        "item_expired": item_expired,
        "org_slot": slot,
    }


@pytest.fixture
def grant_and_org_split(funding) -> list[AllocationRequest]:
    """Grant A 60% + org-funded 40%."""
    return [
        AllocationRequest(GrantItemSource(funding["item_a"].grant_item_id), Decimal("60")),
        AllocationRequest(OrgFundedSource(funding["org_slot"].org_funded_slot_id), Decimal("40")),
    ]


@pytest.fixture
def make_employment(session: AsyncSession) -> Callable[..., Awaitable[Employment]]:
    """Factory for persisted employments."""

    async def _make(**overrides) -> Employment:
        values = dict(
            employee_id=uuid4(),
            home_organization=HOME_ORG,
            start_date=date(2024, 1, 1),
            probation_end_date=date(2024, 3, 31),
            probation_salary=Decimal("24000"),
            pass_probation_salary=Decimal("30000"),
            social_security=True,
            health_welfare=True,
            pvd=False,
            saving_fund=False,
            is_active=True,
        )
        values.update(overrides)
        employment = Employment(**values)
        session.add(employment)
        await session.flush()
        return employment

    return _make


@pytest.fixture
async def reference_data(session: AsyncSession) -> None:
    """Tax brackets for 2024 and benefit settings effective from 2024-01-01."""
    brackets = [
        (1, Decimal("0"), Decimal("150000"), Decimal("0")),
        (2, Decimal("150000"), Decimal("300000"), Decimal("5")),
        (3, Decimal("300000"), None, Decimal("10")),
    ]
    for order, low, high, rate in brackets:
        session.add(
            TaxBracket(
                effective_year=2024,
                bracket_order=order,
                min_income=low,
                max_income=high,
                tax_rate=rate,
                is_active=True,
            )
        )

    benefits = {
        SOCIAL_SECURITY_EMPLOYEE_RATE: ("5", "percentage"),
        SOCIAL_SECURITY_EMPLOYER_RATE: ("5", "percentage"),
        SOCIAL_SECURITY_MAX_MONTHLY: ("750", "amount"),
        PVD_PERCENTAGE: ("7.5", "percentage"),
        SAVING_FUND_PERCENTAGE: ("7.5", "percentage"),
        HEALTH_WELFARE_EMPLOYEE_PERCENTAGE: ("1", "percentage"),
        HEALTH_WELFARE_EMPLOYER_PERCENTAGE: ("2", "percentage"),
    }
    for key, (value, setting_type) in benefits.items():
        session.add(
            BenefitSetting(
                setting_key=key,
                setting_value=Decimal(value),
                setting_type=setting_type,
                effective_date=date(2024, 1, 1),
                is_active=True,
            )
        )
    await session.flush()
