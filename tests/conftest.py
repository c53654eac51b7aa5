"""Pytest fixtures for payroll core tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_core.database import create_session_factory
from payroll_core.models import (
    Base,
    Claim,
    Company,
    CompanyPayrollConfig,
    Department,
    Employee,
    PayrollItem,
    PayrollRun,
)

# In-memory SQLite shared across the single pooled connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingAuditSink:
    """Audit sink that keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.events.append(
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "actor_id": actor_id,
                "details": details or {},
            }
        )

    def actions(self) -> list[str]:
        return [event["action"] for event in self.events]


@pytest_asyncio.fixture
async def engine():
    """Fresh database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = create_session_factory(engine)

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest_asyncio.fixture
async def company(session: AsyncSession) -> Company:
    """Create a test company with stored payroll settings."""
    company = Company(id=uuid4(), name="Acme Trading Sdn Bhd", is_active=True)
    session.add(company)
    await session.flush()

    session.add(
        CompanyPayrollConfig(
            id=uuid4(),
            company_id=company.id,
            variance_threshold=Decimal("5.00"),
            lock_after_days=3,
        )
    )
    await session.flush()
    return company


@pytest_asyncio.fixture
async def payroll_config(session: AsyncSession, company: Company) -> CompanyPayrollConfig:
    """The company's stored payroll settings row."""
    result = await session.execute(
        select(CompanyPayrollConfig).where(CompanyPayrollConfig.company_id == company.id)
    )
    return result.scalar_one()


@pytest_asyncio.fixture
async def department(session: AsyncSession, company: Company) -> Department:
    department = Department(id=uuid4(), company_id=company.id, name="Sales")
    session.add(department)
    await session.flush()
    return department


@pytest_asyncio.fixture
async def employees(
    session: AsyncSession, company: Company, department: Department
) -> list[Employee]:
    """Two active employees and one who has resigned.

    - EMP001: 3,000 basic plus 500 allowance, in Sales
    - EMP002: 10,000 basic, no department
    - EMP003: resigned, never paid
    """
    alice = Employee(
        id=uuid4(),
        company_id=company.id,
        department_id=department.id,
        employee_code="EMP001",
        name="Aisyah Rahman",
        status="active",
        date_of_birth=date(1990, 5, 17),
        join_date=date(2020, 3, 1),
        marital_status="single",
        default_basic_salary=Decimal("3000.00"),
        default_allowance=Decimal("500.00"),
    )
    bala = Employee(
        id=uuid4(),
        company_id=company.id,
        employee_code="EMP002",
        name="Bala Krishnan",
        status="active",
        date_of_birth=date(1985, 11, 2),
        join_date=date(2018, 7, 16),
        marital_status="single",
        default_basic_salary=Decimal("10000.00"),
        default_allowance=Decimal("0.00"),
    )
    chong = Employee(
        id=uuid4(),
        company_id=company.id,
        employee_code="EMP003",
        name="Chong Wei Ming",
        status="resigned",
        date_of_birth=date(1992, 1, 9),
        join_date=date(2021, 1, 4),
        default_basic_salary=Decimal("4200.00"),
    )
    session.add_all([alice, bala, chong])
    await session.flush()
    return [alice, bala, chong]


RunFactory = Callable[..., Awaitable[PayrollRun]]


@pytest_asyncio.fixture
async def make_run(session: AsyncSession) -> RunFactory:
    """Factory for runs with pre-computed items.

    ``items`` maps each employee to a dict of PayrollItem column values.
    """

    async def _make_run(
        company_id: UUID,
        month: int,
        year: int,
        status: str = "draft",
        items: dict[Employee, dict[str, Any]] | None = None,
        department_id: UUID | None = None,
    ) -> PayrollRun:
        run = PayrollRun(
            id=uuid4(),
            company_id=company_id,
            department_id=department_id,
            month=month,
            year=year,
            status=status,
        )
        session.add(run)
        await session.flush()

        for employee, values in (items or {}).items():
            session.add(
                PayrollItem(
                    id=uuid4(),
                    payroll_run_id=run.id,
                    employee_id=employee.id,
                    **values,
                )
            )
        await session.flush()
        return run

    return _make_run


@pytest_asyncio.fixture
async def draft_run(
    session: AsyncSession,
    company: Company,
    employees: list[Employee],
    make_run: RunFactory,
) -> PayrollRun:
    """A March 2024 draft run with uncalculated items for both active employees."""
    alice, bala, _ = employees
    return await make_run(
        company.id,
        3,
        2024,
        items={
            alice: {
                "basic_salary": Decimal("3000.00"),
                "fixed_allowance": Decimal("500.00"),
            },
            bala: {"basic_salary": Decimal("10000.00")},
        },
    )


@pytest.fixture
def claim_factory(session: AsyncSession):
    """Factory for expense claims."""

    async def _add_claim(
        employee: Employee,
        amount: str,
        status: str = "approved",
        linked_payroll_item_id: UUID | None = None,
    ) -> Claim:
        claim = Claim(
            id=uuid4(),
            employee_id=employee.id,
            amount=Decimal(amount),
            status=status,
            claim_date=date(2024, 2, 20),
            description="Client visit mileage",
            linked_payroll_item_id=linked_payroll_item_id,
        )
        session.add(claim)
        await session.flush()
        return claim

    return _add_claim
