"""Employee and claim models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.models.base import Base, TimestampMixin, uuid_pk

if TYPE_CHECKING:
    from payroll_core.models.company import Company, Department


class Employee(Base, TimestampMixin):
    """Employee record with default pay and statutory profile inputs."""

    __tablename__ = "employee"

    id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.id", ondelete="SET NULL"),
        nullable=True,
    )
    employee_code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    # Statutory profile
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    join_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    marital_status: Mapped[str] = mapped_column(String, nullable=False, default="single")
    spouse_working: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    children_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Defaults used when a run is generated
    default_basic_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    default_allowance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("company_id", "employee_code", name="employee_company_code_unique"),
        CheckConstraint(
            "status IN ('active', 'inactive', 'resigned')",
            name="employee_status_check",
        ),
        CheckConstraint(
            "marital_status IN ('single', 'married', 'divorced', 'widowed')",
            name="employee_marital_status_check",
        ),
        CheckConstraint("children_count >= 0", name="employee_children_count_check"),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="employees")
    department: Mapped[Department | None] = relationship()


class Claim(Base, TimestampMixin):
    """Expense claim reimbursed through payroll."""

    __tablename__ = "claim"

    id: Mapped[UUID] = uuid_pk()
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    linked_payroll_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_item.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="claim_status_check",
        ),
        CheckConstraint("amount >= 0", name="claim_amount_check"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship()
