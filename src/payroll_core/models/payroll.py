"""Payroll run and payroll item models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.models.base import Base, TimestampMixin, uuid_pk

if TYPE_CHECKING:
    from payroll_core.models.company import Company, Department
    from payroll_core.models.employee import Employee

ZERO = Decimal("0")


class PayrollRun(Base, TimestampMixin):
    """Monthly payroll run for a company, optionally scoped to a department.

    Totals are derived: they are always the sum of the run's non-deleted
    items and are only written by run aggregation.
    """

    __tablename__ = "payroll_run"

    id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.id", ondelete="SET NULL"),
        nullable=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    generation_type: Mapped[str] = mapped_column(String, nullable=False, default="manual")
    generated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Aggregates
    total_gross: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_net: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_employer_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Variance against the prior period
    variance_from_previous: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_percentage: Mapped[Decimal | None] = mapped_column(Numeric(7, 2), nullable=True)

    # Approval
    approval_type: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)

    # Edit after auto-approval
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(nullable=True)
    edited_by: Mapped[UUID | None] = mapped_column(nullable=True)
    edit_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lock
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    locked_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "department_id",
            "month",
            "year",
            name="payroll_run_period_unique",
            postgresql_nulls_not_distinct=True,
        ),
        # One company-wide run per period; SQLite has no NULLS NOT DISTINCT.
        Index(
            "payroll_run_company_period_unique",
            "company_id",
            "month",
            "year",
            unique=True,
            sqlite_where=text("department_id IS NULL"),
            postgresql_where=text("department_id IS NULL"),
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="payroll_run_month_check"),
        CheckConstraint(
            "status IN ('draft', 'auto_generated', 'auto_approved', 'edited', 'approved', 'locked')",
            name="payroll_run_status_check",
        ),
        CheckConstraint(
            "generation_type IN ('auto', 'manual')",
            name="payroll_run_generation_type_check",
        ),
        CheckConstraint(
            "approval_type IS NULL OR approval_type IN ('auto', 'manual')",
            name="payroll_run_approval_type_check",
        ),
    )

    # Relationships
    company: Mapped[Company] = relationship()
    department: Mapped[Department | None] = relationship()
    items: Mapped[list[PayrollItem]] = relationship(back_populates="payroll_run")

    @property
    def period_label(self) -> str:
        """Human readable period, e.g. 2024-03."""
        return f"{self.year:04d}-{self.month:02d}"


class PayrollItem(Base, TimestampMixin):
    """One employee's pay for a payroll run.

    Input components are edited by generation and the change applier;
    derived fields are written only by the item recalculator.
    """

    __tablename__ = "payroll_item"

    id: Mapped[UUID] = uuid_pk()
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Earnings
    basic_salary: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    fixed_allowance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    ot_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    ph_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    incentive_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    commission_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    trade_commission_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    outstation_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    bonus: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    claims_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Unpaid leave
    unpaid_leave_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Non-statutory deductions
    advance_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    other_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    deduction_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Manual income tax figure; replaces the computed withholding when set
    pcb_override: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Derived
    gross_salary: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    statutory_base: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    epf_employee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    epf_employer: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    socso_employee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    socso_employer: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    eis_employee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    eis_employer: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    pcb: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employer_total_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payroll_item_run_employee_unique"),
    )

    # Relationships
    payroll_run: Mapped[PayrollRun] = relationship(back_populates="items")
    employee: Mapped[Employee] = relationship()

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
