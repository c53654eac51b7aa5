"""Company (tenant) and department models."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.models.base import Base, TimestampMixin, uuid_pk

if TYPE_CHECKING:
    from payroll_core.models.employee import Employee


class Company(Base, TimestampMixin):
    """Company (tenant root)."""

    __tablename__ = "company"

    id: Mapped[UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    departments: Mapped[list[Department]] = relationship(back_populates="company")
    employees: Mapped[list[Employee]] = relationship(back_populates="company")
    payroll_config: Mapped[CompanyPayrollConfig | None] = relationship(
        back_populates="company", uselist=False
    )


class Department(Base, TimestampMixin):
    """Department within a company."""

    __tablename__ = "department"

    id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="department_company_name_unique"),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="departments")


class CompanyPayrollConfig(Base, TimestampMixin):
    """Stored statutory toggles and automation settings for one company."""

    __tablename__ = "company_payroll_config"

    id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Statutory schemes
    epf_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    socso_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    eis_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pcb_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Statutory base composition
    statutory_on_ot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    statutory_on_ph_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    statutory_on_allowance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    statutory_on_incentive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ytd_pcb_calculation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Automation
    auto_generate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    variance_threshold: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("5.00")
    )
    lock_after_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    __table_args__ = (
        CheckConstraint("variance_threshold >= 0", name="payroll_config_threshold_check"),
        CheckConstraint("lock_after_days >= 0", name="payroll_config_lock_days_check"),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="payroll_config")
