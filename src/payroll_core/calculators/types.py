"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from payroll_core.calculators.periods import PayPeriod, age_on, months_employed
from payroll_core.calculators.rounding import ZERO, round_to_cents

if TYPE_CHECKING:
    from payroll_core.models import Employee


class InvalidStatutoryInputError(ValueError):
    """Raised when a calculation input is invalid (never clamped)."""

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class EarningComponent(str, Enum):
    """Named earning components that make up gross pay."""

    BASIC_SALARY = "basic_salary"
    FIXED_ALLOWANCE = "fixed_allowance"
    OT_AMOUNT = "ot_amount"
    PH_PAY = "ph_pay"
    INCENTIVE_AMOUNT = "incentive_amount"
    COMMISSION_AMOUNT = "commission_amount"
    TRADE_COMMISSION_AMOUNT = "trade_commission_amount"
    OUTSTATION_AMOUNT = "outstation_amount"
    BONUS = "bonus"
    CLAIMS_AMOUNT = "claims_amount"


# Always part of the statutory base, whatever the company toggles say
CORE_STATUTORY_COMPONENTS = frozenset({
    EarningComponent.BASIC_SALARY,
    EarningComponent.COMMISSION_AMOUNT,
    EarningComponent.TRADE_COMMISSION_AMOUNT,
    EarningComponent.BONUS,
})

PRORATABLE_COMPONENTS = frozenset({EarningComponent.BONUS})


@dataclass(frozen=True)
class ContributionSplit:
    """Employee and employer shares of one statutory scheme."""

    employee: Decimal = ZERO
    employer: Decimal = ZERO

    @classmethod
    def zero(cls) -> ContributionSplit:
        return cls(ZERO, ZERO)

    @property
    def total(self) -> Decimal:
        return self.employee + self.employer


@dataclass(frozen=True)
class StatutoryProfile:
    """Read-only snapshot of the employee facts the statutory rules use."""

    age: int = 30
    marital_status: str = "single"
    spouse_working: bool = False
    children_count: int = 0

    @property
    def has_dependent_spouse(self) -> bool:
        """Married with a non-working spouse (tax category 2)."""
        return self.marital_status == "married" and not self.spouse_working

    @classmethod
    def from_employee(cls, employee: Employee, period: PayPeriod) -> StatutoryProfile:
        """Snapshot an employee as of the end of ``period``."""
        return cls(
            age=age_on(employee.date_of_birth, period.reference_date),
            marital_status=employee.marital_status or "single",
            spouse_working=bool(employee.spouse_working),
            children_count=employee.children_count or 0,
        )


@dataclass(frozen=True)
class YearToDate:
    """Figures already paid earlier in the tax year (current month excluded)."""

    base: Decimal = ZERO
    epf: Decimal = ZERO
    pcb: Decimal = ZERO
    zakat: Decimal = ZERO


@dataclass(frozen=True)
class StatutoryOverrides:
    """Manually set values that replace the computed ones as-is."""

    epf: ContributionSplit | None = None
    socso: ContributionSplit | None = None
    eis: ContributionSplit | None = None
    pcb: Decimal | None = None


@dataclass(frozen=True)
class StatutoryResult:
    """Statutory deductions for one employee and period."""

    epf: ContributionSplit
    socso: ContributionSplit
    eis: ContributionSplit
    pcb: Decimal

    @property
    def employee_total(self) -> Decimal:
        """Everything withheld from the employee."""
        return self.epf.employee + self.socso.employee + self.eis.employee + self.pcb

    @property
    def employer_total(self) -> Decimal:
        """Employer contributions on top of gross pay."""
        return self.epf.employer + self.socso.employer + self.eis.employer


@dataclass(frozen=True)
class GrossPay:
    """Gross pay and the subset of it subject to statutory schemes."""

    gross_pay: Decimal
    statutory_base: Decimal


@dataclass(frozen=True)
class Proration:
    """Opt-in scaling of selected components by tenure (months / 12)."""

    months_employed: int
    scaled_fields: frozenset[EarningComponent] = field(default=PRORATABLE_COMPONENTS)

    def __post_init__(self) -> None:
        if self.months_employed < 0:
            raise InvalidStatutoryInputError(
                "months_employed", self.months_employed, "cannot be negative"
            )

    @property
    def applies(self) -> bool:
        """Proration only applies to tenure under a full year."""
        return self.months_employed < 12

    def scale(self, component: EarningComponent, amount: Decimal) -> Decimal:
        """Scale ``amount`` if ``component`` is prorated, else return it unchanged."""
        if not self.applies or component not in self.scaled_fields:
            return amount
        return round_to_cents(amount * Decimal(self.months_employed) / Decimal(12))

    @classmethod
    def for_tenure(
        cls,
        join_date: date | None,
        period: PayPeriod,
        scaled_fields: frozenset[EarningComponent] = PRORATABLE_COMPONENTS,
    ) -> Proration:
        """Build from a join date, measured to the end of ``period``."""
        return cls(months_employed(join_date, period.reference_date), scaled_fields)
