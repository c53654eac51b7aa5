"""Payroll calculators: pure, database-free payroll math."""

from payroll_core.calculators.gross_pay import GrossPayAssembler
from payroll_core.calculators.periods import PayPeriod, age_on, months_employed
from payroll_core.calculators.statutory_calculator import StatutoryCalculator
from payroll_core.calculators.tables import StatutoryTables
from payroll_core.calculators.types import (
    ContributionSplit,
    EarningComponent,
    GrossPay,
    InvalidStatutoryInputError,
    Proration,
    StatutoryOverrides,
    StatutoryProfile,
    StatutoryResult,
    YearToDate,
)

__all__ = [
    "GrossPayAssembler",
    "StatutoryCalculator",
    "StatutoryTables",
    "PayPeriod",
    "age_on",
    "months_employed",
    "ContributionSplit",
    "EarningComponent",
    "GrossPay",
    "InvalidStatutoryInputError",
    "Proration",
    "StatutoryOverrides",
    "StatutoryProfile",
    "StatutoryResult",
    "YearToDate",
]
