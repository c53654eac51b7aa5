"""Payroll period and tenure arithmetic."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True, order=True)
class PayPeriod:
    """A calendar payroll month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @property
    def reference_date(self) -> date:
        """Last calendar day of the period."""
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def remaining_months(self) -> int:
        """Months left in the year, counting this one."""
        return 13 - self.month

    def previous(self) -> PayPeriod:
        """The prior month, wrapping January back to December."""
        if self.month == 1:
            return PayPeriod(self.year - 1, 12)
        return PayPeriod(self.year, self.month - 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def age_on(date_of_birth: date | None, on: date, default: int = 30) -> int:
    """Whole years of age on a given date."""
    if date_of_birth is None:
        return default
    age = on.year - date_of_birth.year
    if (on.month, on.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def months_employed(join_date: date | None, on: date) -> int:
    """Whole months between joining and ``on``, floored, never negative.

    An unknown join date counts as a full year of tenure.
    """
    if join_date is None:
        return 12
    months = (on.year - join_date.year) * 12 + (on.month - join_date.month)
    month_end = calendar.monthrange(on.year, on.month)[1]
    if on.day < join_date.day and on.day != month_end:
        months -= 1
    return max(0, months)
