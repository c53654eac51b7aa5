"""Statutory deduction calculator (EPF, SOCSO, EIS, PCB)."""

from __future__ import annotations

from bisect import bisect_left
from decimal import Decimal
from typing import TYPE_CHECKING

from payroll_core.calculators.periods import PayPeriod
from payroll_core.calculators.rounding import (
    ZERO,
    round_to_cents,
    round_to_whole,
    round_up_to_step,
    truncate_to_cents,
)
from payroll_core.calculators.tables import ContributionBand, StatutoryTables, TaxBracket
from payroll_core.calculators.types import (
    ContributionSplit,
    InvalidStatutoryInputError,
    StatutoryOverrides,
    StatutoryProfile,
    StatutoryResult,
    YearToDate,
)

if TYPE_CHECKING:
    from payroll_core.config import StatutoryConfig


class StatutoryCalculator:
    """Computes the four statutory schemes from a statutory base.

    The calculator is a pure value: it holds its reference tables and does
    no I/O, so the same inputs always give the same result.

    Rules:
    - EPF: percentage of the base capped at the wage ceiling, employer rate
      tiered on the uncapped base, both rounded to whole units.
    - SOCSO / EIS: step tables up to a wage ceiling, fixed maximum above it.
    - PCB: annual tax on projected chargeable income, spread over the
      remaining months, truncated to cents then rounded up to 5 cents;
      withholding under the minimum is waived.
    """

    def __init__(self, tables: StatutoryTables | None = None):
        self.tables = tables or StatutoryTables.malaysia_2024()
        self._socso_uppers = [band.upper for band in self.tables.socso_bands]
        self._eis_uppers = [band.upper for band in self.tables.eis_bands]

    def calculate(
        self,
        base: Decimal,
        profile: StatutoryProfile,
        period: PayPeriod,
        overrides: StatutoryOverrides | None = None,
        ytd: YearToDate | None = None,
        config: StatutoryConfig | None = None,
    ) -> StatutoryResult:
        """Calculate all schemes for one employee and period.

        Schemes disabled in ``config`` are zero. An override replaces the
        computed value of its scheme unconditionally.
        """
        self._validate_base(base)
        overrides = overrides or StatutoryOverrides()

        if base == 0:
            epf = socso = eis = ContributionSplit.zero()
        else:
            epf = self.calculate_epf(base, profile.age)
            socso = self.calculate_socso(base, profile.age)
            eis = self.calculate_eis(base, profile.age)

        if config is not None:
            if not config.epf_enabled:
                epf = ContributionSplit.zero()
            if not config.socso_enabled:
                socso = ContributionSplit.zero()
            if not config.eis_enabled:
                eis = ContributionSplit.zero()

        if overrides.epf is not None:
            epf = overrides.epf
        if overrides.socso is not None:
            socso = overrides.socso
        if overrides.eis is not None:
            eis = overrides.eis

        if overrides.pcb is not None:
            pcb = overrides.pcb
        elif config is not None and not config.pcb_enabled:
            pcb = ZERO
        else:
            pcb = self.calculate_pcb(base, epf.employee, profile, period.month, ytd)

        return StatutoryResult(epf=epf, socso=socso, eis=eis, pcb=pcb)

    def calculate_epf(self, base: Decimal, age: int) -> ContributionSplit:
        """Retirement fund contributions, rounded to whole units."""
        self._validate_base(base)
        t = self.tables

        if age > t.epf_senior_age:
            employee_rate = ZERO
            employer_rate = t.epf_senior_employer_rate
        else:
            employee_rate = t.epf_employee_rate
            employer_rate = (
                t.epf_employer_rate
                if base <= t.epf_employer_rate_threshold
                else t.epf_employer_rate_above_threshold
            )

        wage = min(base, t.epf_wage_ceiling)
        return ContributionSplit(
            employee=round_to_whole(wage * employee_rate),
            employer=round_to_whole(wage * employer_rate),
        )

    def calculate_socso(self, base: Decimal, age: int) -> ContributionSplit:
        """Social security contribution from the SOCSO table."""
        self._validate_base(base)
        t = self.tables
        if base == 0:
            return ContributionSplit.zero()

        if base > t.socso_ceiling:
            split = t.socso_max
        else:
            split = self._lookup_band(t.socso_bands, self._socso_uppers, base).split

        if age >= t.socso_senior_age:
            # Employment injury scheme only: employer pays, employee does not
            return ContributionSplit(ZERO, split.employer)
        return split

    def calculate_eis(self, base: Decimal, age: int) -> ContributionSplit:
        """Employment insurance contribution from the EIS table."""
        self._validate_base(base)
        t = self.tables
        if base == 0 or age >= t.eis_cutoff_age:
            return ContributionSplit.zero()

        if base > t.eis_ceiling:
            return t.eis_max
        return self._lookup_band(t.eis_bands, self._eis_uppers, base).split

    def calculate_pcb(
        self,
        base: Decimal,
        epf_employee: Decimal,
        profile: StatutoryProfile,
        month: int,
        ytd: YearToDate | None = None,
    ) -> Decimal:
        """Monthly income tax withholding.

        Projects annual income as year-to-date base plus this month's base
        for every remaining month, deducts reliefs, applies the bracket, and
        spreads what is still owed over the remaining months.
        """
        self._validate_base(base)
        if not 1 <= month <= 12:
            raise InvalidStatutoryInputError("month", month, "must be between 1 and 12")
        if base == 0:
            return ZERO

        ytd = ytd or YearToDate()
        reliefs = self.tables.reliefs
        remaining = Decimal(13 - month)

        projected_income = ytd.base + base * remaining
        epf_relief = min(ytd.epf + epf_employee * remaining, reliefs.epf_cap)

        total_relief = (
            reliefs.individual
            + reliefs.socso
            + reliefs.eis
            + epf_relief
            + reliefs.per_child * profile.children_count
        )
        if profile.has_dependent_spouse:
            total_relief += reliefs.dependent_spouse

        chargeable = max(ZERO, projected_income - total_relief)
        bracket = self.find_tax_bracket(chargeable)
        base_tax = (
            bracket.base_tax_dependent_spouse
            if profile.has_dependent_spouse
            else bracket.base_tax
        )

        annual_tax = max(ZERO, (chargeable - bracket.floor) * bracket.rate + base_tax)
        monthly = max(ZERO, (annual_tax - ytd.zakat - ytd.pcb) / remaining)

        monthly = round_up_to_step(truncate_to_cents(monthly), self.tables.pcb_rounding_step)
        if monthly < self.tables.pcb_minimum:
            return ZERO
        return round_to_cents(monthly)

    def find_tax_bracket(self, chargeable: Decimal) -> TaxBracket:
        """First bracket whose ceiling is at or above ``chargeable``."""
        for bracket in self.tables.tax_brackets:
            if bracket.ceiling is None or chargeable <= bracket.ceiling:
                return bracket
        # Unreachable: the last bracket is open-ended
        return self.tables.tax_brackets[-1]

    @staticmethod
    def _lookup_band(
        bands: tuple[ContributionBand, ...],
        uppers: list[Decimal],
        base: Decimal,
    ) -> ContributionBand:
        """Binary search for the band whose upper bound is the first >= base."""
        return bands[bisect_left(uppers, base)]

    @staticmethod
    def _validate_base(base: Decimal) -> None:
        if base < 0:
            raise InvalidStatutoryInputError("statutory base", base, "cannot be negative")
