"""Statutory reference tables.

A ``StatutoryTables`` value carries every rate, ceiling, and table the
statutory calculator needs, so another jurisdiction or year can be
substituted by building a different instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from payroll_core.calculators.types import ContributionSplit

D = Decimal


@dataclass(frozen=True)
class ContributionBand:
    """One wage band of a contribution table (``lower`` to ``upper`` inclusive)."""

    lower: Decimal
    upper: Decimal
    employee: Decimal
    employer: Decimal

    @property
    def split(self) -> ContributionSplit:
        return ContributionSplit(self.employee, self.employer)


@dataclass(frozen=True)
class TaxBracket:
    """Progressive tax bracket: tax = (P - floor) * rate + base tax.

    ``base_tax`` applies to single filers and those with a working spouse;
    ``base_tax_dependent_spouse`` to those whose spouse has no income.
    """

    ceiling: Decimal | None  # None = no upper limit
    floor: Decimal
    rate: Decimal
    base_tax: Decimal
    base_tax_dependent_spouse: Decimal


@dataclass(frozen=True)
class TaxReliefs:
    """Annual reliefs deducted from projected income."""

    individual: Decimal = D("9000")
    dependent_spouse: Decimal = D("4000")
    per_child: Decimal = D("2000")
    epf_cap: Decimal = D("4000")
    socso: Decimal = D("350")
    eis: Decimal = D("350")


def _bands(rows: tuple[tuple[str, str, str, str], ...]) -> tuple[ContributionBand, ...]:
    return tuple(ContributionBand(D(lo), D(hi), D(ee), D(er)) for lo, hi, ee, er in rows)


SOCSO_BANDS_2024 = _bands((
    ("0", "30", "0.10", "0.40"),
    ("30.01", "50", "0.20", "0.70"),
    ("50.01", "70", "0.30", "1.00"),
    ("70.01", "100", "0.40", "1.40"),
    ("100.01", "140", "0.60", "2.00"),
    ("140.01", "200", "0.85", "2.70"),
    ("200.01", "300", "1.25", "4.00"),
    ("300.01", "400", "1.75", "5.50"),
    ("400.01", "500", "2.25", "7.00"),
    ("500.01", "600", "2.75", "8.50"),
    ("600.01", "700", "3.25", "10.00"),
    ("700.01", "800", "3.75", "11.50"),
    ("800.01", "900", "4.25", "13.00"),
    ("900.01", "1000", "4.75", "14.50"),
    ("1000.01", "1100", "5.25", "16.00"),
    ("1100.01", "1200", "5.75", "17.50"),
    ("1200.01", "1300", "6.25", "19.00"),
    ("1300.01", "1400", "6.75", "20.50"),
    ("1400.01", "1500", "7.25", "22.00"),
    ("1500.01", "1600", "7.75", "23.50"),
    ("1600.01", "1700", "8.25", "25.00"),
    ("1700.01", "1800", "8.75", "26.50"),
    ("1800.01", "1900", "9.25", "28.00"),
    ("1900.01", "2000", "9.75", "29.50"),
    ("2000.01", "2100", "10.25", "31.00"),
    ("2100.01", "2200", "10.75", "32.50"),
    ("2200.01", "2300", "11.25", "34.00"),
    ("2300.01", "2400", "11.75", "35.50"),
    ("2400.01", "2500", "12.25", "37.00"),
    ("2500.01", "2600", "12.75", "38.50"),
    ("2600.01", "2700", "13.25", "40.00"),
    ("2700.01", "2800", "13.75", "41.50"),
    ("2800.01", "2900", "14.25", "43.00"),
    ("2900.01", "3000", "14.75", "44.50"),
    ("3000.01", "3100", "15.25", "46.00"),
    ("3100.01", "3200", "15.75", "47.50"),
    ("3200.01", "3300", "16.25", "49.00"),
    ("3300.01", "3400", "16.75", "50.50"),
    ("3400.01", "3500", "17.25", "52.00"),
    ("3500.01", "3600", "17.75", "53.50"),
    ("3600.01", "3700", "18.25", "55.00"),
    ("3700.01", "3800", "18.75", "56.50"),
    ("3800.01", "3900", "19.25", "58.00"),
    ("3900.01", "4000", "19.75", "59.50"),
    ("4000.01", "5000", "24.75", "69.05"),
))

EIS_BANDS_2024 = _bands((
    ("0", "30", "0.05", "0.05"),
    ("30.01", "50", "0.10", "0.10"),
    ("50.01", "70", "0.15", "0.15"),
    ("70.01", "100", "0.20", "0.20"),
    ("100.01", "140", "0.25", "0.25"),
    ("140.01", "200", "0.35", "0.35"),
    ("200.01", "300", "0.50", "0.50"),
    ("300.01", "400", "0.70", "0.70"),
    ("400.01", "500", "0.90", "0.90"),
    ("500.01", "600", "1.10", "1.10"),
    ("600.01", "700", "1.30", "1.30"),
    ("700.01", "800", "1.50", "1.50"),
    ("800.01", "900", "1.70", "1.70"),
    ("900.01", "1000", "1.90", "1.90"),
    ("1000.01", "1100", "2.10", "2.10"),
    ("1100.01", "1200", "2.30", "2.30"),
    ("1200.01", "1300", "2.50", "2.50"),
    ("1300.01", "1400", "2.70", "2.70"),
    ("1400.01", "1500", "2.90", "2.90"),
    ("1500.01", "1600", "3.10", "3.10"),
    ("1600.01", "1700", "3.30", "3.30"),
    ("1700.01", "1800", "3.50", "3.50"),
    ("1800.01", "1900", "3.70", "3.70"),
    ("1900.01", "2000", "3.90", "3.90"),
    ("2000.01", "2100", "4.10", "4.10"),
    ("2100.01", "2200", "4.30", "4.30"),
    ("2200.01", "2300", "4.50", "4.50"),
    ("2300.01", "2400", "4.70", "4.70"),
    ("2400.01", "2500", "4.90", "4.90"),
    ("2500.01", "2600", "5.10", "5.10"),
    ("2600.01", "2700", "5.30", "5.30"),
    ("2700.01", "2800", "5.50", "5.50"),
    ("2800.01", "2900", "5.70", "5.70"),
    ("2900.01", "3000", "5.90", "5.90"),
    ("3000.01", "3100", "6.10", "6.10"),
    ("3100.01", "3200", "6.30", "6.30"),
    ("3200.01", "3300", "6.50", "6.50"),
    ("3300.01", "3400", "6.70", "6.70"),
    ("3400.01", "3500", "6.90", "6.90"),
    ("3500.01", "3600", "7.10", "7.10"),
    ("3600.01", "3700", "7.30", "7.30"),
    ("3700.01", "3800", "7.50", "7.50"),
    ("3800.01", "3900", "7.70", "7.70"),
    ("3900.01", "4000", "7.90", "7.90"),
    ("4000.01", "4100", "8.10", "8.10"),
    ("4100.01", "4200", "8.30", "8.30"),
    ("4200.01", "4300", "8.50", "8.50"),
    ("4300.01", "4400", "8.70", "8.70"),
    ("4400.01", "4500", "8.90", "8.90"),
    ("4500.01", "4600", "9.10", "9.10"),
    ("4600.01", "4700", "9.30", "9.30"),
    ("4700.01", "4800", "9.50", "9.50"),
    ("4800.01", "4900", "9.70", "9.70"),
    ("4900.01", "5000", "9.90", "9.90"),
))

# (ceiling, M, R, B category 1/3, B category 2); B already nets the rebate
TAX_BRACKETS_2024 = tuple(
    TaxBracket(D(ceiling) if ceiling else None, D(floor), D(rate), D(b1), D(b2))
    for ceiling, floor, rate, b1, b2 in (
        ("5000", "0", "0", "0", "0"),
        ("20000", "5000", "0.01", "-400", "-800"),
        ("35000", "20000", "0.03", "-250", "-650"),
        ("50000", "35000", "0.06", "200", "-200"),
        ("70000", "50000", "0.11", "1100", "700"),
        ("100000", "70000", "0.19", "3300", "2900"),
        ("400000", "100000", "0.25", "9000", "8600"),
        ("600000", "400000", "0.26", "84000", "83600"),
        ("2000000", "600000", "0.28", "136000", "135600"),
        (None, "2000000", "0.30", "528000", "527600"),
    )
)


@dataclass(frozen=True)
class StatutoryTables:
    """Rates, ceilings, age rules, and tables for one jurisdiction/year."""

    # Retirement fund (EPF)
    epf_wage_ceiling: Decimal
    epf_employee_rate: Decimal
    epf_employer_rate: Decimal
    epf_employer_rate_above_threshold: Decimal
    epf_employer_rate_threshold: Decimal
    epf_senior_age: int  # rates change for ages strictly above this
    epf_senior_employer_rate: Decimal

    # Social security (SOCSO)
    socso_bands: tuple[ContributionBand, ...]
    socso_ceiling: Decimal
    socso_max: ContributionSplit
    socso_senior_age: int  # employee share stops from this age

    # Employment insurance (EIS)
    eis_bands: tuple[ContributionBand, ...]
    eis_ceiling: Decimal
    eis_max: ContributionSplit
    eis_cutoff_age: int  # both shares stop from this age

    # Income tax withholding (PCB)
    tax_brackets: tuple[TaxBracket, ...]
    reliefs: TaxReliefs = field(default_factory=TaxReliefs)
    pcb_minimum: Decimal = D("10")
    pcb_rounding_step: Decimal = D("0.05")

    def __post_init__(self) -> None:
        """Validate that every table is ordered and reaches its ceiling."""
        for name, bands, ceiling in (
            ("socso_bands", self.socso_bands, self.socso_ceiling),
            ("eis_bands", self.eis_bands, self.eis_ceiling),
        ):
            if not bands:
                raise ValueError(f"{name} cannot be empty")
            uppers = [band.upper for band in bands]
            if uppers != sorted(uppers) or len(set(uppers)) != len(uppers):
                raise ValueError(f"{name} must be strictly ascending")
            if uppers[-1] != ceiling:
                raise ValueError(f"{name} must end at the wage ceiling {ceiling}")

        if not self.tax_brackets or self.tax_brackets[-1].ceiling is not None:
            raise ValueError("tax_brackets must end with an open-ended bracket")
        ceilings = [b.ceiling for b in self.tax_brackets[:-1]]
        if None in ceilings or ceilings != sorted(ceilings):
            raise ValueError("tax_brackets must be ordered by ceiling")

    @classmethod
    def malaysia_2024(cls) -> StatutoryTables:
        """Malaysian EPF/SOCSO/EIS/PCB reference data (2024)."""
        return cls(
            epf_wage_ceiling=D("20000"),
            epf_employee_rate=D("0.11"),
            epf_employer_rate=D("0.13"),
            epf_employer_rate_above_threshold=D("0.12"),
            epf_employer_rate_threshold=D("5000"),
            epf_senior_age=60,
            epf_senior_employer_rate=D("0.04"),
            socso_bands=SOCSO_BANDS_2024,
            socso_ceiling=D("5000"),
            socso_max=ContributionSplit(D("24.75"), D("69.05")),
            socso_senior_age=60,
            eis_bands=EIS_BANDS_2024,
            eis_ceiling=D("5000"),
            eis_max=ContributionSplit(D("9.90"), D("9.90")),
            eis_cutoff_age=57,
            tax_brackets=TAX_BRACKETS_2024,
        )
