"""Unit tests for gross pay assembly, proration and period arithmetic."""

from datetime import date
from decimal import Decimal

import pytest

from payroll_core.calculators import (
    EarningComponent,
    GrossPayAssembler,
    InvalidStatutoryInputError,
    PayPeriod,
    Proration,
    age_on,
    months_employed,
)
from payroll_core.config import StatutoryConfig

D = Decimal


@pytest.fixture
def assembler() -> GrossPayAssembler:
    return GrossPayAssembler()


@pytest.fixture
def components() -> dict[str, Decimal]:
    return {
        "basic_salary": D("3000.00"),
        "fixed_allowance": D("400.00"),
        "ot_amount": D("250.00"),
        "ph_pay": D("180.00"),
        "incentive_amount": D("300.00"),
        "commission_amount": D("120.00"),
        "trade_commission_amount": D("80.00"),
        "outstation_amount": D("150.00"),
        "bonus": D("1000.00"),
        "claims_amount": D("75.50"),
    }


class TestGrossPayAssembler:
    """Gross pay and statutory base composition."""

    def test_default_toggles(self, assembler, components):
        result = assembler.assemble(components)

        assert result.gross_pay == D("5555.50")
        # basic + commission + trade commission + bonus
        assert result.statutory_base == D("4200.00")

    @pytest.mark.parametrize(
        "toggle,extra",
        [
            ("statutory_on_ot", D("250.00")),
            ("statutory_on_ph_pay", D("180.00")),
            ("statutory_on_allowance", D("400.00")),
            ("statutory_on_incentive", D("300.00")),
        ],
    )
    def test_toggle_adds_component(self, assembler, components, toggle, extra):
        config = StatutoryConfig(**{toggle: True})

        result = assembler.assemble(components, config)

        assert result.statutory_base == D("4200.00") + extra
        assert result.gross_pay == D("5555.50")

    def test_all_toggles(self, assembler, components):
        config = StatutoryConfig(
            statutory_on_ot=True,
            statutory_on_ph_pay=True,
            statutory_on_allowance=True,
            statutory_on_incentive=True,
        )

        result = assembler.assemble(components, config)

        # Outstation and claims are never statutory
        assert result.statutory_base == D("5330.00")

    def test_missing_components_are_zero(self, assembler):
        result = assembler.assemble({"basic_salary": "2500", "bonus": None})

        assert result.gross_pay == D("2500.00")
        assert result.statutory_base == D("2500.00")

    def test_empty_components(self, assembler):
        result = assembler.assemble({})

        assert result.gross_pay == D("0.00")
        assert result.statutory_base == D("0.00")

    def test_unknown_component_rejected(self, assembler):
        with pytest.raises(InvalidStatutoryInputError) as exc_info:
            assembler.assemble({"basic_salary": D("1000"), "tips": D("50")})

        assert exc_info.value.value == "tips"

    def test_unpaid_leave_reduces_gross_only(self, assembler):
        result = assembler.assemble(
            {"basic_salary": D("3100.00")}, unpaid_deduction=D("200.00")
        )

        assert result.gross_pay == D("2900.00")
        assert result.statutory_base == D("3100.00")

    def test_accepts_enum_keys(self, assembler):
        result = assembler.assemble({EarningComponent.BONUS: D("500")})

        assert result.gross_pay == D("500.00")

    def test_proration_scales_bonus_only(self, assembler, components):
        result = assembler.assemble(components, proration=Proration(months_employed=6))

        # Bonus 1,000 becomes 500
        assert result.gross_pay == D("5055.50")
        assert result.statutory_base == D("3700.00")

    def test_full_year_not_prorated(self, assembler, components):
        prorated = assembler.assemble(components, proration=Proration(months_employed=12))

        assert prorated == assembler.assemble(components)

    def test_proration_custom_fields(self, assembler):
        proration = Proration(
            months_employed=3,
            scaled_fields=frozenset({EarningComponent.INCENTIVE_AMOUNT}),
        )

        result = assembler.assemble(
            {"incentive_amount": D("1200"), "bonus": D("1200")}, proration=proration
        )

        assert result.gross_pay == D("1500.00")


class TestProration:
    """Tenure-based scaling."""

    def test_scale_rounds_to_cents(self):
        assert Proration(7).scale(EarningComponent.BONUS, D("1000")) == D("583.33")

    def test_negative_months_rejected(self):
        with pytest.raises(InvalidStatutoryInputError):
            Proration(-1)

    def test_for_tenure(self):
        proration = Proration.for_tenure(date(2023, 12, 15), PayPeriod(2024, 6))

        assert proration.months_employed == 6
        assert proration.applies

    def test_unknown_join_date_is_full_year(self):
        assert not Proration.for_tenure(None, PayPeriod(2024, 6)).applies


class TestMonthsEmployed:
    """Whole months of tenure."""

    @pytest.mark.parametrize(
        "join_date,on,expected",
        [
            (date(2024, 1, 15), date(2024, 6, 30), 5),
            (date(2024, 1, 31), date(2024, 2, 29), 1),
            (date(2024, 3, 20), date(2024, 4, 10), 0),
            (date(2024, 7, 1), date(2024, 6, 30), 0),
            (date(2019, 5, 1), date(2024, 6, 30), 61),
        ],
    )
    def test_floored_months(self, join_date, on, expected):
        assert months_employed(join_date, on) == expected

    def test_unknown_join_date(self):
        assert months_employed(None, date(2024, 6, 30)) == 12


class TestPeriods:
    """Pay period and age arithmetic."""

    def test_previous_wraps_january(self):
        assert PayPeriod(2024, 1).previous() == PayPeriod(2023, 12)
        assert PayPeriod(2024, 7).previous() == PayPeriod(2024, 6)

    def test_reference_date_is_month_end(self):
        assert PayPeriod(2024, 2).reference_date == date(2024, 2, 29)
        assert PayPeriod(2023, 2).reference_date == date(2023, 2, 28)

    def test_remaining_months(self):
        assert PayPeriod(2024, 1).remaining_months == 12
        assert PayPeriod(2024, 12).remaining_months == 1

    def test_invalid_month(self):
        with pytest.raises(ValueError):
            PayPeriod(2024, 0)

    def test_str(self):
        assert str(PayPeriod(2024, 3)) == "2024-03"

    def test_age_on(self):
        assert age_on(date(1964, 6, 30), date(2024, 6, 30)) == 60
        assert age_on(date(1964, 7, 1), date(2024, 6, 30)) == 59
        assert age_on(None, date(2024, 6, 30)) == 30
