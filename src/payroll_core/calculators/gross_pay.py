"""Gross pay and statutory base assembly."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from payroll_core.calculators.rounding import ZERO, round_to_cents, to_decimal
from payroll_core.calculators.types import (
    CORE_STATUTORY_COMPONENTS,
    EarningComponent,
    GrossPay,
    InvalidStatutoryInputError,
    Proration,
)
from payroll_core.config import StatutoryConfig

ComponentAmounts = Mapping[str, "Decimal | int | str | None"]


class GrossPayAssembler:
    """Combines earning components into gross pay and the statutory base.

    gross = sum(all components) - unpaid leave deduction

    The statutory base always holds basic salary, commission, trade
    commission and bonus; overtime, holiday pay, fixed allowance and
    incentives join it only when the company toggles say so.
    """

    def assemble(
        self,
        components: ComponentAmounts,
        config: StatutoryConfig | None = None,
        unpaid_deduction: Decimal | int | str | None = None,
        proration: Proration | None = None,
    ) -> GrossPay:
        """Assemble gross pay. Missing components count as zero."""
        config = config or StatutoryConfig()
        amounts = self.normalize(components)

        if proration is not None:
            amounts = {
                component: proration.scale(component, amount)
                for component, amount in amounts.items()
            }

        included = self.statutory_components(config)
        gross = sum(amounts.values(), ZERO) - to_decimal(unpaid_deduction)
        statutory_base = sum(
            (amount for component, amount in amounts.items() if component in included),
            ZERO,
        )

        return GrossPay(
            gross_pay=round_to_cents(gross),
            statutory_base=round_to_cents(statutory_base),
        )

    @staticmethod
    def statutory_components(config: StatutoryConfig) -> frozenset[EarningComponent]:
        """Components that count toward the statutory base under ``config``."""
        included = set(CORE_STATUTORY_COMPONENTS)
        if config.statutory_on_ot:
            included.add(EarningComponent.OT_AMOUNT)
        if config.statutory_on_ph_pay:
            included.add(EarningComponent.PH_PAY)
        if config.statutory_on_allowance:
            included.add(EarningComponent.FIXED_ALLOWANCE)
        if config.statutory_on_incentive:
            included.add(EarningComponent.INCENTIVE_AMOUNT)
        return frozenset(included)

    @staticmethod
    def normalize(components: ComponentAmounts) -> dict[EarningComponent, Decimal]:
        """Key every component by enum and fill in the missing ones with zero."""
        amounts = {component: ZERO for component in EarningComponent}
        for name, value in components.items():
            try:
                component = EarningComponent(name)
            except ValueError:
                raise InvalidStatutoryInputError(
                    "earning component", name, "is not a known component"
                ) from None
            amounts[component] = to_decimal(value)
        return amounts
