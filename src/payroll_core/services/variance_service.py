"""Net pay variance against the prior period's run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.calculators import PayPeriod
from payroll_core.calculators.rounding import ZERO, round_to_cents, to_decimal
from payroll_core.models import PayrollItem, PayrollRun
from payroll_core.services.state_machine import PayrollRunStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VarianceResult:
    """Absolute and percentage change in net pay versus the prior period."""

    variance: Decimal
    percentage: Decimal
    has_previous: bool
    previous_total: Decimal | None = None

    @classmethod
    def no_history(cls) -> VarianceResult:
        """Default when there is nothing to compare against."""
        return cls(variance=ZERO, percentage=ZERO, has_previous=False)


class VarianceAnalyzer:
    """Compares a run's net total with the equivalent run one month earlier.

    The equivalent run has the same company and department (both NULL
    department or the same one) and an approved or locked status. A
    missing, empty, or ambiguous prior period yields no variance signal
    rather than an error.
    """

    COMPARABLE_STATUSES = (
        PayrollRunStatus.APPROVED.value,
        PayrollRunStatus.AUTO_APPROVED.value,
        PayrollRunStatus.LOCKED.value,
    )

    def __init__(self, session: AsyncSession):
        self.session = session

    async def compute_variance(
        self,
        company_id: UUID,
        month: int,
        year: int,
        current_total: Decimal,
        department_id: UUID | None = None,
    ) -> VarianceResult:
        """Variance of ``current_total`` against the prior period's net total."""
        previous = PayPeriod(year, month).previous()
        runs = await self._find_prior_runs(company_id, department_id, previous)

        if not runs:
            return VarianceResult.no_history()
        if len(runs) > 1:
            logger.warning(
                "Ambiguous prior period %s for company %s department %s: %d runs",
                previous,
                company_id,
                department_id,
                len(runs),
            )
            return VarianceResult.no_history()

        previous_total = await self._net_total(runs[0].id)
        return self.compare(previous_total, to_decimal(current_total))

    @staticmethod
    def compare(previous_total: Decimal, current_total: Decimal) -> VarianceResult:
        """Variance and percentage (2 dp) of current against previous."""
        if previous_total == 0:
            return VarianceResult.no_history()

        variance = current_total - previous_total
        percentage = variance / previous_total * Decimal("100")
        return VarianceResult(
            variance=round_to_cents(variance),
            percentage=round_to_cents(percentage),
            has_previous=True,
            previous_total=round_to_cents(previous_total),
        )

    async def _find_prior_runs(
        self,
        company_id: UUID,
        department_id: UUID | None,
        period: PayPeriod,
    ) -> list[PayrollRun]:
        query = select(PayrollRun).where(
            PayrollRun.company_id == company_id,
            PayrollRun.month == period.month,
            PayrollRun.year == period.year,
            PayrollRun.status.in_(self.COMPARABLE_STATUSES),
        )
        if department_id is None:
            query = query.where(PayrollRun.department_id.is_(None))
        else:
            query = query.where(PayrollRun.department_id == department_id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _net_total(self, run_id: UUID) -> Decimal:
        result = await self.session.execute(
            select(PayrollItem.net_pay).where(
                PayrollItem.payroll_run_id == run_id,
                PayrollItem.deleted_at.is_(None),
            )
        )
        return sum((to_decimal(net) for net in result.scalars().all()), ZERO)
