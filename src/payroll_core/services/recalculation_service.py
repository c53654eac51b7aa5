"""Payroll item recalculation and run aggregation."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.calculators import (
    EarningComponent,
    GrossPayAssembler,
    InvalidStatutoryInputError,
    PayPeriod,
    StatutoryCalculator,
    StatutoryOverrides,
    StatutoryProfile,
    YearToDate,
)
from payroll_core.calculators.rounding import ZERO, round_to_cents, to_decimal
from payroll_core.config import StatutoryConfig
from payroll_core.models import CompanyPayrollConfig, Employee, PayrollItem, PayrollRun
from payroll_core.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)

logger = logging.getLogger(__name__)


class PayrollItemNotFoundError(Exception):
    """Raised when a payroll item does not exist (or was deleted)."""

    def __init__(self, item_id: UUID):
        self.item_id = item_id
        super().__init__(f"Payroll item {item_id} not found")


class EmployeeNotFoundError(Exception):
    """Raised when the employee behind a payroll item does not exist."""

    def __init__(self, employee_id: UUID):
        self.employee_id = employee_id
        super().__init__(f"Employee {employee_id} not found")


@dataclass
class RecalculationResult:
    """Result of recalculating one item."""

    item_id: UUID
    item: PayrollItem | None = None
    error: str | None = None
    guard: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class BatchRecalculationResult:
    """Per-item results of a batch; failures never abort siblings."""

    results: list[RecalculationResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[RecalculationResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[RecalculationResult]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def errors(self) -> list[str]:
        return [f"{r.item_id}: {r.error}" for r in self.failed]


@dataclass(frozen=True)
class RunTotals:
    """Run-level aggregates derived from the run's items."""

    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_employer_cost: Decimal
    employee_count: int


def item_components(item: PayrollItem) -> dict[EarningComponent, Decimal]:
    """Earning components currently stored on an item."""
    return {
        EarningComponent.BASIC_SALARY: item.basic_salary,
        EarningComponent.FIXED_ALLOWANCE: item.fixed_allowance,
        EarningComponent.OT_AMOUNT: item.ot_amount,
        EarningComponent.PH_PAY: item.ph_pay,
        EarningComponent.INCENTIVE_AMOUNT: item.incentive_amount,
        EarningComponent.COMMISSION_AMOUNT: item.commission_amount,
        EarningComponent.TRADE_COMMISSION_AMOUNT: item.trade_commission_amount,
        EarningComponent.OUTSTATION_AMOUNT: item.outstation_amount,
        EarningComponent.BONUS: item.bonus,
        EarningComponent.CLAIMS_AMOUNT: item.claims_amount,
    }


class PayrollItemRecalculator:
    """Recomputes an item's derived figures from its stored components.

    Pipeline per item:
    1) Assemble gross pay and statutory base from the components
    2) Snapshot the employee's statutory profile for the run period
    3) Load year-to-date figures from locked runs (when enabled)
    4) Calculate EPF/SOCSO/EIS/PCB, honouring a manual PCB override
    5) Write gross, base, deductions, net and employer cost to the row

    Only the item row is written; run totals are recomputed separately
    by aggregate_run().
    """

    def __init__(
        self,
        session: AsyncSession,
        calculator: StatutoryCalculator | None = None,
        assembler: GrossPayAssembler | None = None,
    ):
        self.session = session
        self.calculator = calculator or StatutoryCalculator()
        self.assembler = assembler or GrossPayAssembler()
        self._config_cache: dict[UUID, StatutoryConfig] = {}

    async def recalculate_item(self, item_id: UUID) -> RecalculationResult:
        """Recalculate and persist a single item."""
        try:
            item = await self._load_item(item_id)
            run = await self.session.get(PayrollRun, item.payroll_run_id)
            if not PayrollRunStateMachine.accepts_edits(run.status):
                raise InvalidTransitionError(
                    run.status, "recalculate", "Payroll run is locked", "run_not_locked"
                )
            await self._recalculate(item, run)
        except InvalidTransitionError as e:
            logger.warning("Recalculation of payroll item %s refused: %s", item_id, e)
            return RecalculationResult(item_id=item_id, error=str(e), guard=e.guard)
        except (PayrollItemNotFoundError, EmployeeNotFoundError, InvalidStatutoryInputError) as e:
            logger.warning("Recalculation of payroll item %s skipped: %s", item_id, e)
            return RecalculationResult(item_id=item_id, error=str(e))

        await self.session.flush()
        return RecalculationResult(item_id=item_id, item=item)

    async def recalculate_items(self, item_ids: Iterable[UUID]) -> BatchRecalculationResult:
        """Recalculate several items, reporting failures per item."""
        batch = BatchRecalculationResult()
        for item_id in item_ids:
            batch.results.append(await self.recalculate_item(item_id))
        return batch

    async def recalculate_run(self, run: PayrollRun) -> BatchRecalculationResult:
        """Recalculate every live item in a run."""
        result = await self.session.execute(
            select(PayrollItem.id)
            .where(
                PayrollItem.payroll_run_id == run.id,
                PayrollItem.deleted_at.is_(None),
            )
            .order_by(PayrollItem.created_at, PayrollItem.id)
        )
        return await self.recalculate_items(result.scalars().all())

    async def aggregate_run(self, run: PayrollRun) -> RunTotals:
        """Recompute run totals by summing its live items (never patched)."""
        await self.session.flush()
        result = await self.session.execute(
            select(PayrollItem).where(
                PayrollItem.payroll_run_id == run.id,
                PayrollItem.deleted_at.is_(None),
            )
        )
        items = result.scalars().all()

        totals = RunTotals(
            total_gross=round_to_cents(sum((i.gross_salary for i in items), ZERO)),
            total_deductions=round_to_cents(sum((i.total_deductions for i in items), ZERO)),
            total_net=round_to_cents(sum((i.net_pay for i in items), ZERO)),
            total_employer_cost=round_to_cents(
                sum((i.employer_total_cost for i in items), ZERO)
            ),
            employee_count=len(items),
        )

        run.total_gross = totals.total_gross
        run.total_deductions = totals.total_deductions
        run.total_net = totals.total_net
        run.total_employer_cost = totals.total_employer_cost
        run.employee_count = totals.employee_count
        await self.session.flush()
        return totals

    async def load_statutory_config(self, company_id: UUID) -> StatutoryConfig:
        """Company statutory toggles, read once per recalculator."""
        if company_id not in self._config_cache:
            result = await self.session.execute(
                select(CompanyPayrollConfig).where(
                    CompanyPayrollConfig.company_id == company_id
                )
            )
            self._config_cache[company_id] = StatutoryConfig.from_model(
                result.scalar_one_or_none()
            )
        return self._config_cache[company_id]

    async def load_year_to_date(
        self,
        employee_id: UUID,
        company_id: UUID,
        period: PayPeriod,
    ) -> YearToDate:
        """Sum what was already paid this year in locked runs before ``period``."""
        if period.month == 1:
            return YearToDate()

        result = await self.session.execute(
            select(
                func.coalesce(func.sum(PayrollItem.statutory_base), 0),
                func.coalesce(func.sum(PayrollItem.epf_employee), 0),
                func.coalesce(func.sum(PayrollItem.pcb), 0),
            )
            .join(PayrollRun, PayrollRun.id == PayrollItem.payroll_run_id)
            .where(
                PayrollItem.employee_id == employee_id,
                PayrollItem.deleted_at.is_(None),
                PayrollRun.company_id == company_id,
                PayrollRun.year == period.year,
                PayrollRun.month < period.month,
                PayrollRun.status == PayrollRunStatus.LOCKED.value,
            )
        )
        ytd_base, ytd_epf, ytd_pcb = result.one()
        return YearToDate(
            base=round_to_cents(to_decimal(ytd_base)),
            epf=round_to_cents(to_decimal(ytd_epf)),
            pcb=round_to_cents(to_decimal(ytd_pcb)),
        )

    async def _recalculate(self, item: PayrollItem, run: PayrollRun) -> None:
        employee = await self.session.get(Employee, item.employee_id)
        if employee is None:
            raise EmployeeNotFoundError(item.employee_id)

        period = PayPeriod(run.year, run.month)
        config = await self.load_statutory_config(run.company_id)
        ytd = None
        if config.ytd_pcb_calculation:
            ytd = await self.load_year_to_date(employee.id, run.company_id, period)

        gross = self.assembler.assemble(
            item_components(item),
            config,
            unpaid_deduction=item.unpaid_leave_deduction,
        )
        statutory = self.calculator.calculate(
            gross.statutory_base,
            StatutoryProfile.from_employee(employee, period),
            period,
            overrides=StatutoryOverrides(pcb=item.pcb_override),
            ytd=ytd,
            config=config,
        )

        total_deductions = (
            statutory.employee_total
            + to_decimal(item.advance_deduction)
            + to_decimal(item.other_deductions)
        )

        item.gross_salary = round_to_cents(gross.gross_pay)
        item.statutory_base = round_to_cents(gross.statutory_base)
        item.epf_employee = round_to_cents(statutory.epf.employee)
        item.epf_employer = round_to_cents(statutory.epf.employer)
        item.socso_employee = round_to_cents(statutory.socso.employee)
        item.socso_employer = round_to_cents(statutory.socso.employer)
        item.eis_employee = round_to_cents(statutory.eis.employee)
        item.eis_employer = round_to_cents(statutory.eis.employer)
        item.pcb = round_to_cents(statutory.pcb)
        item.total_deductions = round_to_cents(total_deductions)
        item.net_pay = item.gross_salary - item.total_deductions
        item.employer_total_cost = round_to_cents(gross.gross_pay + statutory.employer_total)

    async def _load_item(self, item_id: UUID) -> PayrollItem:
        item = await self.session.get(PayrollItem, item_id)
        if item is None or item.is_deleted:
            raise PayrollItemNotFoundError(item_id)
        return item
