"""Applies batches of proposed field edits to a payroll run."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.calculators import EarningComponent, PayPeriod, Proration
from payroll_core.calculators.rounding import round_to_cents
from payroll_core.calculators.types import PRORATABLE_COMPONENTS
from payroll_core.models import Employee, PayrollItem, PayrollRun
from payroll_core.services.audit import AuditSink, LoggingAuditSink
from payroll_core.services.recalculation_service import PayrollItemRecalculator, RunTotals
from payroll_core.services.state_machine import PayrollRunStateMachine

logger = logging.getLogger(__name__)


class ChangeValidationError(Exception):
    """Raised when a single proposed change is not acceptable."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class RecalculationFailedError(Exception):
    """Raised when a touched item cannot be recalculated; the apply is undone."""

    def __init__(self, item_id: UUID, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Recalculation of payroll item {item_id} failed: {reason}")


class EditableField(str, Enum):
    """Item fields that may be changed directly. Derived fields are never listed."""

    BASIC_SALARY = "basic_salary"
    FIXED_ALLOWANCE = "fixed_allowance"
    BONUS = "bonus"
    COMMISSION_AMOUNT = "commission_amount"
    INCENTIVE_AMOUNT = "incentive_amount"
    OTHER_DEDUCTIONS = "other_deductions"
    DEDUCTION_REMARKS = "deduction_remarks"
    TRADE_COMMISSION_AMOUNT = "trade_commission_amount"
    OUTSTATION_AMOUNT = "outstation_amount"
    PCB_OVERRIDE = "pcb_override"


def parse_amount(value: Any) -> Decimal:
    """Non-negative money amount, rounded to cents."""
    if value is None or isinstance(value, bool):
        raise ValueError("an amount is required")
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise ValueError(f"{value!r} is not a valid amount") from None
    if not amount.is_finite():
        raise ValueError(f"{value!r} is not a valid amount")
    if amount < 0:
        raise ValueError("amount cannot be negative")
    return round_to_cents(amount)


def parse_optional_amount(value: Any) -> Decimal | None:
    """Like parse_amount, but None clears the value."""
    if value is None:
        return None
    return parse_amount(value)


def parse_remarks(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("remarks must be text")
    return value


def _set_basic_salary(item: PayrollItem, value: Decimal) -> None:
    item.basic_salary = value


def _set_fixed_allowance(item: PayrollItem, value: Decimal) -> None:
    item.fixed_allowance = value


def _set_bonus(item: PayrollItem, value: Decimal) -> None:
    item.bonus = value


def _set_commission_amount(item: PayrollItem, value: Decimal) -> None:
    item.commission_amount = value


def _set_incentive_amount(item: PayrollItem, value: Decimal) -> None:
    item.incentive_amount = value


def _set_other_deductions(item: PayrollItem, value: Decimal) -> None:
    item.other_deductions = value


def _set_deduction_remarks(item: PayrollItem, value: str | None) -> None:
    item.deduction_remarks = value


def _set_trade_commission_amount(item: PayrollItem, value: Decimal) -> None:
    item.trade_commission_amount = value


def _set_outstation_amount(item: PayrollItem, value: Decimal) -> None:
    item.outstation_amount = value


def _set_pcb_override(item: PayrollItem, value: Decimal | None) -> None:
    item.pcb_override = value


@dataclass(frozen=True)
class FieldSpec:
    """How one editable field is parsed, read, and written."""

    parse: Callable[[Any], Any]
    read: Callable[[PayrollItem], Any]
    write: Callable[[PayrollItem, Any], None]
    component: EarningComponent | None = None


FIELD_SPECS: dict[EditableField, FieldSpec] = {
    EditableField.BASIC_SALARY: FieldSpec(
        parse_amount, lambda i: i.basic_salary, _set_basic_salary,
        EarningComponent.BASIC_SALARY,
    ),
    EditableField.FIXED_ALLOWANCE: FieldSpec(
        parse_amount, lambda i: i.fixed_allowance, _set_fixed_allowance,
        EarningComponent.FIXED_ALLOWANCE,
    ),
    EditableField.BONUS: FieldSpec(
        parse_amount, lambda i: i.bonus, _set_bonus,
        EarningComponent.BONUS,
    ),
    EditableField.COMMISSION_AMOUNT: FieldSpec(
        parse_amount, lambda i: i.commission_amount, _set_commission_amount,
        EarningComponent.COMMISSION_AMOUNT,
    ),
    EditableField.INCENTIVE_AMOUNT: FieldSpec(
        parse_amount, lambda i: i.incentive_amount, _set_incentive_amount,
        EarningComponent.INCENTIVE_AMOUNT,
    ),
    EditableField.OTHER_DEDUCTIONS: FieldSpec(
        parse_amount, lambda i: i.other_deductions, _set_other_deductions,
    ),
    EditableField.DEDUCTION_REMARKS: FieldSpec(
        parse_remarks, lambda i: i.deduction_remarks, _set_deduction_remarks,
    ),
    EditableField.TRADE_COMMISSION_AMOUNT: FieldSpec(
        parse_amount, lambda i: i.trade_commission_amount, _set_trade_commission_amount,
        EarningComponent.TRADE_COMMISSION_AMOUNT,
    ),
    EditableField.OUTSTATION_AMOUNT: FieldSpec(
        parse_amount, lambda i: i.outstation_amount, _set_outstation_amount,
        EarningComponent.OUTSTATION_AMOUNT,
    ),
    EditableField.PCB_OVERRIDE: FieldSpec(
        parse_optional_amount, lambda i: i.pcb_override, _set_pcb_override,
    ),
}


@dataclass(frozen=True)
class ChangeRequest:
    """One proposed edit. ``field`` is unchecked until the change is applied."""

    item_id: UUID
    field: str
    value: Any
    prorate: bool = False


@dataclass
class ChangeResult:
    """Outcome of one change request."""

    item_id: UUID
    field: str
    success: bool
    error: str | None = None
    old_value: Any = None
    new_value: Any = None


@dataclass
class ApplyResult:
    """Outcome of an apply batch."""

    run_id: UUID
    results: list[ChangeResult] = field(default_factory=list)
    totals: RunTotals | None = None
    recalculated_item_ids: list[UUID] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def errors(self) -> list[str]:
        return [f"{r.field}: {r.error}" for r in self.results if not r.success]


class ChangeApplier:
    """Validates and applies proposed field edits, then recalculates.

    Each change is checked on its own: a disallowed field, unknown item,
    or bad value rejects that change only. Every item touched by an
    accepted change is recalculated and the run totals are re-aggregated.
    The caller's transaction covers the whole batch; any unexpected
    failure rolls the session back.
    """

    def __init__(
        self,
        session: AsyncSession,
        recalculator: PayrollItemRecalculator | None = None,
        audit: AuditSink | None = None,
    ):
        self.session = session
        self.recalculator = recalculator or PayrollItemRecalculator(session)
        self.audit = audit or LoggingAuditSink()

    async def apply_changes(
        self,
        run_id: UUID,
        changes: Sequence[ChangeRequest],
        actor_id: UUID | None = None,
    ) -> ApplyResult:
        """Apply a batch of changes to one run."""
        outcome = ApplyResult(run_id=run_id)

        run = (
            await self.session.execute(
                select(PayrollRun).where(PayrollRun.id == run_id).with_for_update()
            )
        ).scalar_one_or_none()
        if run is None:
            return self._reject_all(outcome, changes, f"Payroll run {run_id} not found")
        if not PayrollRunStateMachine.accepts_edits(run.status):
            return self._reject_all(
                outcome, changes, f"Payroll run is {run.status}; edits are not accepted"
            )

        try:
            touched: dict[UUID, None] = {}
            for change in changes:
                result = await self._apply_one(run, change)
                outcome.results.append(result)
                if result.success:
                    touched[change.item_id] = None
            await self.session.flush()

            for item_id in touched:
                recalculated = await self.recalculator.recalculate_item(item_id)
                if not recalculated.success:
                    raise RecalculationFailedError(item_id, recalculated.error or "unknown")
                outcome.recalculated_item_ids.append(item_id)

            outcome.totals = await self.recalculator.aggregate_run(run)
        except Exception:
            logger.exception("Applying changes to payroll run %s failed; rolling back", run_id)
            await self.session.rollback()
            raise

        self.audit.record(
            "payroll_run",
            run.id,
            "changes_applied",
            actor_id,
            {
                "applied": [
                    {
                        "item_id": str(r.item_id),
                        "field": r.field,
                        "old": None if r.old_value is None else str(r.old_value),
                        "new": None if r.new_value is None else str(r.new_value),
                    }
                    for r in outcome.results
                    if r.success
                ],
                "rejected": outcome.failed_count,
            },
        )
        return outcome

    async def _apply_one(self, run: PayrollRun, change: ChangeRequest) -> ChangeResult:
        try:
            editable = self.resolve_field(change.field)
            spec = FIELD_SPECS[editable]

            item = await self.session.get(PayrollItem, change.item_id)
            if item is None or item.is_deleted:
                raise ChangeValidationError(change.field, f"payroll item {change.item_id} not found")
            if item.payroll_run_id != run.id:
                raise ChangeValidationError(
                    change.field, f"payroll item {change.item_id} belongs to another run"
                )

            try:
                value = spec.parse(change.value)
            except ValueError as e:
                raise ChangeValidationError(change.field, str(e)) from None

            if change.prorate:
                value = await self._prorate(run, item, spec, editable, value)

        except ChangeValidationError as e:
            logger.info("Change to %s on item %s rejected: %s", change.field, change.item_id, e)
            return ChangeResult(
                item_id=change.item_id, field=change.field, success=False, error=e.reason
            )

        old_value = spec.read(item)
        spec.write(item, value)
        return ChangeResult(
            item_id=change.item_id,
            field=editable.value,
            success=True,
            old_value=old_value,
            new_value=value,
        )

    @staticmethod
    def resolve_field(name: str) -> EditableField:
        """Map a field name onto the allow-list, or reject it."""
        try:
            return EditableField(name)
        except ValueError:
            raise ChangeValidationError(name, f"field '{name}' is not editable") from None

    async def _prorate(
        self,
        run: PayrollRun,
        item: PayrollItem,
        spec: FieldSpec,
        editable: EditableField,
        value: Decimal,
    ) -> Decimal:
        if spec.component not in PRORATABLE_COMPONENTS:
            raise ChangeValidationError(editable.value, "field cannot be prorated")
        employee = await self.session.get(Employee, item.employee_id)
        if employee is None:
            raise ChangeValidationError(editable.value, f"employee {item.employee_id} not found")
        proration = Proration.for_tenure(employee.join_date, PayPeriod(run.year, run.month))
        return proration.scale(spec.component, value)

    @staticmethod
    def _reject_all(
        outcome: ApplyResult, changes: Sequence[ChangeRequest], reason: str
    ) -> ApplyResult:
        logger.info("Rejecting %d change(s) for run %s: %s", len(changes), outcome.run_id, reason)
        outcome.results = [
            ChangeResult(item_id=c.item_id, field=c.field, success=False, error=reason)
            for c in changes
        ]
        return outcome
