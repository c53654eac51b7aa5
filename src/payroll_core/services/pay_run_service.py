"""Payroll run service - lifecycle orchestration for payroll runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.calculators import PayPeriod
from payroll_core.calculators.rounding import ZERO, round_to_cents, to_decimal
from payroll_core.config import AutomationConfig, Settings
from payroll_core.models import Claim, Company, CompanyPayrollConfig, Employee, PayrollItem, PayrollRun
from payroll_core.models.base import utcnow
from payroll_core.services.audit import AuditSink, LoggingAuditSink
from payroll_core.services.recalculation_service import (
    BatchRecalculationResult,
    PayrollItemRecalculator,
    RunTotals,
)
from payroll_core.services.state_machine import (
    GuardContext,
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
    RunTransition,
)
from payroll_core.services.variance_service import VarianceAnalyzer, VarianceResult

logger = logging.getLogger(__name__)


class PayrollRunNotFoundError(Exception):
    """Raised when a payroll run does not exist."""

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} not found")


class DuplicatePayrollRunError(Exception):
    """Raised when a run already exists for (company, department, month, year)."""

    def __init__(self, company_id: UUID, department_id: UUID | None, month: int, year: int):
        self.company_id = company_id
        self.department_id = department_id
        self.month = month
        self.year = year
        scope = f"department {department_id}" if department_id else "whole company"
        super().__init__(
            f"Payroll run for {year:04d}-{month:02d} already exists "
            f"(company {company_id}, {scope})"
        )


@dataclass
class TransitionOutcome:
    """Result of a transition request; rejections carry the guard and reason."""

    run_id: UUID
    transition: RunTransition
    success: bool
    from_status: str | None = None
    new_status: str | None = None
    rejection_reason: str | None = None
    guard: str | None = None
    variance_percentage: Decimal | None = None
    variance_threshold: Decimal | None = None


@dataclass
class CompanyGenerationResult:
    """Scheduler outcome for one company."""

    company_id: UUID
    run_id: UUID | None = None
    status: str | None = None
    skipped_reason: str | None = None
    error: str | None = None
    auto_approval: TransitionOutcome | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class ScheduledGenerationResult:
    """Scheduler outcome across all companies."""

    period: PayPeriod
    companies: list[CompanyGenerationResult] = field(default_factory=list)

    @property
    def generated(self) -> list[CompanyGenerationResult]:
        return [c for c in self.companies if c.run_id is not None and c.success]

    @property
    def failed(self) -> list[CompanyGenerationResult]:
        return [c for c in self.companies if not c.success]

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def errors(self) -> list[str]:
        return [f"{c.company_id}: {c.error}" for c in self.failed]


class PayrollRunService:
    """Service for managing the payroll run lifecycle.

    Operations:
    - generate_run: create an auto_generated run with items for active employees
    - create_draft_run: create a draft run for the manual approval path
    - transition_run: the single entry point for every status change
    - run_scheduled_generation: monthly generation (plus optional auto-approval)
    - lock_approved_runs: lock runs whose post-approval grace period elapsed

    Every status change goes through PayrollRunStateMachine; nothing else
    writes PayrollRun.status.
    """

    def __init__(
        self,
        session: AsyncSession,
        recalculator: PayrollItemRecalculator | None = None,
        audit: AuditSink | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.recalculator = recalculator or PayrollItemRecalculator(session)
        self.variance = VarianceAnalyzer(session)
        self.audit = audit or LoggingAuditSink()
        self.settings = settings

    async def get_run(self, run_id: UUID, for_update: bool = False) -> PayrollRun | None:
        """Load a payroll run, optionally locking its row for this transaction."""
        query = select(PayrollRun).where(PayrollRun.id == run_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_run(
        self,
        company_id: UUID,
        month: int,
        year: int,
        department_id: UUID | None = None,
    ) -> PayrollRun | None:
        """Find the run for a (company, department, period) key."""
        query = select(PayrollRun).where(
            PayrollRun.company_id == company_id,
            PayrollRun.month == month,
            PayrollRun.year == year,
        )
        if department_id is None:
            query = query.where(PayrollRun.department_id.is_(None))
        else:
            query = query.where(PayrollRun.department_id == department_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def load_automation_config(self, company_id: UUID) -> AutomationConfig:
        result = await self.session.execute(
            select(CompanyPayrollConfig).where(CompanyPayrollConfig.company_id == company_id)
        )
        return AutomationConfig.from_model(result.scalar_one_or_none(), self.settings)

    async def generate_run(
        self,
        company_id: UUID,
        month: int,
        year: int,
        department_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> PayrollRun:
        """Generate a run from employee defaults (the generate transition from none).

        Raises DuplicatePayrollRunError if a run already exists for the key.
        """
        period = PayPeriod(year, month)
        existing = await self.find_run(company_id, month, year, department_id)
        decision = PayrollRunStateMachine.evaluate(
            None,
            RunTransition.GENERATE,
            GuardContext(run_exists=existing is not None),
        )
        if not decision.allowed:
            raise DuplicatePayrollRunError(company_id, department_id, month, year)

        run = PayrollRun(
            id=uuid4(),
            company_id=company_id,
            department_id=department_id,
            month=month,
            year=year,
            status=decision.to_status.value,
            generation_type="auto",
            generated_at=utcnow(),
        )
        await self._insert_run(run)

        await self._populate_and_compute(run, period)

        self.audit.record(
            "payroll_run",
            run.id,
            "generated",
            actor_id,
            {
                "period": str(period),
                "employee_count": run.employee_count,
                "total_net": str(run.total_net),
                "variance_percentage": str(run.variance_percentage),
            },
        )
        logger.info(
            "Generated payroll run %s for company %s period %s (%d employees)",
            run.id,
            company_id,
            period,
            run.employee_count,
        )
        return run

    async def create_draft_run(
        self,
        company_id: UUID,
        month: int,
        year: int,
        department_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> PayrollRun:
        """Create a draft run for manual review and approval."""
        period = PayPeriod(year, month)
        if await self.find_run(company_id, month, year, department_id) is not None:
            raise DuplicatePayrollRunError(company_id, department_id, month, year)

        run = PayrollRun(
            id=uuid4(),
            company_id=company_id,
            department_id=department_id,
            month=month,
            year=year,
            status=PayrollRunStatus.DRAFT.value,
            generation_type="manual",
        )
        await self._insert_run(run)

        await self._populate_and_compute(run, period)

        self.audit.record("payroll_run", run.id, "created", actor_id, {"period": str(period)})
        return run

    async def transition_run(
        self,
        run_id: UUID,
        transition: RunTransition | str,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> TransitionOutcome:
        """Move a run through one transition, or report why it was refused."""
        transition = RunTransition(transition)
        run = await self.get_run(run_id, for_update=True)
        if run is None:
            return TransitionOutcome(
                run_id=run_id,
                transition=transition,
                success=False,
                rejection_reason=str(PayrollRunNotFoundError(run_id)),
                guard="run_exists",
            )

        context = GuardContext()
        if transition is RunTransition.AUTO_APPROVE:
            automation = await self.load_automation_config(run.company_id)
            context = GuardContext(
                variance_percentage=(
                    to_decimal(run.variance_percentage)
                    if run.variance_percentage is not None
                    else ZERO
                ),
                variance_threshold=automation.variance_threshold,
            )

        decision = PayrollRunStateMachine.evaluate(run.status, transition, context)
        if not decision.allowed:
            logger.info(
                "Payroll run %s: %s refused in status %s (%s)",
                run.id,
                transition.value,
                run.status,
                decision.reason,
            )
            return TransitionOutcome(
                run_id=run.id,
                transition=transition,
                success=False,
                from_status=run.status,
                rejection_reason=decision.reason,
                guard=decision.guard,
                variance_percentage=decision.variance_percentage,
                variance_threshold=decision.variance_threshold,
            )

        from_status = run.status
        now = utcnow()

        if transition is RunTransition.GENERATE:
            run.generation_type = "auto"
            run.generated_at = now
            await self._populate_and_compute(run, PayPeriod(run.year, run.month))

        elif transition is RunTransition.AUTO_APPROVE:
            run.approval_type = "auto"
            run.approved_at = now
            run.approved_by = None

        elif transition is RunTransition.MARK_EDITED:
            run.is_edited = True
            run.edited_at = now
            run.edited_by = actor_id
            run.edit_reason = reason

        elif transition is RunTransition.APPROVE:
            run.approval_type = "manual"
            run.approved_at = now
            run.approved_by = actor_id

        elif transition is RunTransition.LOCK:
            run.locked_at = now
            run.locked_by = actor_id

        run.status = decision.to_status.value
        await self.session.flush()

        details = {"from": from_status, "to": run.status}
        if reason:
            details["reason"] = reason
        if decision.variance_percentage is not None:
            details["variance_percentage"] = str(decision.variance_percentage)
        self.audit.record("payroll_run", run.id, transition.value, actor_id, details)

        return TransitionOutcome(
            run_id=run.id,
            transition=transition,
            success=True,
            from_status=from_status,
            new_status=run.status,
            variance_percentage=decision.variance_percentage,
            variance_threshold=decision.variance_threshold,
        )

    async def auto_approve(self, run_id: UUID) -> TransitionOutcome:
        """Approve without review if the variance is within the company threshold."""
        return await self.transition_run(run_id, RunTransition.AUTO_APPROVE)

    async def mark_edited(
        self, run_id: UUID, actor_id: UUID | None, reason: str | None
    ) -> TransitionOutcome:
        return await self.transition_run(run_id, RunTransition.MARK_EDITED, actor_id, reason)

    async def approve(self, run_id: UUID, actor_id: UUID | None) -> TransitionOutcome:
        return await self.transition_run(run_id, RunTransition.APPROVE, actor_id)

    async def lock(self, run_id: UUID, actor_id: UUID | None = None) -> TransitionOutcome:
        return await self.transition_run(run_id, RunTransition.LOCK, actor_id)

    async def recalculate_run(self, run_id: UUID) -> tuple[BatchRecalculationResult, RunTotals]:
        """Recalculate every item of an editable run and re-aggregate its totals."""
        run = await self.get_run(run_id, for_update=True)
        if run is None:
            raise PayrollRunNotFoundError(run_id)
        if not PayrollRunStateMachine.accepts_edits(run.status):
            raise InvalidTransitionError(
                run.status, "recalculate", "Payroll run is locked", "run_not_locked"
            )
        batch = await self.recalculator.recalculate_run(run)
        totals = await self.recalculator.aggregate_run(run)
        return batch, totals

    async def aggregate_run_totals(self, run_id: UUID) -> RunTotals:
        """Recompute a run's totals from its live items."""
        run = await self.get_run(run_id, for_update=True)
        if run is None:
            raise PayrollRunNotFoundError(run_id)
        return await self.recalculator.aggregate_run(run)

    async def compute_variance(self, run: PayrollRun) -> VarianceResult:
        """Variance of a run's current net total against the prior period."""
        return await self.variance.compute_variance(
            run.company_id, run.month, run.year, run.total_net, run.department_id
        )

    async def run_scheduled_generation(self, month: int, year: int) -> ScheduledGenerationResult:
        """Generate company-wide runs for every active company that wants one.

        Companies that already have a run for the period are skipped. When
        the company enables auto-approval, approval is attempted right after
        generation; a refused approval leaves the run for HR review.
        """
        outcome = ScheduledGenerationResult(period=PayPeriod(year, month))
        result = await self.session.execute(
            select(Company.id).where(Company.is_active.is_(True)).order_by(Company.name)
        )

        for company_id in result.scalars().all():
            company_result = CompanyGenerationResult(company_id=company_id)
            outcome.companies.append(company_result)
            try:
                automation = await self.load_automation_config(company_id)
                if not automation.auto_generate:
                    company_result.skipped_reason = "Automatic generation disabled"
                    continue

                run = await self.generate_run(company_id, month, year)
                company_result.run_id = run.id

                if automation.auto_approve:
                    company_result.auto_approval = await self.auto_approve(run.id)
                company_result.status = run.status

            except DuplicatePayrollRunError as e:
                company_result.skipped_reason = str(e)
            except Exception as e:
                logger.exception(
                    "Scheduled payroll generation failed for company %s", company_id
                )
                company_result.error = str(e)

        return outcome

    async def lock_approved_runs(self, now: datetime | None = None) -> list[TransitionOutcome]:
        """Lock approved runs whose lock_after_days grace period has elapsed."""
        now = now or utcnow()
        result = await self.session.execute(
            select(PayrollRun)
            .where(
                PayrollRun.status.in_(
                    (PayrollRunStatus.APPROVED.value, PayrollRunStatus.AUTO_APPROVED.value)
                ),
                PayrollRun.approved_at.is_not(None),
            )
            .order_by(PayrollRun.approved_at)
        )

        outcomes: list[TransitionOutcome] = []
        for run in result.scalars().all():
            automation = await self.load_automation_config(run.company_id)
            approved_at = run.approved_at
            if approved_at.tzinfo is None:
                approved_at = approved_at.replace(tzinfo=timezone.utc)
            if approved_at + timedelta(days=automation.lock_after_days) > now:
                continue
            try:
                outcomes.append(await self.lock(run.id))
            except Exception as e:
                logger.exception("Automatic lock failed for payroll run %s", run.id)
                outcomes.append(
                    TransitionOutcome(
                        run_id=run.id,
                        transition=RunTransition.LOCK,
                        success=False,
                        from_status=run.status,
                        rejection_reason=str(e),
                    )
                )
        return outcomes

    async def _insert_run(self, run: PayrollRun) -> None:
        """Persist a new run; a concurrent run for the same key surfaces as a duplicate."""
        self.session.add(run)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicatePayrollRunError(
                run.company_id, run.department_id, run.month, run.year
            ) from e

    async def _populate_and_compute(self, run: PayrollRun, period: PayPeriod) -> None:
        """Fill in items, recalculate them, aggregate totals and store the variance."""
        await self._populate_items(run)
        batch = await self.recalculator.recalculate_run(run)
        for failure in batch.failed:
            logger.warning(
                "Payroll run %s: item %s not calculated: %s",
                run.id,
                failure.item_id,
                failure.error,
            )
        totals = await self.recalculator.aggregate_run(run)

        variance = await self.variance.compute_variance(
            run.company_id, period.month, period.year, totals.total_net, run.department_id
        )
        run.variance_from_previous = variance.variance
        run.variance_percentage = variance.percentage
        await self.session.flush()

    async def _populate_items(self, run: PayrollRun) -> int:
        """Add an item for every active employee in scope that lacks one.

        Items start from the employee's default salary and allowance plus any
        approved claims not yet paid; those claims are linked to the new item.
        """
        query = select(Employee).where(
            Employee.company_id == run.company_id,
            Employee.status == "active",
        )
        if run.department_id is not None:
            query = query.where(Employee.department_id == run.department_id)
        employees = (await self.session.execute(query.order_by(Employee.employee_code))).scalars().all()

        existing = set(
            (
                await self.session.execute(
                    select(PayrollItem.employee_id).where(PayrollItem.payroll_run_id == run.id)
                )
            ).scalars().all()
        )

        added = 0
        for employee in employees:
            if employee.id in existing:
                continue

            claims = (
                await self.session.execute(
                    select(Claim).where(
                        Claim.employee_id == employee.id,
                        Claim.status == "approved",
                        Claim.linked_payroll_item_id.is_(None),
                    )
                )
            ).scalars().all()

            item = PayrollItem(
                id=uuid4(),
                payroll_run_id=run.id,
                employee_id=employee.id,
                basic_salary=round_to_cents(to_decimal(employee.default_basic_salary)),
                fixed_allowance=round_to_cents(to_decimal(employee.default_allowance)),
                claims_amount=round_to_cents(
                    sum((to_decimal(c.amount) for c in claims), ZERO)
                ),
            )
            self.session.add(item)
            await self.session.flush()
            for claim in claims:
                claim.linked_payroll_item_id = item.id
            added += 1

        await self.session.flush()
        return added
