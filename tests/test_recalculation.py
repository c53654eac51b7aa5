"""Tests for payroll item recalculation and run aggregation."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from payroll_core.calculators import PayPeriod
from payroll_core.models import PayrollItem, PayrollRun
from payroll_core.services.recalculation_service import PayrollItemRecalculator

pytestmark = pytest.mark.asyncio

D = Decimal

DERIVED_FIELDS = (
    "gross_salary",
    "statutory_base",
    "epf_employee",
    "epf_employer",
    "socso_employee",
    "socso_employer",
    "eis_employee",
    "eis_employer",
    "pcb",
    "total_deductions",
    "net_pay",
    "employer_total_cost",
)


def snapshot(item: PayrollItem) -> dict[str, Decimal]:
    return {name: getattr(item, name) for name in DERIVED_FIELDS}


async def items_by_code(session, run: PayrollRun, employees) -> dict[str, PayrollItem]:
    result = await session.execute(
        select(PayrollItem).where(PayrollItem.payroll_run_id == run.id)
    )
    codes = {e.id: e.employee_code for e in employees}
    return {codes[item.employee_id]: item for item in result.scalars().all()}


class TestRecalculateItem:
    """Single item recalculation."""

    async def test_computes_derived_fields(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)
        recalculator = PayrollItemRecalculator(session)

        result = await recalculator.recalculate_item(items["EMP001"].id)

        assert result.success
        item = result.item
        assert item.gross_salary == D("3500.00")
        assert item.statutory_base == D("3000.00")
        assert (item.epf_employee, item.epf_employer) == (D("330.00"), D("390.00"))
        assert (item.socso_employee, item.socso_employer) == (D("14.75"), D("44.50"))
        assert (item.eis_employee, item.eis_employer) == (D("5.90"), D("5.90"))
        assert item.pcb == D("0.00")
        assert item.total_deductions == D("350.65")
        assert item.net_pay == D("3149.35")
        assert item.employer_total_cost == D("3940.40")

    async def test_high_earner(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)

        result = await PayrollItemRecalculator(session).recalculate_item(items["EMP002"].id)

        item = result.item
        assert (item.epf_employee, item.epf_employer) == (D("1100.00"), D("1200.00"))
        assert (item.socso_employee, item.socso_employer) == (D("24.75"), D("69.05"))
        assert (item.eis_employee, item.eis_employer) == (D("9.90"), D("9.90"))
        assert item.pcb == D("639.70")
        assert item.net_pay == D("8225.65")
        assert item.employer_total_cost == D("11278.95")

    async def test_idempotent(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)
        recalculator = PayrollItemRecalculator(session)

        first = snapshot((await recalculator.recalculate_item(items["EMP002"].id)).item)
        second = snapshot((await recalculator.recalculate_item(items["EMP002"].id)).item)

        assert first == second

    async def test_net_pay_identity(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)
        item = items["EMP001"]
        item.advance_deduction = D("200.00")
        item.other_deductions = D("45.50")
        item.commission_amount = D("812.40")

        result = await PayrollItemRecalculator(session).recalculate_item(item.id)

        assert result.success
        statutory = item.epf_employee + item.socso_employee + item.eis_employee + item.pcb
        assert item.total_deductions == statutory + D("245.50")
        assert item.net_pay == item.gross_salary - item.total_deductions

    async def test_pcb_override(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)
        item = items["EMP002"]
        item.pcb_override = D("0.00")

        await PayrollItemRecalculator(session).recalculate_item(item.id)

        assert item.pcb == D("0.00")
        assert item.net_pay == D("8865.35")

    async def test_unpaid_leave(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)
        item = items["EMP001"]
        item.unpaid_leave_deduction = D("230.77")

        await PayrollItemRecalculator(session).recalculate_item(item.id)

        assert item.gross_salary == D("3269.23")

    async def test_company_toggles(self, session, draft_run, employees, payroll_config):
        payroll_config.statutory_on_allowance = True
        payroll_config.eis_enabled = False
        await session.flush()
        items = await items_by_code(session, draft_run, employees)

        await PayrollItemRecalculator(session).recalculate_item(items["EMP001"].id)

        item = items["EMP001"]
        assert item.statutory_base == D("3500.00")
        assert item.epf_employee == D("385.00")
        assert (item.eis_employee, item.eis_employer) == (D("0.00"), D("0.00"))

    async def test_missing_item_reported(self, session, draft_run):
        missing_id = uuid4()

        result = await PayrollItemRecalculator(session).recalculate_item(missing_id)

        assert not result.success
        assert result.item is None
        assert str(missing_id) in result.error

    async def test_deleted_item_reported(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)
        items["EMP001"].deleted_at = datetime.now(timezone.utc)
        await session.flush()

        result = await PayrollItemRecalculator(session).recalculate_item(items["EMP001"].id)

        assert not result.success

    async def test_locked_run_item_refused(
        self, session, company, employees, make_run, payroll_config
    ):
        alice = employees[0]
        locked = await make_run(
            company.id,
            2,
            2024,
            status="locked",
            items={
                alice: {
                    "basic_salary": D("3000.00"),
                    "fixed_allowance": D("500.00"),
                    "gross_salary": D("3500.00"),
                    "net_pay": D("3149.35"),
                }
            },
        )
        payroll_config.statutory_on_allowance = True
        await session.flush()
        items = await items_by_code(session, locked, employees)

        result = await PayrollItemRecalculator(session).recalculate_item(items["EMP001"].id)

        assert not result.success
        assert result.guard == "run_not_locked"
        assert "locked" in result.error
        assert items["EMP001"].net_pay == D("3149.35")

    async def test_failure_does_not_abort_siblings(self, session, draft_run, employees):
        items = await items_by_code(session, draft_run, employees)

        batch = await PayrollItemRecalculator(session).recalculate_items(
            [uuid4(), items["EMP001"].id, items["EMP002"].id]
        )

        assert len(batch.failed) == 1
        assert len(batch.succeeded) == 2
        assert not batch.success
        assert items["EMP002"].net_pay == D("8225.65")


class TestYearToDate:
    """Year-to-date figures feed the tax projection."""

    async def test_locked_runs_count(self, session, company, employees, make_run):
        _, bala, _ = employees
        await make_run(
            company.id,
            1,
            2024,
            status="locked",
            items={
                bala: {
                    "basic_salary": D("5000.00"),
                    "statutory_base": D("5000.00"),
                    "epf_employee": D("550.00"),
                    "pcb": D("0.00"),
                    "net_pay": D("4450.00"),
                }
            },
        )
        february = await make_run(
            company.id, 2, 2024, items={bala: {"basic_salary": D("10000.00")}}
        )
        recalculator = PayrollItemRecalculator(session)

        ytd = await recalculator.load_year_to_date(bala.id, company.id, PayPeriod(2024, 2))
        batch = await recalculator.recalculate_run(february)

        assert ytd.base == D("5000.00")
        assert ytd.epf == D("550.00")
        assert batch.succeeded[0].item.pcb == D("847.75")

    async def test_unlocked_runs_ignored(self, session, company, employees, make_run):
        _, bala, _ = employees
        await make_run(
            company.id,
            1,
            2024,
            status="approved",
            items={bala: {"basic_salary": D("5000.00"), "statutory_base": D("5000.00")}},
        )
        february = await make_run(
            company.id, 2, 2024, items={bala: {"basic_salary": D("10000.00")}}
        )

        batch = await PayrollItemRecalculator(session).recalculate_run(february)

        assert batch.succeeded[0].item.pcb == D("754.30")

    async def test_disabled_by_company(
        self, session, company, employees, make_run, payroll_config
    ):
        payroll_config.ytd_pcb_calculation = False
        await session.flush()
        _, bala, _ = employees
        await make_run(
            company.id,
            1,
            2024,
            status="locked",
            items={bala: {"basic_salary": D("5000.00"), "statutory_base": D("5000.00")}},
        )
        february = await make_run(
            company.id, 2, 2024, items={bala: {"basic_salary": D("10000.00")}}
        )

        batch = await PayrollItemRecalculator(session).recalculate_run(february)

        assert batch.succeeded[0].item.pcb == D("754.30")

    async def test_january_has_no_history(self, session, company, employees):
        ytd = await PayrollItemRecalculator(session).load_year_to_date(
            employees[1].id, company.id, PayPeriod(2024, 1)
        )

        assert ytd.base == D("0")


class TestAggregateRun:
    """Run totals are the sum of live items."""

    async def test_totals(self, session, draft_run):
        recalculator = PayrollItemRecalculator(session)
        await recalculator.recalculate_run(draft_run)

        totals = await recalculator.aggregate_run(draft_run)

        assert totals.total_gross == D("13500.00")
        assert totals.total_deductions == D("2125.00")
        assert totals.total_net == D("11375.00")
        assert totals.total_employer_cost == D("15219.35")
        assert totals.employee_count == 2
        assert draft_run.total_net == D("11375.00")
        assert draft_run.employee_count == 2

    async def test_deleted_items_excluded(self, session, draft_run, employees):
        recalculator = PayrollItemRecalculator(session)
        await recalculator.recalculate_run(draft_run)
        items = await items_by_code(session, draft_run, employees)
        items["EMP002"].deleted_at = datetime.now(timezone.utc)

        totals = await recalculator.aggregate_run(draft_run)

        assert totals.employee_count == 1
        assert totals.total_net == D("3149.35")
