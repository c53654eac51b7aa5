"""Payroll core command line interface.

Exposes the operations the scheduler and operators invoke:
- Run generation (single company or every company due)
- Auto-approval, manual approval and locking
- Locking runs whose grace period elapsed
- Recalculation and variance inspection
- Applying a batch of proposed item changes

Usage:
    python -m payroll_core generate --company-id X --month 3 --year 2024
    python -m payroll_core scheduled-generate --month 3 --year 2024
    python -m payroll_core auto-approve --run-id X
    python -m payroll_core apply-changes --run-id X --file changes.json
    python -m payroll_core lock-due
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import BaseModel, ValidationError

from payroll_core.config import get_settings
from payroll_core.database import dispose_db, get_session
from payroll_core.schemas import (
    ApplyResultOut,
    ChangeProposalBatch,
    PayrollRunSummary,
    RunTotalsOut,
    TransitionOutcomeOut,
    VarianceOut,
)
from payroll_core.services import (
    ChangeApplier,
    DuplicatePayrollRunError,
    InvalidTransitionError,
    PayrollRunNotFoundError,
    PayrollRunService,
    RunTransition,
    VarianceAnalyzer,
)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_month(s: str) -> int:
    """Parse a month number (1-12)."""
    month = int(s)
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"month must be between 1 and 12, got {month}")
    return month


def emit(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2))


class PayrollCli:
    """Payroll core command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-core",
            description="Payroll run operations",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        generate = subparsers.add_parser("generate", help="Generate a payroll run")
        self._add_period_args(generate)
        generate.add_argument("--company-id", type=parse_uuid, required=True)
        generate.add_argument("--department-id", type=parse_uuid)
        generate.add_argument(
            "--draft",
            action="store_true",
            help="Create a draft run for manual approval instead",
        )

        scheduled = subparsers.add_parser(
            "scheduled-generate",
            help="Generate runs for every company with automatic generation enabled",
        )
        self._add_period_args(scheduled)

        for name, help_text in (
            ("auto-approve", "Auto-approve a generated run if variance allows"),
            ("approve", "Manually approve a run"),
            ("lock", "Lock an approved run"),
            ("mark-edited", "Mark an auto-approved run as edited"),
            ("recalculate", "Recalculate every item of a run"),
        ):
            cmd = subparsers.add_parser(name, help=help_text)
            cmd.add_argument("--run-id", type=parse_uuid, required=True)
            cmd.add_argument("--actor-id", type=parse_uuid, help="User performing the action")
            if name == "mark-edited":
                cmd.add_argument("--reason", type=str, help="Why the run was edited")

        subparsers.add_parser(
            "lock-due",
            help="Lock approved runs whose grace period has elapsed",
        )

        apply_changes = subparsers.add_parser(
            "apply-changes",
            help="Apply proposed item changes from a JSON file",
        )
        apply_changes.add_argument("--run-id", type=parse_uuid, required=True)
        apply_changes.add_argument("--actor-id", type=parse_uuid)
        apply_changes.add_argument(
            "--file",
            type=Path,
            required=True,
            help='JSON file: {"changes": [{"item_id": ..., "field": ..., "new_value": ...}]}',
        )

        variance = subparsers.add_parser(
            "variance",
            help="Show net pay variance against the prior period",
        )
        self._add_period_args(variance)
        variance.add_argument("--company-id", type=parse_uuid, required=True)
        variance.add_argument("--department-id", type=parse_uuid)
        variance.add_argument(
            "--current-total",
            type=str,
            help="Net total to compare (defaults to the period's run total)",
        )

        return parser

    @staticmethod
    def _add_period_args(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--month", type=parse_month, required=True)
        cmd.add_argument("--year", type=int, required=True)

    def run(self, args: list[str] | None = None) -> int:
        """Run CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "generate": self._cmd_generate,
            "scheduled-generate": self._cmd_scheduled_generate,
            "auto-approve": self._cmd_transition,
            "approve": self._cmd_transition,
            "lock": self._cmd_transition,
            "mark-edited": self._cmd_transition,
            "recalculate": self._cmd_recalculate,
            "lock-due": self._cmd_lock_due,
            "apply-changes": self._cmd_apply_changes,
            "variance": self._cmd_variance,
        }

        settings = get_settings()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        return asyncio.run(self._run_handler(handler, parsed))

    async def _run_handler(
        self,
        handler: Callable[[argparse.Namespace], Awaitable[int]],
        parsed: argparse.Namespace,
    ) -> int:
        try:
            return await handler(parsed)
        except (DuplicatePayrollRunError, InvalidTransitionError, PayrollRunNotFoundError) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        finally:
            await dispose_db()

    async def _cmd_generate(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            service = PayrollRunService(session, settings=get_settings())
            if args.draft:
                run = await service.create_draft_run(
                    args.company_id, args.month, args.year, args.department_id
                )
            else:
                run = await service.generate_run(
                    args.company_id, args.month, args.year, args.department_id
                )
            emit(PayrollRunSummary.model_validate(run))
        return 0

    async def _cmd_scheduled_generate(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            service = PayrollRunService(session, settings=get_settings())
            outcome = await service.run_scheduled_generation(args.month, args.year)

        for company in outcome.companies:
            line: dict[str, Any] = {"company_id": str(company.company_id)}
            if company.run_id:
                line["run_id"] = str(company.run_id)
                line["status"] = company.status
            if company.skipped_reason:
                line["skipped"] = company.skipped_reason
            if company.error:
                line["error"] = company.error
            if company.auto_approval and not company.auto_approval.success:
                line["held_for_review"] = company.auto_approval.rejection_reason
            print(json.dumps(line))

        print(
            f"\nGenerated {len(outcome.generated)} run(s), "
            f"{len(outcome.failed)} failure(s) for {outcome.period}"
        )
        return 0 if outcome.success else 1

    async def _cmd_transition(self, args: argparse.Namespace) -> int:
        transition = {
            "auto-approve": RunTransition.AUTO_APPROVE,
            "approve": RunTransition.APPROVE,
            "lock": RunTransition.LOCK,
            "mark-edited": RunTransition.MARK_EDITED,
        }[args.command]

        async with get_session() as session:
            service = PayrollRunService(session, settings=get_settings())
            outcome = await service.transition_run(
                args.run_id,
                transition,
                actor_id=args.actor_id,
                reason=getattr(args, "reason", None),
            )
            emit(TransitionOutcomeOut.model_validate(outcome))
        return 0 if outcome.success else 1

    async def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            service = PayrollRunService(session, settings=get_settings())
            batch, totals = await service.recalculate_run(args.run_id)

        for error in batch.errors:
            print(f"  ✗ {error}", file=sys.stderr)
        emit(RunTotalsOut.model_validate(totals))
        return 0 if batch.success else 1

    async def _cmd_lock_due(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            service = PayrollRunService(session, settings=get_settings())
            outcomes = await service.lock_approved_runs()

        for outcome in outcomes:
            emit(TransitionOutcomeOut.model_validate(outcome))
        print(f"Locked {sum(1 for o in outcomes if o.success)} run(s)")
        return 0 if all(o.success for o in outcomes) else 1

    async def _cmd_apply_changes(self, args: argparse.Namespace) -> int:
        try:
            batch = ChangeProposalBatch.model_validate_json(args.file.read_text())
        except (OSError, ValidationError) as e:
            print(f"ERROR: could not read change proposals: {e}", file=sys.stderr)
            return 1

        async with get_session() as session:
            applier = ChangeApplier(session)
            result = await applier.apply_changes(
                args.run_id, batch.to_requests(), actor_id=args.actor_id
            )
            emit(ApplyResultOut.model_validate(result))
        return 0 if result.success else 1

    async def _cmd_variance(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            if args.current_total is not None:
                current_total = args.current_total
            else:
                service = PayrollRunService(session)
                run = await service.find_run(
                    args.company_id, args.month, args.year, args.department_id
                )
                if run is None:
                    print("ERROR: no payroll run for that period", file=sys.stderr)
                    return 1
                current_total = run.total_net

            result = await VarianceAnalyzer(session).compute_variance(
                args.company_id,
                args.month,
                args.year,
                current_total,
                args.department_id,
            )
            emit(VarianceOut.model_validate(result))
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
