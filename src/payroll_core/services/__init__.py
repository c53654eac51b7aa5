"""Payroll core services."""

from payroll_core.services.audit import AuditSink, LoggingAuditSink
from payroll_core.services.change_service import (
    ApplyResult,
    ChangeApplier,
    ChangeRequest,
    ChangeResult,
    EditableField,
)
from payroll_core.services.pay_run_service import (
    DuplicatePayrollRunError,
    PayrollRunNotFoundError,
    PayrollRunService,
    TransitionOutcome,
)
from payroll_core.services.recalculation_service import (
    PayrollItemRecalculator,
    RecalculationResult,
    RunTotals,
)
from payroll_core.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
    RunTransition,
)
from payroll_core.services.variance_service import VarianceAnalyzer, VarianceResult

__all__ = [
    "AuditSink",
    "LoggingAuditSink",
    "ApplyResult",
    "ChangeApplier",
    "ChangeRequest",
    "ChangeResult",
    "EditableField",
    "DuplicatePayrollRunError",
    "PayrollRunNotFoundError",
    "PayrollRunService",
    "TransitionOutcome",
    "PayrollItemRecalculator",
    "RecalculationResult",
    "RunTotals",
    "InvalidTransitionError",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "RunTransition",
    "VarianceAnalyzer",
    "VarianceResult",
]
