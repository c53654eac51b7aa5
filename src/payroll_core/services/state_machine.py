"""Payroll run state machine with a central transition table."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    AUTO_GENERATED = "auto_generated"
    AUTO_APPROVED = "auto_approved"
    EDITED = "edited"
    APPROVED = "approved"
    LOCKED = "locked"


class RunTransition(str, Enum):
    """Named transitions a caller may request."""

    GENERATE = "generate"
    AUTO_APPROVE = "auto_approve"
    MARK_EDITED = "mark_edited"
    APPROVE = "approve"
    LOCK = "lock"


class InvalidTransitionError(Exception):
    """Raised when a transition is not allowed from the current status."""

    def __init__(
        self,
        from_status: str | None,
        transition: str,
        reason: str | None = None,
        guard: str | None = None,
    ):
        self.from_status = from_status
        self.transition = transition
        self.reason = reason
        self.guard = guard
        msg = f"Invalid transition '{transition}' from '{from_status or 'none'}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


@dataclass(frozen=True)
class GuardContext:
    """Facts a guard may inspect."""

    variance_percentage: Decimal | None = None
    variance_threshold: Decimal | None = None
    run_exists: bool = False


@dataclass(frozen=True)
class TransitionRule:
    """One legal transition: where it may start, where it ends, what guards it."""

    transition: RunTransition
    from_statuses: frozenset[PayrollRunStatus | None]
    to_status: PayrollRunStatus
    guard: str | None = None


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of evaluating a transition against a run's status."""

    transition: RunTransition
    from_status: PayrollRunStatus | None
    to_status: PayrollRunStatus | None
    allowed: bool
    reason: str | None = None
    guard: str | None = None
    variance_percentage: Decimal | None = None
    variance_threshold: Decimal | None = None


def _guard_run_key_unused(ctx: GuardContext) -> str | None:
    if ctx.run_exists:
        return "A payroll run already exists for this company, department and period"
    return None


def _guard_variance_within_threshold(ctx: GuardContext) -> str | None:
    # Compares the stored 2 dp percentage, so 5.004% passes a 5.00 threshold.
    variance = ctx.variance_percentage if ctx.variance_percentage is not None else Decimal("0")
    threshold = ctx.variance_threshold if ctx.variance_threshold is not None else Decimal("0")
    if abs(variance) > threshold:
        return f"Variance {variance}% exceeds threshold {threshold}%"
    return None


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - (none)/draft → auto_generated            generate
    - auto_generated → auto_approved           auto_approve, if |variance| ≤ threshold
    - auto_approved → edited                   mark_edited
    - edited/draft/auto_generated → approved   approve (manual, no variance check)
    - approved/auto_approved → locked          lock (terminal)
    """

    TRANSITIONS: dict[RunTransition, TransitionRule] = {
        RunTransition.GENERATE: TransitionRule(
            RunTransition.GENERATE,
            frozenset({None, PayrollRunStatus.DRAFT}),
            PayrollRunStatus.AUTO_GENERATED,
            guard="run_key_unused",
        ),
        RunTransition.AUTO_APPROVE: TransitionRule(
            RunTransition.AUTO_APPROVE,
            frozenset({PayrollRunStatus.AUTO_GENERATED}),
            PayrollRunStatus.AUTO_APPROVED,
            guard="variance_within_threshold",
        ),
        RunTransition.MARK_EDITED: TransitionRule(
            RunTransition.MARK_EDITED,
            frozenset({PayrollRunStatus.AUTO_APPROVED}),
            PayrollRunStatus.EDITED,
        ),
        RunTransition.APPROVE: TransitionRule(
            RunTransition.APPROVE,
            frozenset({
                PayrollRunStatus.EDITED,
                PayrollRunStatus.DRAFT,
                PayrollRunStatus.AUTO_GENERATED,
            }),
            PayrollRunStatus.APPROVED,
        ),
        RunTransition.LOCK: TransitionRule(
            RunTransition.LOCK,
            frozenset({PayrollRunStatus.APPROVED, PayrollRunStatus.AUTO_APPROVED}),
            PayrollRunStatus.LOCKED,
        ),
    }

    GUARDS: dict[str, Callable[[GuardContext], str | None]] = {
        "run_key_unused": _guard_run_key_unused,
        "variance_within_threshold": _guard_variance_within_threshold,
    }

    # Field edits are refused once a run reaches these statuses
    EDITS_FROZEN = frozenset({PayrollRunStatus.LOCKED})

    @staticmethod
    def coerce_status(status: str | PayrollRunStatus | None) -> PayrollRunStatus | None:
        if status is None:
            return None
        return PayrollRunStatus(status)

    @classmethod
    def can_transition(
        cls,
        from_status: str | PayrollRunStatus | None,
        transition: str | RunTransition,
    ) -> bool:
        """Check whether the status allows the transition (guards not evaluated)."""
        rule = cls.TRANSITIONS[RunTransition(transition)]
        return cls.coerce_status(from_status) in rule.from_statuses

    @classmethod
    def evaluate(
        cls,
        from_status: str | PayrollRunStatus | None,
        transition: str | RunTransition,
        context: GuardContext | None = None,
    ) -> TransitionDecision:
        """Decide a transition: status check first, then the rule's guard."""
        transition = RunTransition(transition)
        status = cls.coerce_status(from_status)
        rule = cls.TRANSITIONS[transition]
        context = context or GuardContext()

        decision_kwargs = {}
        if transition is RunTransition.AUTO_APPROVE:
            decision_kwargs = {
                "variance_percentage": context.variance_percentage,
                "variance_threshold": context.variance_threshold,
            }

        if status not in rule.from_statuses:
            return TransitionDecision(
                transition=transition,
                from_status=status,
                to_status=None,
                allowed=False,
                reason=(
                    f"Cannot {transition.value} a payroll run in "
                    f"'{status.value if status else 'none'}' status"
                ),
                guard="status",
                **decision_kwargs,
            )

        if rule.guard is not None:
            rejection = cls.GUARDS[rule.guard](context)
            if rejection is not None:
                return TransitionDecision(
                    transition=transition,
                    from_status=status,
                    to_status=None,
                    allowed=False,
                    reason=rejection,
                    guard=rule.guard,
                    **decision_kwargs,
                )

        return TransitionDecision(
            transition=transition,
            from_status=status,
            to_status=rule.to_status,
            allowed=True,
            **decision_kwargs,
        )

    @classmethod
    def validate(
        cls,
        from_status: str | PayrollRunStatus | None,
        transition: str | RunTransition,
        context: GuardContext | None = None,
    ) -> PayrollRunStatus:
        """Validate a transition, raising InvalidTransitionError if refused.

        Returns the status the run moves to.
        """
        decision = cls.evaluate(from_status, transition, context)
        if not decision.allowed:
            raise InvalidTransitionError(
                decision.from_status.value if decision.from_status else None,
                decision.transition.value,
                decision.reason,
                decision.guard,
            )
        return decision.to_status

    @classmethod
    def accepts_edits(cls, status: str | PayrollRunStatus) -> bool:
        """Check if item fields may still be changed in this status."""
        return cls.coerce_status(status) not in cls.EDITS_FROZEN

    @classmethod
    def available_transitions(
        cls, status: str | PayrollRunStatus | None
    ) -> list[RunTransition]:
        """Transitions whose status precondition the run currently meets."""
        current = cls.coerce_status(status)
        return [
            transition
            for transition, rule in cls.TRANSITIONS.items()
            if current in rule.from_statuses
        ]
