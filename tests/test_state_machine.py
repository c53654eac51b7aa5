"""Tests for payroll run state machine."""

from decimal import Decimal

import pytest

from payroll_core.services.state_machine import (
    GuardContext,
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
    RunTransition,
)
from payroll_core.services.variance_service import VarianceAnalyzer


class TestPayrollRunStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # (none) → auto_generated
        assert PayrollRunStateMachine.can_transition(None, "generate") is True

        # draft → auto_generated
        assert PayrollRunStateMachine.can_transition("draft", "generate") is True

        # auto_generated → auto_approved
        assert PayrollRunStateMachine.can_transition("auto_generated", "auto_approve") is True

        # auto_approved → edited
        assert PayrollRunStateMachine.can_transition("auto_approved", "mark_edited") is True

        # edited / draft / auto_generated → approved
        assert PayrollRunStateMachine.can_transition("edited", "approve") is True
        assert PayrollRunStateMachine.can_transition("draft", "approve") is True
        assert PayrollRunStateMachine.can_transition("auto_generated", "approve") is True

        # approved / auto_approved → locked
        assert PayrollRunStateMachine.can_transition("approved", "lock") is True
        assert PayrollRunStateMachine.can_transition("auto_approved", "lock") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Only an auto-approved run can be marked edited
        assert PayrollRunStateMachine.can_transition("auto_generated", "mark_edited") is False
        assert PayrollRunStateMachine.can_transition("approved", "mark_edited") is False

        # Auto-approval only from a generated run
        assert PayrollRunStateMachine.can_transition("draft", "auto_approve") is False
        assert PayrollRunStateMachine.can_transition("edited", "auto_approve") is False

        # Unapproved runs cannot be locked
        assert PayrollRunStateMachine.can_transition("draft", "lock") is False
        assert PayrollRunStateMachine.can_transition("edited", "lock") is False

        # Already approved
        assert PayrollRunStateMachine.can_transition("auto_approved", "approve") is False

    @pytest.mark.parametrize("transition", list(RunTransition))
    def test_locked_is_terminal(self, transition):
        assert PayrollRunStateMachine.can_transition("locked", transition) is False

    def test_available_transitions(self):
        assert PayrollRunStateMachine.available_transitions("locked") == []
        assert PayrollRunStateMachine.available_transitions("auto_approved") == [
            RunTransition.MARK_EDITED,
            RunTransition.LOCK,
        ]
        assert PayrollRunStateMachine.available_transitions(None) == [RunTransition.GENERATE]

    def test_validate_returns_target(self):
        assert PayrollRunStateMachine.validate("edited", "approve") is PayrollRunStatus.APPROVED

    def test_validate_raises(self):
        """Test that validate raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrollRunStateMachine.validate("locked", RunTransition.MARK_EDITED)

        assert exc_info.value.from_status == "locked"
        assert exc_info.value.transition == "mark_edited"
        assert exc_info.value.guard == "status"
        assert "locked" in exc_info.value.reason

    def test_accepts_edits(self):
        """Only a locked run refuses field edits."""
        for status in PayrollRunStatus:
            expected = status is not PayrollRunStatus.LOCKED
            assert PayrollRunStateMachine.accepts_edits(status) is expected

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            PayrollRunStateMachine.can_transition("finalized", "lock")


class TestGuards:
    """Guard evaluation."""

    def test_generate_refused_when_key_used(self):
        decision = PayrollRunStateMachine.evaluate(
            None, RunTransition.GENERATE, GuardContext(run_exists=True)
        )

        assert decision.allowed is False
        assert decision.guard == "run_key_unused"

    def test_variance_over_threshold_reports_both_values(self):
        decision = PayrollRunStateMachine.evaluate(
            "auto_generated",
            RunTransition.AUTO_APPROVE,
            GuardContext(
                variance_percentage=Decimal("7.00"),
                variance_threshold=Decimal("5.00"),
            ),
        )

        assert decision.allowed is False
        assert decision.guard == "variance_within_threshold"
        assert decision.variance_percentage == Decimal("7.00")
        assert decision.variance_threshold == Decimal("5.00")
        assert decision.reason == "Variance 7.00% exceeds threshold 5.00%"

    @pytest.mark.parametrize("variance", ["0", "4.99", "5.00", "-5.00"])
    def test_variance_within_threshold(self, variance):
        decision = PayrollRunStateMachine.evaluate(
            "auto_generated",
            RunTransition.AUTO_APPROVE,
            GuardContext(
                variance_percentage=Decimal(variance),
                variance_threshold=Decimal("5.00"),
            ),
        )

        assert decision.allowed is True
        assert decision.to_status is PayrollRunStatus.AUTO_APPROVED

    def test_threshold_compared_at_two_decimals(self):
        variance = VarianceAnalyzer.compare(Decimal("100000.00"), Decimal("105004.00"))

        decision = PayrollRunStateMachine.evaluate(
            "auto_generated",
            RunTransition.AUTO_APPROVE,
            GuardContext(
                variance_percentage=variance.percentage,
                variance_threshold=Decimal("5.00"),
            ),
        )

        assert variance.percentage == Decimal("5.00")
        assert decision.allowed is True

    def test_negative_variance_uses_magnitude(self):
        decision = PayrollRunStateMachine.evaluate(
            "auto_generated",
            RunTransition.AUTO_APPROVE,
            GuardContext(
                variance_percentage=Decimal("-5.01"),
                variance_threshold=Decimal("5.00"),
            ),
        )

        assert decision.allowed is False

    def test_status_checked_before_guard(self):
        decision = PayrollRunStateMachine.evaluate(
            "approved",
            RunTransition.AUTO_APPROVE,
            GuardContext(variance_percentage=Decimal("0"), variance_threshold=Decimal("5")),
        )

        assert decision.allowed is False
        assert decision.guard == "status"
        assert decision.reason == "Cannot auto_approve a payroll run in 'approved' status"

    def test_manual_approval_ignores_variance(self):
        decision = PayrollRunStateMachine.evaluate(
            "auto_generated",
            RunTransition.APPROVE,
            GuardContext(
                variance_percentage=Decimal("48.00"),
                variance_threshold=Decimal("5.00"),
            ),
        )

        assert decision.allowed is True
        assert decision.to_status is PayrollRunStatus.APPROVED
