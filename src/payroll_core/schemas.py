"""Pydantic schemas for change proposals and CLI output."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from payroll_core.services.change_service import ChangeRequest
from payroll_core.services.state_machine import RunTransition


# ============================================================================
# Change proposals (produced by the payroll assistant)
# ============================================================================


class ChangeProposal(BaseModel):
    """A single proposed edit to a payroll item."""

    item_id: UUID = Field(validation_alias=AliasChoices("item_id", "itemId"))
    field: str = Field(min_length=1)
    new_value: Decimal | str | None = Field(
        default=None, validation_alias=AliasChoices("new_value", "newValue", "value")
    )
    prorate: bool = False

    def to_request(self) -> ChangeRequest:
        return ChangeRequest(
            item_id=self.item_id,
            field=self.field,
            value=self.new_value,
            prorate=self.prorate,
        )


class ChangeProposalBatch(BaseModel):
    """A list of proposals for one run."""

    changes: list[ChangeProposal]

    def to_requests(self) -> list[ChangeRequest]:
        return [change.to_request() for change in self.changes]


# ============================================================================
# Output schemas
# ============================================================================


class PayrollRunSummary(BaseModel):
    """Payroll run header and totals."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    department_id: UUID | None = None
    month: int
    year: int
    period_label: str
    status: str
    generation_type: str
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_employer_cost: Decimal
    employee_count: int
    variance_from_previous: Decimal | None = None
    variance_percentage: Decimal | None = None
    approval_type: str | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    locked_at: datetime | None = None


class TransitionOutcomeOut(BaseModel):
    """Transition result."""

    model_config = ConfigDict(from_attributes=True)

    run_id: UUID
    transition: RunTransition
    success: bool
    from_status: str | None = None
    new_status: str | None = None
    rejection_reason: str | None = None
    guard: str | None = None
    variance_percentage: Decimal | None = None
    variance_threshold: Decimal | None = None


class VarianceOut(BaseModel):
    """Variance against the prior period."""

    model_config = ConfigDict(from_attributes=True)

    variance: Decimal
    percentage: Decimal
    has_previous: bool
    previous_total: Decimal | None = None


class ChangeResultOut(BaseModel):
    """Per-change result."""

    model_config = ConfigDict(from_attributes=True)

    item_id: UUID
    field: str
    success: bool
    error: str | None = None
    old_value: Decimal | str | None = None
    new_value: Decimal | str | None = None


class RunTotalsOut(BaseModel):
    """Re-aggregated run totals."""

    model_config = ConfigDict(from_attributes=True)

    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_employer_cost: Decimal
    employee_count: int


class ApplyResultOut(BaseModel):
    """Apply-changes result."""

    model_config = ConfigDict(from_attributes=True)

    run_id: UUID
    results: list[ChangeResultOut]
    totals: RunTotalsOut | None = None
    recalculated_item_ids: list[UUID] = Field(default_factory=list)
