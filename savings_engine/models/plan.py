"""
Core Data Models for the Savings Engine

These models define the strict schemas for plans, income and the
allocation ledger. They are designed to:
1. Enforce the record invariants at construction time
2. Round-trip through the document store with camelCase field names
   (the store is shared with the mobile client)
3. Be serializable for storage and logging

DESIGN DECISION: Amounts are floats, matching the document store's number
type. Allocations are computed once and stored, so no rounding is applied.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class DocumentModel(BaseModel):
    """Base for every model persisted as a store document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_document(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """Dump to store fields (camelCase, no document id)."""
        excluded = {"id"} | (exclude or set())
        return self.model_dump(by_alias=True, exclude=excluded)


# =============================================================================
# PLANS
# =============================================================================

class Plan(DocumentModel):
    """
    A savings rule: route a percentage of every income event to a goal.

    CRITICAL: cumulative_total_for_plan is a cache over the plan's
    allocations. It can always be rebuilt from the ledger.
    """

    id: str = Field(..., min_length=1, description="Document identifier")
    user_id: str = Field(..., min_length=1, description="Owning user/database")
    plan_name: str = Field(..., min_length=1, max_length=100)
    target_category: Optional[str] = Field(
        default=None,
        description="Expense category this plan saves towards"
    )
    percentage_of_income: float = Field(..., ge=0, le=100)
    description: str = Field(default="", max_length=500)
    active: bool = True

    # Goal
    target_amount: Optional[float] = Field(default=None, gt=0)
    target_date: Optional[UtcDatetime] = None

    # Derived state
    cumulative_total_for_plan: float = Field(default=0.0, ge=0)
    health_score: int = Field(default=100, ge=0, le=100)

    created_at: UtcDatetime
    updated_at: UtcDatetime

    @property
    def has_goal(self) -> bool:
        """A plan with both a target amount and a target date."""
        return self.target_amount is not None and self.target_date is not None


class PlanDraft(BaseModel):
    """
    Payload for creating a plan.

    The percentage is deliberately unconstrained here: range and ceiling
    checks belong to the registry, which reports them as ValidationError.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    plan_name: str = Field(..., min_length=1, max_length=100)
    percentage_of_income: float
    target_category: Optional[str] = None
    description: str = Field(default="", max_length=500)
    target_amount: Optional[float] = Field(default=None, gt=0)
    target_date: Optional[UtcDatetime] = None


class PlanUpdate(BaseModel):
    """A partial edit to a plan. Unset fields are left untouched."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    percentage_of_income: Optional[float] = None
    target_category: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    target_amount: Optional[float] = Field(default=None, gt=0)
    target_date: Optional[UtcDatetime] = None

    REQUIRED: ClassVar[tuple[str, ...]] = ("plan_name", "percentage_of_income", "description")

    @model_validator(mode="after")
    def reject_cleared_required_fields(self) -> "PlanUpdate":
        cleared = [
            name for name in self.REQUIRED
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f"Fields cannot be cleared: {', '.join(cleared)}")
        return self

    def to_fields(self) -> dict[str, Any]:
        """Only the fields the caller actually set, as store fields."""
        return {
            to_camel(name): value
            for name, value in self.model_dump(exclude_unset=True).items()
        }


# =============================================================================
# INCOME AND EXPENSE LEDGER
# =============================================================================

class LedgerEntry(DocumentModel):
    """
    A record of the shared expense ledger.

    Owned by the expense ledger, never written by this engine.
    """

    id: str
    date: UtcDatetime
    category: Optional[str] = None
    description: Optional[str] = None
    in_amount: float = Field(default=0.0, ge=0)
    out_amount: float = Field(default=0.0, ge=0)

    @property
    def is_income(self) -> bool:
        return self.in_amount > 0

    @property
    def is_outbound(self) -> bool:
        return self.out_amount > 0


class IncomeTransaction(DocumentModel):
    """Read-only projection of a ledger entry with a positive inbound amount."""

    model_config = ConfigDict(frozen=True)

    id: str
    date: UtcDatetime
    in_amount: float = Field(..., gt=0)


# =============================================================================
# ALLOCATION LEDGER
# =============================================================================

class AllocationDraft(DocumentModel):
    """An allocation about to be appended (no id or creation time yet)."""

    plan_id: str = Field(..., min_length=1)
    plan_name: str
    original_income_row_id: str = Field(..., min_length=1)
    date: UtcDatetime
    income_amount: float = Field(..., ge=0)
    allocated_amount: float = Field(..., ge=0)
    target_category: Optional[str] = None
    cumulative_total_for_plan: float = Field(..., ge=0)
    user_id: str = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_amounts(self) -> 'AllocationDraft':
        """A plan can never receive more than the income it came from."""
        if self.allocated_amount > self.income_amount:
            raise ValueError("Allocated amount cannot exceed income amount")
        if self.cumulative_total_for_plan < self.allocated_amount:
            raise ValueError("Cumulative total cannot be below the allocated amount")
        return self


class Allocation(AllocationDraft):
    """
    An immutable fact: a share of one income event routed to one plan.

    At most one Allocation exists per (plan_id, original_income_row_id).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    created_at: UtcDatetime


class AllocationRunResult(BaseModel):
    """Partial-success counts of one allocation processing run."""

    processed: int = Field(default=0, ge=0, description="Unallocated income events seen")
    created: int = Field(default=0, ge=0, description="Allocations written")
    skipped: int = Field(default=0, ge=0, description="Plan/income pairs that failed")


class PlanAllocationSummary(BaseModel):
    """Per-plan line of an allocation summary."""

    plan_id: str
    plan_name: str
    total_allocated: float
    allocation_count: int
    percentage: float


class AllocationSummary(BaseModel):
    """Ledger-wide statistics shown on the plans overview."""

    total_allocated: float = 0.0
    total_income_transactions: int = 0
    total_allocation_count: int = 0
    active_plans_count: int = 0
    plan_summaries: list[PlanAllocationSummary] = Field(default_factory=list)


class AllocationCheck(BaseModel):
    """Non-throwing result of a percentage ceiling check."""

    valid: bool
    current_total: float
    new_total: float
    message: str
