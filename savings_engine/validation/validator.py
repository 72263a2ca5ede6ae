"""
Plan Validation

DESIGN DECISION: Every plan change is validated before anything is
written. Two kinds of checks run:

RANGE CHECKS:
- Allocation percentage within 0-100
- Health score within 0-100

CEILING CHECK:
- The active plans of a user may never route more than 100% of income.
  The plan being edited is excluded from the sum it is checked against.

IMPORTANT: Validation NEVER clamps or silently fixes values.
It reports them as a ValidationError the caller must handle.
"""

from typing import Iterable, Optional

from pydantic import BaseModel, Field

from savings_engine.models.plan import AllocationCheck, Plan

MAX_TOTAL_PERCENTAGE = 100.0

# Floating point slack so 33.3 + 33.3 + 33.4 still fits under 100
_EPSILON = 1e-9


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'out_of_range', 'ceiling_exceeded')"
    )
    message: str


class ValidationError(Exception):
    """
    A plan change was rejected. Raised before any write happens.

    Carries the issues found and, for ceiling violations, the totals
    involved so the caller can show them.
    """

    def __init__(
        self,
        issues: list[ValidationIssue],
        current_total: Optional[float] = None,
        new_total: Optional[float] = None,
    ):
        self.issues = issues
        self.current_total = current_total
        self.new_total = new_total
        super().__init__("; ".join(issue.message for issue in issues))


class PlanValidator:
    """Validates plan drafts, edits and derived fields."""

    def check_percentage_range(self, percentage: float) -> list[ValidationIssue]:
        issues = []
        if percentage is None or not 0 <= percentage <= 100:
            issues.append(ValidationIssue(
                field="percentage_of_income",
                issue_type="out_of_range",
                message=f"Percentage must be between 0 and 100 (got {percentage})",
            ))
        return issues

    def check_allocation(
        self,
        plans: Iterable[Plan],
        percentage: float,
        exclude_plan_id: Optional[str] = None,
    ) -> AllocationCheck:
        """
        Check the ceiling without raising.

        Args:
            plans: The user's plans (inactive ones are ignored)
            percentage: Percentage being added or set
            exclude_plan_id: Plan being edited, left out of the current total
        """
        current_total = sum(
            plan.percentage_of_income
            for plan in plans
            if plan.active and plan.id != exclude_plan_id
        )
        new_total = current_total + percentage
        valid = new_total <= MAX_TOTAL_PERCENTAGE + _EPSILON

        if valid:
            message = f"Valid. Total allocation will be {new_total:g}%."
        else:
            message = (
                f"Total allocation would be {new_total:g}%. Maximum is 100%. "
                f"Current: {current_total:g}%, requested: {percentage:g}%"
            )

        return AllocationCheck(
            valid=valid,
            current_total=current_total,
            new_total=new_total,
            message=message,
        )

    def validate_percentage(
        self,
        plans: Iterable[Plan],
        percentage: float,
        exclude_plan_id: Optional[str] = None,
    ) -> AllocationCheck:
        """
        Range check, then ceiling check.

        Raises:
            ValidationError: On either violation
        """
        issues = self.check_percentage_range(percentage)
        if issues:
            raise ValidationError(issues)

        check = self.check_allocation(plans, percentage, exclude_plan_id)
        if not check.valid:
            raise ValidationError(
                [ValidationIssue(
                    field="percentage_of_income",
                    issue_type="ceiling_exceeded",
                    message=check.message,
                )],
                current_total=check.current_total,
                new_total=check.new_total,
            )
        return check

    def validate_health_score(self, score: float) -> int:
        """
        Returns the rounded score.

        Raises:
            ValidationError: If the score is outside 0-100
        """
        if score is None or not 0 <= score <= 100:
            raise ValidationError([ValidationIssue(
                field="health_score",
                issue_type="out_of_range",
                message=f"Health score must be between 0 and 100 (got {score})",
            )])
        return int(round(score))
