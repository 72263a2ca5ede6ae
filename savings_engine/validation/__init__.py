"""Plan validation package."""

from savings_engine.validation.validator import (
    PlanValidator,
    ValidationError,
    ValidationIssue,
)

__all__ = ["PlanValidator", "ValidationError", "ValidationIssue"]
