"""
Data Models Package

This package contains all Pydantic models used by the Savings Engine.
All documents read from or written to the store conform to these schemas.
"""

from savings_engine.models.plan import (
    Allocation,
    AllocationCheck,
    AllocationDraft,
    AllocationRunResult,
    AllocationSummary,
    IncomeTransaction,
    LedgerEntry,
    Plan,
    PlanAllocationSummary,
    PlanDraft,
    PlanUpdate,
)
from savings_engine.models.projection import (
    IncomeFrequency,
    IncomePattern,
    ProjectionPoint,
    ProjectionResult,
    Recommendation,
    RecommendationAction,
    RecommendationType,
    WhatIfResult,
)
from savings_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Plan and ledger models
    "Allocation",
    "AllocationCheck",
    "AllocationDraft",
    "AllocationRunResult",
    "AllocationSummary",
    "IncomeTransaction",
    "LedgerEntry",
    "Plan",
    "PlanAllocationSummary",
    "PlanDraft",
    "PlanUpdate",
    # Forecasting models
    "IncomeFrequency",
    "IncomePattern",
    "ProjectionPoint",
    "ProjectionResult",
    "Recommendation",
    "RecommendationAction",
    "RecommendationType",
    "WhatIfResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
