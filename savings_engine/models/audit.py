"""
Audit Models for the Savings Engine

Every significant action on plans and the allocation ledger is recorded.
This provides:
1. Traceability of every allocation run (what was created, what was skipped)
2. Debugging information when the store misbehaves
3. A history of plan edits next to the immutable ledger

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Plan registry
    PLAN_CREATED = "plan_created"
    PLAN_UPDATED = "plan_updated"
    PLAN_DEACTIVATED = "plan_deactivated"
    PLAN_VALIDATION_FAILED = "plan_validation_failed"
    HEALTH_SCORE_UPDATED = "health_score_updated"

    # Allocation engine
    ALLOCATION_RUN_STARTED = "allocation_run_started"
    ALLOCATION_RUN_COMPLETED = "allocation_run_completed"
    ALLOCATION_SKIPPED = "allocation_skipped"
    CUMULATIVE_TOTALS_REFRESHED = "cumulative_totals_refreshed"
    PLAN_RECALCULATED = "plan_recalculated"
    ALLOCATIONS_DELETED = "allocations_deleted"

    # Projection engine
    RECOMMENDATIONS_GENERATED = "recommendations_generated"

    # System events
    SYSTEM_ERROR = "system_error"
    STORE_ERROR = "store_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Database the event happened in"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'plan', 'allocation', 'income')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one allocation run)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """Convert to store fields. The store assigns the document id."""
        document = self.to_log_dict()
        document["timestamp"] = self.timestamp
        return document


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.plan_created(user_id, plan_id, name, 10.0)
        event = AuditEventBuilder.allocation_run_completed(user_id, 3, 6, 0, run_id)
    """

    @staticmethod
    def plan_created(
        user_id: str,
        plan_id: str,
        plan_name: str,
        percentage: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_CREATED,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description=f"Plan created: {plan_name} ({percentage:g}% of income)",
            details={
                "plan_name": plan_name,
                "percentage_of_income": percentage,
            },
            is_user_action=True,
        )

    @staticmethod
    def plan_updated(
        user_id: str,
        plan_id: str,
        changed_fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_UPDATED,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description=f"Plan updated: {', '.join(changed_fields) or 'no fields'}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def plan_deactivated(user_id: str, plan_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_DEACTIVATED,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description="Plan deactivated; allocation history retained",
            is_user_action=True,
        )

    @staticmethod
    def plan_validation_failed(
        user_id: str,
        plan_id: Optional[str],
        message: str,
        details: dict,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description="Plan change rejected by validation",
            error_message=message,
            details=details,
            is_user_action=True,
        )

    @staticmethod
    def health_score_updated(
        user_id: str,
        plan_id: str,
        score: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HEALTH_SCORE_UPDATED,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description=f"Health score set to {score}/100",
            details={"health_score": score},
        )

    @staticmethod
    def allocation_run_started(
        user_id: str,
        active_plans: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_RUN_STARTED,
            user_id=user_id,
            entity_type="allocation_run",
            correlation_id=correlation_id,
            description=f"Allocation run started for {active_plans} active plans",
            details={"active_plans": active_plans},
        )

    @staticmethod
    def allocation_run_completed(
        user_id: str,
        processed: int,
        created: int,
        skipped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_RUN_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="allocation_run",
            correlation_id=correlation_id,
            description=(
                f"Allocation run processed {processed} income events: "
                f"{created} created, {skipped} skipped"
            ),
            details={
                "processed": processed,
                "created": created,
                "skipped": skipped,
            },
        )

    @staticmethod
    def allocation_skipped(
        user_id: str,
        plan_id: str,
        income_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_SKIPPED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="allocation",
            entity_id=f"{plan_id}:{income_id}",
            correlation_id=correlation_id,
            description="Allocation could not be created; will retry on next run",
            error_message=error_message,
            details={"plan_id": plan_id, "income_id": income_id},
        )

    @staticmethod
    def cumulative_totals_refreshed(
        user_id: str,
        totals: dict[str, float],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CUMULATIVE_TOTALS_REFRESHED,
            user_id=user_id,
            entity_type="plan",
            correlation_id=correlation_id,
            description=f"Cumulative totals refreshed for {len(totals)} plans",
            details={"totals": totals},
        )

    @staticmethod
    def plan_recalculated(
        user_id: str,
        plan_id: str,
        total: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_RECALCULATED,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description=f"Cumulative total rebuilt from history: {total:.2f}",
            details={"cumulative_total": total},
        )

    @staticmethod
    def allocations_deleted(
        user_id: str,
        plan_id: str,
        count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATIONS_DELETED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description=f"Deleted {count} allocations for plan",
            details={"count": count},
            is_user_action=True,
        )

    @staticmethod
    def recommendations_generated(
        user_id: str,
        plan_id: str,
        types: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECOMMENDATIONS_GENERATED,
            user_id=user_id,
            entity_type="plan",
            entity_id=plan_id,
            description=f"Generated {len(types)} recommendations",
            details={"types": types},
        )

    @staticmethod
    def store_error(
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Store error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
