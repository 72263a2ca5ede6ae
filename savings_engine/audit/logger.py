"""
Audit Logger

DESIGN DECISION: Every significant engine action is logged.
This provides:
1. Complete traceability of allocation runs and plan edits
2. Debugging capability when the store misbehaves
3. A user-visible history next to the allocation ledger

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the engine if logging fails)
- Supports correlation IDs to trace all events of one allocation run
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from savings_engine.config import get_settings
from savings_engine.models.audit import AuditEvent, AuditEventBuilder
from savings_engine.services.storage import Store


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The document store, under ``users/{user_id}/auditLog`` (optional)
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        collection: Optional[str] = None,
    ):
        """
        Initialize audit logger.

        Args:
            store: Store for persistence. If None, only logs locally.
            collection: Audit collection name (defaults to settings)
        """
        self._store = store
        self._collection = collection or get_settings().engine.audit_collection
        self._logger = structlog.get_logger("savings_engine.audit")

    def _collection_for(self, event: AuditEvent) -> str:
        if event.user_id:
            return f"users/{event.user_id}/{self._collection}"
        return self._collection

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or no store configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store:
            try:
                await self._store.add(self._collection_for(event), event.to_document())
                return True
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_plan_created(
        self,
        user_id: str,
        plan_id: str,
        plan_name: str,
        percentage: float,
    ) -> None:
        """Log plan creation."""
        await self.log(AuditEventBuilder.plan_created(
            user_id=user_id,
            plan_id=plan_id,
            plan_name=plan_name,
            percentage=percentage,
        ))

    async def log_plan_updated(
        self,
        user_id: str,
        plan_id: str,
        changed_fields: list[str],
    ) -> None:
        """Log an explicit plan edit."""
        await self.log(AuditEventBuilder.plan_updated(
            user_id=user_id,
            plan_id=plan_id,
            changed_fields=changed_fields,
        ))

    async def log_plan_deactivated(self, user_id: str, plan_id: str) -> None:
        """Log a soft delete."""
        await self.log(AuditEventBuilder.plan_deactivated(user_id, plan_id))

    async def log_validation_failed(
        self,
        user_id: str,
        plan_id: Optional[str],
        message: str,
        details: dict,
    ) -> None:
        """Log a rejected plan change."""
        await self.log(AuditEventBuilder.plan_validation_failed(
            user_id=user_id,
            plan_id=plan_id,
            message=message,
            details=details,
        ))

    async def log_allocation_skipped(
        self,
        user_id: str,
        plan_id: str,
        income_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a plan/income pair that failed inside a run."""
        await self.log(AuditEventBuilder.allocation_skipped(
            user_id=user_id,
            plan_id=plan_id,
            income_id=income_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_store_error(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a store failure."""
        await self.log(AuditEventBuilder.store_error(
            operation=operation,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of an allocation run and pass it to every
    event the run emits.
    """
    return uuid4()
