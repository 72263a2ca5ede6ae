"""
Plan Registry

Owns plan definitions: percentage, goal, status and the two derived
fields (cumulative total and health score) that the engines write back.

GUARANTEES:
- A rejected create/update performs no write
- The sum of active percentages never exceeds 100 after a create/update
- Deleting a plan only deactivates it; its allocations stay in the ledger
"""

from typing import Callable, Optional, Union

import pydantic
import structlog

from savings_engine.audit import AuditLogger
from savings_engine.layout import PLANS, user_collection, user_document
from savings_engine.models.audit import AuditEventBuilder
from savings_engine.models.plan import AllocationCheck, Plan, PlanDraft, PlanUpdate
from savings_engine.services.storage import (
    SERVER_TIMESTAMP,
    NotFoundError,
    OrderBy,
    StorageError,
    Store,
    Subscription,
)
from savings_engine.validation import PlanValidator, ValidationError

logger = structlog.get_logger(__name__)

NEWEST_FIRST = (OrderBy("createdAt", descending=True),)


class PlanNotFoundError(NotFoundError):
    """No plan with the requested identifier."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan not found: {plan_id}")


class PlanRegistry:
    """CRUD and subscriptions for a user's savings plans."""

    def __init__(
        self,
        store: Store,
        validator: Optional[PlanValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._validator = validator or PlanValidator()
        self._audit_logger = audit_logger

    async def create(self, user_id: str, draft: PlanDraft) -> Plan:
        """
        Create an active plan with an empty ledger and perfect health.

        Raises:
            ValidationError: Percentage out of range or over the 100% ceiling
        """
        plans = await self.list_plans(user_id)
        try:
            self._validator.validate_percentage(plans, draft.percentage_of_income)
        except ValidationError as e:
            await self._audit_validation_failure(user_id, None, e)
            raise

        plan_id = await self._store.add(user_collection(user_id, PLANS), {
            "userId": user_id,
            "planName": draft.plan_name,
            "targetCategory": draft.target_category or None,
            "percentageOfIncome": float(draft.percentage_of_income),
            "description": draft.description,
            "active": True,
            "targetAmount": draft.target_amount,
            "targetDate": draft.target_date,
            "cumulativeTotalForPlan": 0.0,
            "healthScore": 100,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })

        logger.info("plan_created", user_id=user_id, plan_id=plan_id)
        if self._audit_logger:
            await self._audit_logger.log_plan_created(
                user_id=user_id,
                plan_id=plan_id,
                plan_name=draft.plan_name,
                percentage=draft.percentage_of_income,
            )
        return await self.get(user_id, plan_id)

    async def update(
        self,
        user_id: str,
        plan_id: str,
        patch: Union[PlanUpdate, dict],
    ) -> Plan:
        """
        Apply a partial edit.

        If the patch changes the percentage, the ceiling is re-checked
        against every other active plan.

        Raises:
            PlanNotFoundError: If the plan doesn't exist
            ValidationError: If the new percentage is rejected
        """
        if not isinstance(patch, PlanUpdate):
            patch = PlanUpdate.model_validate(patch)

        await self.get(user_id, plan_id)

        if patch.percentage_of_income is not None:
            plans = await self.list_plans(user_id)
            try:
                self._validator.validate_percentage(
                    plans,
                    patch.percentage_of_income,
                    exclude_plan_id=plan_id,
                )
            except ValidationError as e:
                await self._audit_validation_failure(user_id, plan_id, e)
                raise

        fields = patch.to_fields()
        changed = sorted(fields)
        fields["updatedAt"] = SERVER_TIMESTAMP
        await self._write(user_id, plan_id, fields)

        logger.info("plan_updated", user_id=user_id, plan_id=plan_id, fields=changed)
        if self._audit_logger:
            await self._audit_logger.log_plan_updated(user_id, plan_id, changed)
        return await self.get(user_id, plan_id)

    async def soft_delete(self, user_id: str, plan_id: str) -> None:
        """Deactivate a plan. Its allocations are retained permanently."""
        await self._write(user_id, plan_id, {
            "active": False,
            "updatedAt": SERVER_TIMESTAMP,
        })
        logger.info("plan_deactivated", user_id=user_id, plan_id=plan_id)
        if self._audit_logger:
            await self._audit_logger.log_plan_deactivated(user_id, plan_id)

    async def list_plans(self, user_id: str) -> list[Plan]:
        """All plans, active and inactive, newest first."""
        documents = await self._store.query(
            user_collection(user_id, PLANS),
            order_by=NEWEST_FIRST,
        )
        return [Plan.model_validate(doc) for doc in documents]

    async def list_active(self, user_id: str) -> list[Plan]:
        return [plan for plan in await self.list_plans(user_id) if plan.active]

    async def get(self, user_id: str, plan_id: str) -> Plan:
        """
        Raises:
            PlanNotFoundError: If the plan doesn't exist
        """
        document = await self._store.get(user_document(user_id, PLANS, plan_id))
        if document is None:
            raise PlanNotFoundError(plan_id)
        return Plan.model_validate(document)

    async def update_cumulative_total(
        self,
        user_id: str,
        plan_id: str,
        total: float,
    ) -> None:
        """Publish a freshly re-derived cumulative total."""
        await self._write(user_id, plan_id, {
            "cumulativeTotalForPlan": float(total),
            "updatedAt": SERVER_TIMESTAMP,
        })
        logger.debug("cumulative_total_updated", plan_id=plan_id, total=total)

    async def update_health_score(
        self,
        user_id: str,
        plan_id: str,
        score: float,
    ) -> int:
        """
        Store a rounded health score.

        Raises:
            ValidationError: If the score is outside 0-100
        """
        rounded = self._validator.validate_health_score(score)
        await self._write(user_id, plan_id, {
            "healthScore": rounded,
            "updatedAt": SERVER_TIMESTAMP,
        })
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.health_score_updated(user_id, plan_id, rounded)
            )
        return rounded

    def subscribe(
        self,
        user_id: str,
        callback: Callable[[list[Plan]], None],
    ) -> Subscription:
        """
        Push the full plan list (active and inactive) on every change.

        A snapshot that can't be parsed is delivered as an empty list.
        The caller must unsubscribe the returned handle.
        """
        def on_snapshot(documents):
            try:
                plans = [Plan.model_validate(doc) for doc in documents]
            except pydantic.ValidationError as e:
                logger.error("plan_snapshot_invalid", user_id=user_id, error=str(e))
                plans = []
            callback(plans)

        return self._store.subscribe(
            user_collection(user_id, PLANS),
            (),
            NEWEST_FIRST,
            on_snapshot,
        )

    async def total_allocation_percentage(self, user_id: str) -> float:
        """Sum of active percentages; 0 if the store can't be read."""
        try:
            plans = await self.list_active(user_id)
        except StorageError as e:
            logger.error("total_allocation_failed", user_id=user_id, error=str(e))
            return 0.0
        return sum(plan.percentage_of_income for plan in plans)

    async def validate_new_allocation(
        self,
        user_id: str,
        percentage: float,
        exclude_plan_id: Optional[str] = None,
    ) -> AllocationCheck:
        """Ceiling check for form validation. Never raises."""
        try:
            plans = await self.list_plans(user_id)
        except StorageError as e:
            logger.error("validate_allocation_failed", user_id=user_id, error=str(e))
            return AllocationCheck(
                valid=False,
                current_total=0.0,
                new_total=0.0,
                message="Error validating allocation",
            )
        if self._validator.check_percentage_range(percentage):
            return AllocationCheck(
                valid=False,
                current_total=0.0,
                new_total=0.0,
                message="Percentage must be between 0 and 100",
            )
        return self._validator.check_allocation(plans, percentage, exclude_plan_id)

    async def _write(self, user_id: str, plan_id: str, fields: dict) -> None:
        try:
            await self._store.update(user_document(user_id, PLANS, plan_id), fields)
        except PlanNotFoundError:
            raise
        except NotFoundError:
            raise PlanNotFoundError(plan_id)

    async def _audit_validation_failure(
        self,
        user_id: str,
        plan_id: Optional[str],
        error: ValidationError,
    ) -> None:
        logger.warning("plan_validation_failed", user_id=user_id, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                user_id=user_id,
                plan_id=plan_id,
                message=str(error),
                details={
                    "current_total": error.current_total,
                    "new_total": error.new_total,
                },
            )
