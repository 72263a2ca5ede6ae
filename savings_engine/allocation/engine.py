"""
Allocation Engine

The core algorithm of the savings feature: every income event is split
across the user's active plans and recorded in the allocation ledger.

GUARANTEES:
- Idempotent: re-running on the same data creates nothing new
- Safe to run at any time (app foreground, manual refresh, schedule)
- One failing (plan, income) pair never aborts the batch
- Cached cumulative totals are rebuilt from the ledger at the end of a run

The batch is not atomic. A run that dies halfway leaves the ledger in a
state the next run completes, because income is matched by identifier.

Overlapping runs for the same user are not excluded here; the ledger's
(plan, income) check stops duplicates, and callers that want to avoid the
redundant work serialize runs (see PlanDashboard).
"""

from typing import Optional
from uuid import UUID

import structlog

from savings_engine.audit import AuditLogger, create_correlation_id
from savings_engine.ledger import (
    AllocationLedger,
    DuplicateAllocationError,
    IncomeTransactionReader,
    cumulative_total,
)
from savings_engine.models.audit import AuditEventBuilder
from savings_engine.models.plan import (
    AllocationDraft,
    AllocationRunResult,
    AllocationSummary,
    IncomeTransaction,
    Plan,
    PlanAllocationSummary,
)
from savings_engine.registry import PlanRegistry
from savings_engine.services.storage import StorageError

logger = structlog.get_logger(__name__)


def allocated_amount(income_amount: float, percentage: float) -> float:
    """A plan's share of one income event."""
    return income_amount * percentage / 100


class AllocationEngine:
    """Matches unallocated income to active plans."""

    def __init__(
        self,
        registry: PlanRegistry,
        income_reader: IncomeTransactionReader,
        ledger: AllocationLedger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._registry = registry
        self._income_reader = income_reader
        self._ledger = ledger
        self._audit_logger = audit_logger

    async def process_income_allocations(self, user_id: str) -> AllocationRunResult:
        """
        Allocate every not-yet-allocated income event to every active plan.

        Income counts as allocated as soon as any plan holds an allocation
        for it, so a plan added later does not receive shares of older
        income.

        Returns:
            processed: unallocated income events found
            created: allocations written
            skipped: (plan, income) pairs that failed

        Raises:
            StorageError: If plans, income or the ledger can't be loaded
        """
        plans = await self._registry.list_active(user_id)
        if not plans:
            logger.info("allocation_run_no_active_plans", user_id=user_id)
            return AllocationRunResult()

        correlation_id = create_correlation_id()
        log = logger.bind(user_id=user_id, run_id=str(correlation_id))
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.allocation_run_started(
                user_id, len(plans), correlation_id,
            ))

        try:
            income = await self._income_reader.list_income(user_id)
            existing = await self._ledger.list_all(user_id)
        except StorageError as e:
            log.error("allocation_run_load_failed", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_store_error(
                    operation="load_allocation_inputs",
                    error_message=str(e),
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            raise

        allocated_income_ids = {a.original_income_row_id for a in existing}
        unallocated = [tx for tx in income if tx.id not in allocated_income_ids]

        log.info(
            "allocation_run_loaded",
            active_plans=len(plans),
            income=len(income),
            existing_allocations=len(existing),
            unallocated=len(unallocated),
        )

        created = 0
        skipped = 0
        for transaction in unallocated:
            for plan in plans:
                try:
                    wrote = await self._allocate(user_id, plan, transaction)
                except Exception as e:
                    skipped += 1
                    log.error(
                        "allocation_failed",
                        plan_id=plan.id,
                        income_id=transaction.id,
                        error=str(e),
                    )
                    if self._audit_logger:
                        await self._audit_logger.log_allocation_skipped(
                            user_id=user_id,
                            plan_id=plan.id,
                            income_id=transaction.id,
                            error_message=str(e),
                            correlation_id=correlation_id,
                        )
                    continue
                if wrote:
                    created += 1

        await self.update_cumulative_totals(user_id, plans, correlation_id)

        result = AllocationRunResult(
            processed=len(unallocated),
            created=created,
            skipped=skipped,
        )
        log.info("allocation_run_completed", **result.model_dump())
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.allocation_run_completed(
                user_id,
                result.processed,
                result.created,
                result.skipped,
                correlation_id,
            ))
        return result

    async def _allocate(
        self,
        user_id: str,
        plan: Plan,
        transaction: IncomeTransaction,
    ) -> bool:
        """Append one allocation. False if another run already wrote it."""
        amount = allocated_amount(transaction.in_amount, plan.percentage_of_income)

        # Re-derived from the ledger, not the cached field
        history = await self._ledger.list_for_plan(user_id, plan.id)
        current = cumulative_total(history)

        draft = AllocationDraft(
            plan_id=plan.id,
            plan_name=plan.plan_name,
            original_income_row_id=transaction.id,
            date=transaction.date,
            income_amount=transaction.in_amount,
            allocated_amount=amount,
            target_category=plan.target_category,
            cumulative_total_for_plan=current + amount,
            user_id=user_id,
        )
        try:
            await self._ledger.append(user_id, draft)
        except DuplicateAllocationError:
            logger.info(
                "allocation_already_exists",
                plan_id=plan.id,
                income_id=transaction.id,
            )
            return False

        logger.debug(
            "allocation_created",
            plan_id=plan.id,
            plan_name=plan.plan_name,
            income_id=transaction.id,
            allocated_amount=round(amount, 2),
        )
        return True

    async def update_cumulative_totals(
        self,
        user_id: str,
        plans: Optional[list[Plan]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, float]:
        """
        Rebuild each plan's cached total from its allocations.

        This is also the repair path for a drifted cache.

        Returns:
            {plan_id: total}
        """
        if plans is None:
            plans = await self._registry.list_active(user_id)

        totals = {}
        for plan in plans:
            total = cumulative_total(await self._ledger.list_for_plan(user_id, plan.id))
            await self._registry.update_cumulative_total(user_id, plan.id, total)
            totals[plan.id] = total

        if self._audit_logger and totals:
            await self._audit_logger.log(AuditEventBuilder.cumulative_totals_refreshed(
                user_id, totals, correlation_id,
            ))
        return totals

    async def recalculate_plan_allocations(self, user_id: str, plan_id: str) -> float:
        """
        Re-sum one plan's allocations and republish the total.

        Used after a percentage edit. Existing allocations are left exactly
        as they are: each reflects the percentage in effect when created.

        Raises:
            PlanNotFoundError: If the plan doesn't exist
        """
        total = cumulative_total(await self._ledger.list_for_plan(user_id, plan_id))
        await self._registry.update_cumulative_total(user_id, plan_id, total)

        logger.info("plan_recalculated", user_id=user_id, plan_id=plan_id, total=total)
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.plan_recalculated(user_id, plan_id, total)
            )
        return total

    async def get_allocation_summary(self, user_id: str) -> AllocationSummary:
        """Ledger-wide totals plus one line per active plan."""
        plans = await self._registry.list_active(user_id)
        allocations = await self._ledger.list_all(user_id)

        plan_summaries = []
        for plan in plans:
            plan_allocations = [a for a in allocations if a.plan_id == plan.id]
            plan_summaries.append(PlanAllocationSummary(
                plan_id=plan.id,
                plan_name=plan.plan_name,
                total_allocated=cumulative_total(plan_allocations),
                allocation_count=len(plan_allocations),
                percentage=plan.percentage_of_income,
            ))

        return AllocationSummary(
            total_allocated=cumulative_total(allocations),
            total_income_transactions=len({a.original_income_row_id for a in allocations}),
            total_allocation_count=len(allocations),
            active_plans_count=len(plans),
            plan_summaries=plan_summaries,
        )

    async def delete_allocations_for_plan(self, user_id: str, plan_id: str) -> int:
        """
        Edge-case cleanup: drop a plan's allocation history and zero its total.

        Not used by normal operation; soft delete keeps history.
        """
        count = await self._ledger.delete_for_plan(user_id, plan_id)
        await self._registry.update_cumulative_total(user_id, plan_id, 0.0)
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.allocations_deleted(user_id, plan_id, count)
            )
        return count
