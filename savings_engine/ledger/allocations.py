"""
Allocation Ledger

The virtual savings ledger: an append-only collection of allocation
records, one per (plan, income event) pair. It runs in parallel with the
real expense ledger and never affects the user's balance.

DESIGN DECISION: History is preferred over deletion. Records are never
updated; deleting a plan's records exists only for edge cases (e.g. a
user wiping a plan they created by mistake).
"""

from typing import Callable, Iterable, Optional

import pydantic
import structlog

from savings_engine.layout import ALLOCATIONS, user_collection, user_document
from savings_engine.ledger.documents import parse_documents
from savings_engine.models.plan import Allocation, AllocationDraft
from savings_engine.services.storage import (
    SERVER_TIMESTAMP,
    DuplicateError,
    Filter,
    OrderBy,
    StorageError,
    Store,
    Subscription,
)

logger = structlog.get_logger(__name__)

NEWEST_FIRST = (OrderBy("date", descending=True),)


class DuplicateAllocationError(DuplicateError):
    """The plan already holds an allocation for this income event."""

    def __init__(self, plan_id: str, income_id: str):
        self.plan_id = plan_id
        self.income_id = income_id
        super().__init__(
            f"Allocation already exists for plan {plan_id} and income {income_id}"
        )


def cumulative_total(allocations: Iterable[Allocation]) -> float:
    """Sum of allocated amounts: the value a plan's cached total must equal."""
    return sum(allocation.allocated_amount for allocation in allocations)


class AllocationLedger:
    """Append and read allocation records."""

    def __init__(self, store: Store):
        self._store = store

    async def append(self, user_id: str, draft: AllocationDraft) -> Allocation:
        """
        Append one allocation with a store-assigned creation time.

        Raises:
            DuplicateAllocationError: If the (plan, income) pair is taken
            StorageError: If the write fails
        """
        existing = await self.find(user_id, draft.plan_id, draft.original_income_row_id)
        if existing is not None:
            raise DuplicateAllocationError(draft.plan_id, draft.original_income_row_id)

        fields = draft.to_document()
        fields["createdAt"] = SERVER_TIMESTAMP
        allocation_id = await self._store.add(user_collection(user_id, ALLOCATIONS), fields)

        document = await self._store.get(user_document(user_id, ALLOCATIONS, allocation_id))
        if document is None:
            raise StorageError(f"Allocation vanished after write: {allocation_id}")
        return Allocation.model_validate(document)

    async def list_all(self, user_id: str) -> list[Allocation]:
        """Every allocation of the user, newest income first."""
        collection = user_collection(user_id, ALLOCATIONS)
        documents = await self._store.query(collection, order_by=NEWEST_FIRST)
        return parse_documents(Allocation, documents, collection)

    async def list_for_plan(self, user_id: str, plan_id: str) -> list[Allocation]:
        if not plan_id:
            raise ValueError("Plan ID is required")
        collection = user_collection(user_id, ALLOCATIONS)
        documents = await self._store.query(
            collection,
            filters=(Filter("planId", "==", plan_id),),
            order_by=NEWEST_FIRST,
        )
        return parse_documents(Allocation, documents, collection)

    def subscribe_for_plan(
        self,
        user_id: str,
        plan_id: str,
        callback: Callable[[list[Allocation]], None],
    ) -> Subscription:
        """
        Push a plan's full allocation list on every ledger change.

        The caller must unsubscribe the returned handle.
        """
        if not plan_id:
            raise ValueError("Plan ID is required")

        def on_snapshot(documents):
            try:
                allocations = [Allocation.model_validate(doc) for doc in documents]
            except pydantic.ValidationError as e:
                logger.error("allocation_snapshot_invalid", plan_id=plan_id, error=str(e))
                allocations = []
            callback(allocations)

        return self._store.subscribe(
            user_collection(user_id, ALLOCATIONS),
            (Filter("planId", "==", plan_id),),
            NEWEST_FIRST,
            on_snapshot,
        )

    async def delete_for_plan(self, user_id: str, plan_id: str) -> int:
        """
        Remove every allocation of a plan in one batch.

        Not part of normal operation: soft-deleting a plan keeps history.

        Returns:
            Number of allocations deleted
        """
        allocations = await self.list_for_plan(user_id, plan_id)
        await self._store.batch_delete([
            user_document(user_id, ALLOCATIONS, allocation.id)
            for allocation in allocations
        ])
        logger.warning("allocations_deleted", plan_id=plan_id, count=len(allocations))
        return len(allocations)

    async def total_allocated(self, user_id: str) -> float:
        """Total across all plans; 0 if the ledger can't be read."""
        try:
            return cumulative_total(await self.list_all(user_id))
        except StorageError as e:
            logger.error("total_allocated_failed", user_id=user_id, error=str(e))
            return 0.0

    async def find(
        self,
        user_id: str,
        plan_id: str,
        income_id: str,
    ) -> Optional[Allocation]:
        """The allocation for one (plan, income) pair, if any."""
        documents = await self._store.query(
            user_collection(user_id, ALLOCATIONS),
            filters=(
                Filter("planId", "==", plan_id),
                Filter("originalIncomeRowId", "==", income_id),
            ),
        )
        return Allocation.model_validate(documents[0]) if documents else None
