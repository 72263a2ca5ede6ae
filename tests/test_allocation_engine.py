"""
Tests for the allocation engine

Income is written to the in-memory expense ledger exactly as the client
would write it; the engine is then run end to end.
"""

from datetime import timedelta

import pytest

from conftest import NOW, USER_ID, add_ledger_entry, create_plan
from savings_engine.allocation import AllocationEngine, allocated_amount
from savings_engine.audit import AuditLogger
from savings_engine.layout import user_collection
from savings_engine.ledger import (
    AllocationLedger,
    DuplicateAllocationError,
    IncomeTransactionReader,
    cumulative_total,
)
from savings_engine.models.plan import AllocationDraft
from savings_engine.registry import PlanNotFoundError, PlanRegistry
from savings_engine.services.storage import InMemoryStore, StorageError


class FailingStore(InMemoryStore):
    """Rejects allocation writes for one plan, or every expense read."""

    def __init__(self, clock, failing_plan_id=None, fail_income_reads=False):
        super().__init__(clock)
        self.failing_plan_id = failing_plan_id
        self.fail_income_reads = fail_income_reads

    async def add(self, collection, fields):
        if collection.endswith("planAllocations") and fields.get("planId") == self.failing_plan_id:
            raise StorageError("write rejected")
        return await super().add(collection, fields)

    async def query(self, collection, filters=(), order_by=()):
        if self.fail_income_reads and collection.endswith("expenses"):
            raise StorageError("ledger unavailable")
        return await super().query(collection, filters, order_by)


def build_engine(store):
    audit_logger = AuditLogger(store, collection="auditLog")
    registry = PlanRegistry(store, audit_logger=audit_logger)
    ledger = AllocationLedger(store)
    engine = AllocationEngine(registry, IncomeTransactionReader(store), ledger, audit_logger)
    return registry, ledger, engine


async def add_income(store, amount, days_ago=1):
    return await add_ledger_entry(
        store, in_amount=amount, date=NOW - timedelta(days=days_ago), category="Salary",
    )


class TestAllocationMath:

    def test_allocated_amount(self):
        assert allocated_amount(1000, 20) == 200.0
        assert allocated_amount(1234.5, 0) == 0.0
        assert allocated_amount(80, 100) == 80

    @pytest.mark.asyncio
    async def test_twenty_percent_of_one_thousand(self, store, registry, ledger, allocation_engine):
        plan = await create_plan(registry, 20)
        income_id = await add_income(store, 1000)

        result = await allocation_engine.process_income_allocations(USER_ID)

        assert result.processed == 1
        assert result.created == 1
        assert result.skipped == 0
        [allocation] = await ledger.list_for_plan(USER_ID, plan.id)
        assert allocation.allocated_amount == 200.00
        assert allocation.income_amount == 1000
        assert allocation.original_income_row_id == income_id
        assert allocation.plan_name == plan.plan_name
        assert allocation.cumulative_total_for_plan == 200.00


class TestProcessIncomeAllocations:

    @pytest.mark.asyncio
    async def test_no_active_plans(self, store, allocation_engine):
        await add_income(store, 1000)
        result = await allocation_engine.process_income_allocations(USER_ID)
        assert (result.processed, result.created, result.skipped) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_expenses_are_not_income(self, store, registry, allocation_engine):
        await create_plan(registry, 10)
        await add_ledger_entry(store, out_amount=50)
        result = await allocation_engine.process_income_allocations(USER_ID)
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_every_income_goes_to_every_plan(self, store, registry, ledger, allocation_engine):
        await create_plan(registry, 20, name="A")
        await create_plan(registry, 30, name="B")
        for days_ago, amount in ((3, 1000), (2, 500), (1, 250)):
            await add_income(store, amount, days_ago)

        result = await allocation_engine.process_income_allocations(USER_ID)

        assert result.processed == 3
        assert result.created == 6
        assert len(await ledger.list_all(USER_ID)) == 6

    @pytest.mark.asyncio
    async def test_idempotent(self, store, registry, allocation_engine):
        await create_plan(registry, 20, name="A")
        await create_plan(registry, 10, name="B")
        await add_income(store, 1000, 2)
        await add_income(store, 400, 1)

        first = await allocation_engine.process_income_allocations(USER_ID)
        totals = {p.id: p.cumulative_total_for_plan for p in await registry.list_active(USER_ID)}
        second = await allocation_engine.process_income_allocations(USER_ID)

        assert first.created == 4
        assert (second.processed, second.created, second.skipped) == (0, 0, 0)
        assert totals == {
            p.id: p.cumulative_total_for_plan for p in await registry.list_active(USER_ID)
        }

    @pytest.mark.asyncio
    async def test_cached_total_equals_sum_of_allocations(
        self, store, registry, ledger, allocation_engine,
    ):
        await create_plan(registry, 12.5, name="A")
        await create_plan(registry, 7, name="B")
        for days_ago, amount in ((5, 1999.99), (4, 10.01), (1, 333.33)):
            await add_income(store, amount, days_ago)

        await allocation_engine.process_income_allocations(USER_ID)
        await add_income(store, 777, 0)
        await allocation_engine.process_income_allocations(USER_ID)

        for plan in await registry.list_active(USER_ID):
            allocations = await ledger.list_for_plan(USER_ID, plan.id)
            assert len(allocations) == 4
            assert plan.cumulative_total_for_plan == cumulative_total(allocations)
            assert max(a.cumulative_total_for_plan for a in allocations) == pytest.approx(
                plan.cumulative_total_for_plan
            )

    @pytest.mark.asyncio
    async def test_new_plan_does_not_receive_old_income(
        self, store, registry, ledger, allocation_engine,
    ):
        """Income counts as allocated once any plan holds a share of it."""
        await create_plan(registry, 10, name="Early")
        await add_income(store, 1000)
        await allocation_engine.process_income_allocations(USER_ID)

        late = await create_plan(registry, 10, name="Late")
        result = await allocation_engine.process_income_allocations(USER_ID)

        assert result.processed == 0
        assert await ledger.list_for_plan(USER_ID, late.id) == []

    @pytest.mark.asyncio
    async def test_failed_pairs_are_skipped_not_fatal(self, clock):
        store = FailingStore(clock)
        registry, ledger, engine = build_engine(store)
        good = await create_plan(registry, 20, name="Good")
        bad = await create_plan(registry, 10, name="Bad")
        store.failing_plan_id = bad.id
        await add_income(store, 1000, 2)
        await add_income(store, 500, 1)

        result = await engine.process_income_allocations(USER_ID)

        assert result.processed == 2
        assert result.created == 2
        assert result.skipped == 2
        assert (await registry.get(USER_ID, good.id)).cumulative_total_for_plan == 300
        assert (await registry.get(USER_ID, bad.id)).cumulative_total_for_plan == 0

        events = await store.query(user_collection(USER_ID, "auditLog"))
        skipped = [e for e in events if e["event_type"] == "allocation_skipped"]
        assert len(skipped) == 2

    @pytest.mark.asyncio
    async def test_load_failure_propagates(self, clock):
        store = FailingStore(clock, fail_income_reads=True)
        registry, _, engine = build_engine(store)
        await create_plan(registry, 20)

        with pytest.raises(StorageError):
            await engine.process_income_allocations(USER_ID)

    @pytest.mark.asyncio
    async def test_malformed_ledger_entry_is_a_storage_error(
        self, store, registry, allocation_engine
    ):
        await create_plan(registry, 20)
        await store.add(user_collection(USER_ID, "expenses"), {"inAmount": 500, "date": "soon"})

        with pytest.raises(StorageError):
            await allocation_engine.process_income_allocations(USER_ID)

    @pytest.mark.asyncio
    async def test_malformed_allocation_is_a_storage_error(self, store, ledger):
        await store.add(user_collection(USER_ID, "planAllocations"), {"planId": "plan-1"})

        with pytest.raises(StorageError):
            await ledger.list_all(USER_ID)
        with pytest.raises(StorageError):
            await ledger.list_for_plan(USER_ID, "plan-1")

    @pytest.mark.asyncio
    async def test_run_is_audited(self, store, registry, allocation_engine):
        await create_plan(registry, 20)
        await add_income(store, 1000)
        await allocation_engine.process_income_allocations(USER_ID)

        events = await store.query(user_collection(USER_ID, "auditLog"))
        types = [e["event_type"] for e in events]
        assert "allocation_run_started" in types
        assert "allocation_run_completed" in types
        run_ids = {
            e["correlation_id"] for e in events
            if e["event_type"].startswith("allocation_run")
        }
        assert len(run_ids) == 1


class TestPlanHistory:

    @pytest.mark.asyncio
    async def test_soft_delete_preserves_allocations(
        self, store, registry, ledger, allocation_engine,
    ):
        plan = await create_plan(registry, 20)
        for days_ago in (3, 2, 1):
            await add_income(store, 1000, days_ago)
        await allocation_engine.process_income_allocations(USER_ID)
        before = await ledger.list_for_plan(USER_ID, plan.id)

        await registry.soft_delete(USER_ID, plan.id)

        after = await ledger.list_for_plan(USER_ID, plan.id)
        assert len(after) == 3
        assert after == before
        assert (await registry.get(USER_ID, plan.id)).active is False

    @pytest.mark.asyncio
    async def test_inactive_plans_receive_nothing(
        self, store, registry, ledger, allocation_engine,
    ):
        plan = await create_plan(registry, 20, name="Paused")
        await create_plan(registry, 10, name="Running")
        await registry.soft_delete(USER_ID, plan.id)
        await add_income(store, 1000)

        result = await allocation_engine.process_income_allocations(USER_ID)

        assert result.created == 1
        assert await ledger.list_for_plan(USER_ID, plan.id) == []

    @pytest.mark.asyncio
    async def test_recalculate_keeps_history(self, store, registry, ledger, allocation_engine):
        plan = await create_plan(registry, 20)
        await add_income(store, 1000)
        await allocation_engine.process_income_allocations(USER_ID)

        await registry.update(USER_ID, plan.id, {"percentage_of_income": 50})
        total = await allocation_engine.recalculate_plan_allocations(USER_ID, plan.id)

        assert total == 200
        [allocation] = await ledger.list_for_plan(USER_ID, plan.id)
        assert allocation.allocated_amount == 200
        assert (await registry.get(USER_ID, plan.id)).cumulative_total_for_plan == 200

    @pytest.mark.asyncio
    async def test_recalculate_repairs_drifted_total(self, store, registry, allocation_engine):
        plan = await create_plan(registry, 20)
        await add_income(store, 1000)
        await allocation_engine.process_income_allocations(USER_ID)
        await registry.update_cumulative_total(USER_ID, plan.id, 9999)

        assert await allocation_engine.recalculate_plan_allocations(USER_ID, plan.id) == 200

    @pytest.mark.asyncio
    async def test_recalculate_missing_plan(self, allocation_engine):
        with pytest.raises(PlanNotFoundError):
            await allocation_engine.recalculate_plan_allocations(USER_ID, "missing")

    @pytest.mark.asyncio
    async def test_delete_allocations_for_plan(self, store, registry, ledger, allocation_engine):
        plan = await create_plan(registry, 20)
        await add_income(store, 1000, 2)
        await add_income(store, 1000, 1)
        await allocation_engine.process_income_allocations(USER_ID)

        assert await allocation_engine.delete_allocations_for_plan(USER_ID, plan.id) == 2
        assert await ledger.list_for_plan(USER_ID, plan.id) == []
        assert (await registry.get(USER_ID, plan.id)).cumulative_total_for_plan == 0


class TestAllocationSummary:

    @pytest.mark.asyncio
    async def test_summary(self, store, registry, allocation_engine):
        a = await create_plan(registry, 20, name="A")
        await create_plan(registry, 10, name="B")
        await add_income(store, 1000, 2)
        await add_income(store, 500, 1)
        await allocation_engine.process_income_allocations(USER_ID)

        summary = await allocation_engine.get_allocation_summary(USER_ID)

        assert summary.total_allocated == pytest.approx(450)
        assert summary.total_income_transactions == 2
        assert summary.total_allocation_count == 4
        assert summary.active_plans_count == 2
        by_id = {line.plan_id: line for line in summary.plan_summaries}
        assert by_id[a.id].total_allocated == 300
        assert by_id[a.id].allocation_count == 2
        assert by_id[a.id].percentage == 20

    @pytest.mark.asyncio
    async def test_empty_summary(self, allocation_engine):
        summary = await allocation_engine.get_allocation_summary(USER_ID)
        assert summary.total_allocated == 0
        assert summary.plan_summaries == []


class TestAllocationLedger:

    @pytest.mark.asyncio
    async def test_duplicate_pair_rejected(self, registry, ledger):
        plan = await create_plan(registry, 20)
        draft = AllocationDraft(
            plan_id=plan.id,
            plan_name=plan.plan_name,
            original_income_row_id="income-1",
            date=NOW,
            income_amount=1000,
            allocated_amount=200,
            cumulative_total_for_plan=200,
            user_id=USER_ID,
        )
        created = await ledger.append(USER_ID, draft)
        assert created.created_at == NOW

        with pytest.raises(DuplicateAllocationError):
            await ledger.append(USER_ID, draft)
        assert len(await ledger.list_all(USER_ID)) == 1

    @pytest.mark.asyncio
    async def test_plan_subscription(self, store, registry, ledger, allocation_engine):
        plan = await create_plan(registry, 20)
        snapshots = []
        subscription = ledger.subscribe_for_plan(USER_ID, plan.id, snapshots.append)

        await add_income(store, 1000)
        await allocation_engine.process_income_allocations(USER_ID)

        assert snapshots[0] == []
        assert len(snapshots[-1]) == 1
        subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_total_allocated_swallows_store_errors(self, clock):
        store = FailingStore(clock)

        async def broken_query(*args, **kwargs):
            raise StorageError("down")

        store.query = broken_query
        assert await AllocationLedger(store).total_allocated(USER_ID) == 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
