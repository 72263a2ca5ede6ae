"""
Shared fixtures.

Every test runs against an in-memory store and a frozen clock, so no
test depends on the wall clock or on a real backend.
"""

from datetime import datetime, timedelta, timezone

import pytest

from savings_engine.allocation import AllocationEngine
from savings_engine.audit import AuditLogger
from savings_engine.config import EngineSettings
from savings_engine.layout import EXPENSES, user_collection
from savings_engine.ledger import AllocationLedger, IncomeTransactionReader
from savings_engine.models.plan import IncomeTransaction, PlanDraft
from savings_engine.projection import PlanInsightsService, ProjectionEngine, add_months
from savings_engine.registry import PlanRegistry
from savings_engine.services.clock import FixedClock
from savings_engine.services.storage import InMemoryStore

USER_ID = "user-1"
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def monthly_income(amount=2000.0, months=6, last=datetime(2025, 1, 1, tzinfo=timezone.utc)):
    """Income on the same day of consecutive months, newest first."""
    return [
        IncomeTransaction(id=f"income-{i}", date=add_months(last, -i), in_amount=amount)
        for i in range(months)
    ]


def weekly_income(amount=500.0, count=7, last=NOW - timedelta(days=1)):
    return [
        IncomeTransaction(id=f"income-{i}", date=last - timedelta(days=7 * i), in_amount=amount)
        for i in range(count)
    ]


async def add_ledger_entry(store, in_amount=0.0, out_amount=0.0, date=None, category=None):
    """Write an expense-ledger row the way the mobile client does."""
    return await store.add(user_collection(USER_ID, EXPENSES), {
        "date": date or NOW - timedelta(days=1),
        "category": category,
        "description": "test entry",
        "inAmount": in_amount,
        "outAmount": out_amount,
    })


async def create_plan(registry, percentage, name="Emergency Fund", **kwargs):
    draft = PlanDraft(plan_name=name, percentage_of_income=percentage, **kwargs)
    return await registry.create(USER_ID, draft)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store(clock):
    return InMemoryStore(clock)


@pytest.fixture
def audit_logger(store):
    return AuditLogger(store, collection="auditLog")


@pytest.fixture
def registry(store, audit_logger):
    return PlanRegistry(store, audit_logger=audit_logger)


@pytest.fixture
def income_reader(store):
    return IncomeTransactionReader(store)


@pytest.fixture
def ledger(store):
    return AllocationLedger(store)


@pytest.fixture
def allocation_engine(registry, income_reader, ledger, audit_logger):
    return AllocationEngine(registry, income_reader, ledger, audit_logger)


@pytest.fixture
def engine_settings():
    return EngineSettings()


@pytest.fixture
def projection_engine(clock, engine_settings):
    return ProjectionEngine(clock, engine_settings)


@pytest.fixture
def insights(registry, income_reader, ledger, projection_engine, audit_logger):
    return PlanInsightsService(registry, income_reader, ledger, projection_engine, audit_logger)
