"""
Main Orchestrator for the Savings Engine

Wires the store and clock into the engine components and defines the
long-lived session a client screen holds while showing a user's plans.

DESIGN DECISION: Nothing in the engine reaches for a global connection.
The store and clock are created here (or passed in) and injected into
every component, so tests and embedding apps can swap them freely.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from savings_engine.allocation import AllocationEngine
from savings_engine.audit import AuditLogger
from savings_engine.config import get_settings
from savings_engine.ledger import AllocationLedger, IncomeTransactionReader
from savings_engine.models.plan import AllocationRunResult, AllocationSummary, Plan
from savings_engine.projection import PlanInsightsService, ProjectionEngine
from savings_engine.registry import PlanRegistry
from savings_engine.services.clock import Clock, SystemClock
from savings_engine.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsStore,
    InMemoryStore,
    Store,
    Subscription,
)

logger = structlog.get_logger(__name__)


class PlanDashboard:
    """
    A user's live view of their plans.

    Flow:
    1. open() -> subscribe to plans, run one allocation pass
    2. every plan change -> replace `plans`, refresh the summary
    3. process_allocations() -> on demand (pull to refresh)
    4. close() -> MUST be called, or the subscription leaks

    Only one allocation run is in flight per dashboard. A second request
    while one is running returns None instead of starting another.
    """

    def __init__(
        self,
        user_id: str,
        registry: PlanRegistry,
        engine: AllocationEngine,
    ):
        self.user_id = user_id
        self._registry = registry
        self._engine = engine
        self._subscription: Optional[Subscription] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_pending = False

        self.plans: list[Plan] = []
        self.summary: Optional[AllocationSummary] = None
        self.error: Optional[Exception] = None
        self.loading = True
        self.processing = False

    async def open(self) -> Optional[AllocationRunResult]:
        """Start listening and run the initial allocation pass."""
        if self._subscription is None:
            self._subscription = self._registry.subscribe(self.user_id, self._on_plans)
        return await self.process_allocations()

    def _on_plans(self, plans: list[Plan]) -> None:
        self.plans = plans
        self.loading = False
        logger.debug("dashboard_plans_received", user_id=self.user_id, plans=len(plans))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = loop.create_task(self._refresh_until_current())
        else:
            self._refresh_pending = True

    async def _refresh_until_current(self) -> None:
        # Changes that land mid-refresh get one more pass.
        while True:
            self._refresh_pending = False
            await self.load_allocation_summary()
            if not self._refresh_pending:
                return

    async def load_allocation_summary(self) -> Optional[AllocationSummary]:
        """Refresh `summary`. Failures are logged and leave the old summary."""
        try:
            self.summary = await self._engine.get_allocation_summary(self.user_id)
        except Exception as e:
            logger.error("dashboard_summary_failed", user_id=self.user_id, error=str(e))
        return self.summary

    async def process_allocations(self) -> Optional[AllocationRunResult]:
        """
        Run one allocation pass and reload the summary.

        Returns None if a run is already in progress.

        Raises:
            StorageError: If the run can't load its inputs (also kept in `error`)
        """
        if self.processing:
            logger.info("dashboard_run_already_processing", user_id=self.user_id)
            return None

        self.processing = True
        try:
            result = await self._engine.process_income_allocations(self.user_id)
            await self.load_allocation_summary()
            self.error = None
            return result
        except Exception as e:
            logger.error("dashboard_run_failed", user_id=self.user_id, error=str(e))
            self.error = e
            raise
        finally:
            self.processing = False

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None
        self._refresh_pending = False

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and self._subscription.active


@dataclass
class EngineComponents:
    store: Store
    clock: Clock
    audit_logger: AuditLogger
    registry: PlanRegistry
    income_reader: IncomeTransactionReader
    ledger: AllocationLedger
    allocation_engine: AllocationEngine
    projection_engine: ProjectionEngine
    insights: PlanInsightsService

    def dashboard(self, user_id: str) -> PlanDashboard:
        return PlanDashboard(user_id, self.registry, self.allocation_engine)


def create_engine_components(
    store: Optional[Store] = None,
    clock: Optional[Clock] = None,
    use_google_sheets: Optional[bool] = None,
) -> EngineComponents:
    """
    Factory function to create all engine components.

    Args:
        store: Store to use. If None, one is created from settings.
        clock: Clock to use. Defaults to the system clock.
        use_google_sheets: Back the engine with Google Sheets.
                    Defaults to the app setting; falls back to an
                    in-memory store if Sheets isn't configured.
    """
    settings = get_settings()
    clock = clock or SystemClock()
    if use_google_sheets is None:
        use_google_sheets = settings.app.use_google_sheets

    if store is None:
        if use_google_sheets:
            try:
                store = GoogleSheetsStore(GoogleSheetsClient(), clock=clock)
            except Exception as e:
                # Storage not configured - continue without it
                logger.warning("google_sheets_unavailable", error=str(e))
                store = InMemoryStore(clock)
        else:
            store = InMemoryStore(clock)

    audit_logger = AuditLogger(store)
    registry = PlanRegistry(store, audit_logger=audit_logger)
    income_reader = IncomeTransactionReader(store)
    ledger = AllocationLedger(store)
    projection_engine = ProjectionEngine(clock, settings.engine)

    return EngineComponents(
        store=store,
        clock=clock,
        audit_logger=audit_logger,
        registry=registry,
        income_reader=income_reader,
        ledger=ledger,
        allocation_engine=AllocationEngine(registry, income_reader, ledger, audit_logger),
        projection_engine=projection_engine,
        insights=PlanInsightsService(
            registry, income_reader, ledger, projection_engine, audit_logger,
        ),
    )
