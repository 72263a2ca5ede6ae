"""
Plan Insights Service

Loads what the projection engine needs from the store and hands it over.
The engine itself stays pure; this is the only place projections meet I/O.
"""

from typing import Optional

import structlog

from savings_engine.audit import AuditLogger
from savings_engine.ledger import AllocationLedger, IncomeTransactionReader
from savings_engine.models.audit import AuditEventBuilder
from savings_engine.models.projection import ProjectionResult, Recommendation, WhatIfResult
from savings_engine.projection.engine import ProjectionEngine
from savings_engine.registry import PlanRegistry

logger = structlog.get_logger(__name__)


class PlanInsightsService:
    """Store-backed projections, health scores and recommendations."""

    def __init__(
        self,
        registry: PlanRegistry,
        income_reader: IncomeTransactionReader,
        ledger: AllocationLedger,
        engine: ProjectionEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._registry = registry
        self._income_reader = income_reader
        self._ledger = ledger
        self._engine = engine
        self._audit_logger = audit_logger

    async def projections_for_plan(self, user_id: str, plan_id: str) -> ProjectionResult:
        """
        Raises:
            PlanNotFoundError: If the plan doesn't exist
            StorageError: If the store can't be read
        """
        plan = await self._registry.get(user_id, plan_id)
        allocations = await self._ledger.list_for_plan(user_id, plan_id)
        income = await self._income_reader.list_income(user_id)
        return self._engine.generate_projections(plan, allocations, income)

    async def what_if(
        self,
        user_id: str,
        plan_id: str,
        candidate_percentage: float,
    ) -> WhatIfResult:
        """Simulate a different percentage. The plan is not changed."""
        plan = await self._registry.get(user_id, plan_id)
        income = await self._income_reader.list_income(user_id)
        return self._engine.simulate(plan, income, candidate_percentage)

    async def health_score_for_plan(self, user_id: str, plan_id: str) -> int:
        plan = await self._registry.get(user_id, plan_id)
        income = await self._income_reader.list_income(user_id)
        expenses = await self._income_reader.list_expenses(user_id)
        all_plans = await self._registry.list_active(user_id)
        return self._engine.calculate_health_score(plan, income, expenses, all_plans)

    async def recommendations_for_plan(
        self,
        user_id: str,
        plan_id: str,
    ) -> list[Recommendation]:
        plan = await self._registry.get(user_id, plan_id)
        income = await self._income_reader.list_income(user_id)
        expenses = await self._income_reader.list_expenses(user_id)
        all_plans = await self._registry.list_active(user_id)

        recommendations = self._engine.generate_recommendations(
            plan, income, expenses, all_plans,
        )
        if self._audit_logger and recommendations:
            await self._audit_logger.log(AuditEventBuilder.recommendations_generated(
                user_id, plan_id, [rec.type.value for rec in recommendations],
            ))
        return recommendations

    async def update_all_health_scores(self, user_id: str) -> dict[str, int]:
        """
        Recompute and store the health score of every active plan.

        Failures are logged, never raised; plans that failed are missing
        from the result.

        Returns:
            {plan_id: score}
        """
        scores = {}
        try:
            plans = await self._registry.list_active(user_id)
            income = await self._income_reader.list_income(user_id)
            expenses = await self._income_reader.list_expenses(user_id)
        except Exception as e:
            logger.error("health_score_refresh_failed", user_id=user_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="health_score_refresh_failed",
                    error_message=str(e),
                    details={"user_id": user_id},
                )
            return scores

        for plan in plans:
            score = self._engine.calculate_health_score(plan, income, expenses, plans)
            try:
                scores[plan.id] = await self._registry.update_health_score(
                    user_id, plan.id, score,
                )
            except Exception as e:
                logger.error(
                    "health_score_update_failed",
                    user_id=user_id,
                    plan_id=plan.id,
                    error=str(e),
                )

        logger.info("health_scores_updated", user_id=user_id, plans=len(scores))
        return scores
