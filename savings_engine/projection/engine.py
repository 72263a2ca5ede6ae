"""
Projection Engine

Forecasts a plan's accumulation, scores its health and advises the user.

Everything here is advisory. Projections raise on bad input like any other
computation, but health scoring and recommendations NEVER raise: a failure
is logged and replaced by a neutral score or an empty list.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog

from savings_engine.config import EngineSettings, get_settings
from savings_engine.models.plan import Allocation, IncomeTransaction, LedgerEntry, Plan
from savings_engine.models.projection import (
    ProjectionResult,
    Recommendation,
    WhatIfResult,
)
from savings_engine.projection.forecasting import (
    days_between,
    detect_income_frequency,
    moving_average,
    project,
)
from savings_engine.projection.health import (
    goal_realism_penalty,
    income_consistency_penalty,
    over_allocation_penalty,
    score_from_penalties,
    spending_volatility_penalty,
)
from savings_engine.projection.recommendations import build_recommendations
from savings_engine.services.clock import Clock
from savings_engine.validation import PlanValidator, ValidationError

logger = structlog.get_logger(__name__)

NO_INCOME_MESSAGE = "No income data yet. Add income transactions to see projections."
NO_INCOME_SIMULATION_MESSAGE = "No income data available for simulation"


def _months(days: float) -> str:
    months = round(days / 30)
    return f"{months} month{'' if months == 1 else 's'}"


def _format_date(value: datetime) -> str:
    return value.strftime("%b %d, %Y")


class ProjectionEngine:
    """Forecasting, health scoring and recommendations for one plan at a time."""

    def __init__(self, clock: Clock, settings: Optional[EngineSettings] = None):
        self._clock = clock
        self._settings = settings or get_settings().engine
        self._validator = PlanValidator()

    def _run(
        self,
        plan: Plan,
        income: Sequence[IncomeTransaction],
        percentage: float,
    ) -> tuple[ProjectionResult, datetime]:
        now = self._clock.now()
        average = moving_average(income, self._settings.moving_average_periods)
        pattern = detect_income_frequency(income)
        horizon = plan.target_date or now + timedelta(days=self._settings.default_horizon_days)

        points, achieved_at = project(
            start_total=plan.cumulative_total_for_plan,
            start_date=now,
            horizon=horizon,
            percentage=percentage,
            income_per_event=average,
            pattern=pattern,
            target_amount=plan.target_amount,
            max_steps=self._settings.max_projection_steps,
        )
        result = ProjectionResult(
            projections=points,
            goal_achievement_date=achieved_at,
            income_pattern=pattern,
            moving_average=average,
        )
        return result, now

    def generate_projections(
        self,
        plan: Plan,
        allocations: Sequence[Allocation],
        income: Sequence[IncomeTransaction],
    ) -> ProjectionResult:
        """
        Project the plan forward from its current cumulative total.

        `allocations` is the plan's history. The starting total is the
        plan's cached cumulative, which the allocation engine keeps equal
        to the sum of that history.
        """
        if not income:
            return ProjectionResult(message=NO_INCOME_MESSAGE)

        result, now = self._run(plan, income, plan.percentage_of_income)
        result.message = self._describe(plan, result, now)

        logger.debug(
            "projection_generated",
            plan_id=plan.id,
            allocations=len(allocations),
            moving_average=round(result.moving_average, 2),
            frequency=result.income_pattern.frequency.value,
            steps=len(result.projections),
            goal_reached=result.goal_achievement_date is not None,
        )
        return result

    def _describe(self, plan: Plan, result: ProjectionResult, now: datetime) -> str:
        achieved_at = result.goal_achievement_date
        if plan.target_amount:
            goal = f"${plan.target_amount:.0f}"
            if achieved_at:
                return (
                    f"You'll reach your {goal} goal in "
                    f"{_months(days_between(now, achieved_at))} ({_format_date(achieved_at)})"
                )
            if plan.target_date:
                total = result.final_total if result.projections else plan.cumulative_total_for_plan
                return (
                    f"At current rate, you'll accumulate ${total:.0f} by "
                    f"{_format_date(plan.target_date)}. Goal: {goal}"
                )
            return (
                f"Continue allocating {plan.percentage_of_income:g}% "
                f"to reach your {goal} goal"
            )
        if result.projections:
            return (
                f"You'll accumulate ${result.final_total:.0f} over the next "
                f"{len(result.projections)} income payments"
            )
        return ""

    def simulate(
        self,
        plan: Plan,
        income: Sequence[IncomeTransaction],
        candidate_percentage: float,
    ) -> WhatIfResult:
        """
        Project the plan under a hypothetical percentage. Nothing is saved.

        Raises:
            ValidationError: If the percentage is outside 0-100
        """
        issues = self._validator.check_percentage_range(candidate_percentage)
        if issues:
            raise ValidationError(issues)

        if not income:
            return WhatIfResult(
                message=NO_INCOME_SIMULATION_MESSAGE,
                simulated_percentage=candidate_percentage,
            )

        result, now = self._run(plan, income, candidate_percentage)
        achieved_at = result.goal_achievement_date
        prefix = f"At {candidate_percentage:g}% allocation"
        if plan.target_amount and achieved_at:
            message = (
                f"{prefix}, you'll reach ${plan.target_amount:.0f} in "
                f"{_months(days_between(now, achieved_at))}"
            )
        elif result.projections:
            message = (
                f"{prefix}, you'll save ${result.final_total:.0f} over "
                f"{len(result.projections)} payments"
            )
        else:
            message = ""

        return WhatIfResult(
            **result.model_dump(exclude={"message"}),
            message=message,
            simulated_percentage=candidate_percentage,
        )

    def calculate_health_score(
        self,
        plan: Plan,
        income: Sequence[IncomeTransaction],
        expenses: Sequence[LedgerEntry],
        all_plans: Sequence[Plan],
    ) -> int:
        """
        Score the plan 0-100. Never raises.

        `all_plans` is the user's plan list; only active plans count
        towards over-allocation.
        """
        try:
            projection = None
            if plan.target_amount and plan.target_date:
                projection = self.generate_projections(plan, [], income)

            penalties = {
                "income": income_consistency_penalty(income),
                "spending": spending_volatility_penalty(expenses, self._clock.now()),
                "allocation": over_allocation_penalty(all_plans),
                "timeline": goal_realism_penalty(plan, projection),
            }
            score = score_from_penalties(*penalties.values())
        except Exception as e:
            logger.error("health_score_failed", plan_id=plan.id, error=str(e))
            return self._settings.neutral_health_score

        logger.debug(
            "health_score_calculated",
            plan_id=plan.id,
            score=score,
            **{f"{name}_penalty": round(value, 2) for name, value in penalties.items()},
        )
        return score

    def generate_recommendations(
        self,
        plan: Plan,
        income: Sequence[IncomeTransaction],
        expenses: Sequence[LedgerEntry],
        all_plans: Sequence[Plan],
    ) -> list[Recommendation]:
        """Advice for one plan, in fixed check order. Never raises."""
        try:
            health_score = self.calculate_health_score(plan, income, expenses, all_plans)
            projection = self.generate_projections(plan, [], income)
            recommendations = build_recommendations(
                plan=plan,
                health_score=health_score,
                projection=projection,
                income=income,
                expenses=expenses,
                all_plans=all_plans,
                now=self._clock.now(),
                periods=self._settings.moving_average_periods,
            )
        except Exception as e:
            logger.error("recommendations_failed", plan_id=plan.id, error=str(e))
            return []

        logger.debug(
            "recommendations_generated",
            plan_id=plan.id,
            types=[rec.type.value for rec in recommendations],
        )
        return recommendations
