"""
Tests for projections, health scoring and recommendations

The clock is frozen at 2025-01-15 12:00 UTC; monthly income arrives on
the 1st (Aug 2024 - Jan 2025) at $2000 unless a test says otherwise.
"""

from datetime import timedelta

import pytest

from conftest import NOW, USER_ID, add_ledger_entry, create_plan, monthly_income
from savings_engine.models.plan import LedgerEntry, Plan
from savings_engine.models.projection import (
    IncomeFrequency,
    ProjectionResult,
    RecommendationAction,
    RecommendationType,
)
from savings_engine.projection.engine import NO_INCOME_MESSAGE
from savings_engine.projection.recommendations import build_recommendations
from savings_engine.registry import PlanNotFoundError
from savings_engine.validation import ValidationError


def make_plan(percentage=10.0, **overrides):
    fields = {
        "id": "plan-1",
        "user_id": USER_ID,
        "plan_name": "Emergency Fund",
        "percentage_of_income": percentage,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return Plan(**fields)


def spending(amounts, category=None):
    """One outbound entry per day, most recent yesterday."""
    return [
        LedgerEntry(
            id=f"expense-{i}",
            date=NOW - timedelta(days=i + 1),
            category=category,
            out_amount=amount,
        )
        for i, amount in enumerate(amounts)
    ]


class TestGenerateProjections:

    def test_goal_reached_in_five_months(self, projection_engine):
        """10% of $2000 a month reaches $1000 on the fifth payment."""
        plan = make_plan(10, target_amount=1000)

        result = projection_engine.generate_projections(plan, [], monthly_income())

        assert result.income_pattern.frequency == IncomeFrequency.MONTHLY
        assert result.moving_average == 2000
        assert result.projections[0].projected_allocation == 200
        assert result.projections[4].cumulative_total == 1000
        assert result.goal_achievement_date == result.projections[4].date
        assert "5 months" in result.message
        assert result.message.startswith("You'll reach your $1000 goal in 5 months")

    def test_twelve_steps_without_target_date(self, projection_engine):
        plan = make_plan(10)
        result = projection_engine.generate_projections(plan, [], monthly_income())
        assert len(result.projections) == 12
        assert result.goal_achievement_date is None
        assert result.message == "You'll accumulate $2400 over the next 12 income payments"

    def test_starts_from_cumulative_total(self, projection_engine):
        plan = make_plan(10, cumulative_total_for_plan=500, target_amount=1000)
        result = projection_engine.generate_projections(plan, [], monthly_income())
        assert result.projections[0].cumulative_total == 700
        assert result.goal_achievement_date == result.projections[2].date

    def test_target_date_limits_projection(self, projection_engine):
        plan = make_plan(10, target_amount=1000, target_date=NOW + timedelta(days=59))
        result = projection_engine.generate_projections(plan, [], monthly_income())
        assert len(result.projections) == 2
        assert result.goal_achievement_date is None
        assert result.message == (
            "At current rate, you'll accumulate $400 by Mar 15, 2025. Goal: $1000"
        )

    def test_unreached_goal_without_date(self, projection_engine):
        plan = make_plan(1, target_amount=1000)
        result = projection_engine.generate_projections(plan, [], monthly_income())
        assert result.goal_achievement_date is None
        assert result.message == "Continue allocating 1% to reach your $1000 goal"

    def test_no_income(self, projection_engine):
        result = projection_engine.generate_projections(make_plan(), [], [])
        assert result.projections == []
        assert result.income_pattern is None
        assert result.message == NO_INCOME_MESSAGE

    def test_single_month_is_singular(self, projection_engine):
        plan = make_plan(50, target_amount=1000)
        result = projection_engine.generate_projections(plan, [], monthly_income())
        assert "in 1 month (" in result.message


class TestSimulate:

    def test_candidate_percentage_replaces_plan_percentage(self, projection_engine):
        plan = make_plan(10, target_amount=1000)
        result = projection_engine.simulate(plan, monthly_income(), 20)
        assert result.simulated_percentage == 20
        assert result.projections[0].projected_allocation == 400
        assert result.goal_achievement_date == result.projections[2].date
        assert result.message == "At 20% allocation, you'll reach $1000 in 3 months"
        assert plan.percentage_of_income == 10

    def test_without_target(self, projection_engine):
        result = projection_engine.simulate(make_plan(10), monthly_income(), 20)
        assert result.message == "At 20% allocation, you'll save $4800 over 12 payments"

    @pytest.mark.parametrize("percentage", [-1, 100.5, 250])
    def test_rejects_out_of_range(self, projection_engine, percentage):
        with pytest.raises(ValidationError):
            projection_engine.simulate(make_plan(), monthly_income(), percentage)

    def test_no_income(self, projection_engine):
        result = projection_engine.simulate(make_plan(), [], 30)
        assert result.projections == []
        assert result.simulated_percentage == 30


class TestHealthScore:

    def test_perfect_plan(self, projection_engine):
        plan = make_plan(10)
        assert projection_engine.calculate_health_score(plan, monthly_income(), [], [plan]) == 100

    def test_insufficient_income_data(self, projection_engine):
        plan = make_plan(10)
        income = monthly_income(months=2)
        assert projection_engine.calculate_health_score(plan, income, [], [plan]) == 90

    def test_income_variance(self, projection_engine):
        plan = make_plan(10)
        income = monthly_income(months=4)
        income = [
            tx.model_copy(update={"in_amount": 1000 if i % 2 else 3000})
            for i, tx in enumerate(income)
        ]
        # CV 0.5 -> (0.5 - 0.3) * 100
        assert projection_engine.calculate_health_score(plan, income, [], [plan]) == 80

    def test_spending_volatility(self, projection_engine):
        plan = make_plan(10)
        expenses = spending([10] * 9 + [500])
        assert projection_engine.calculate_health_score(
            plan, monthly_income(), expenses, [plan],
        ) == 70

    def test_steady_spending_is_not_penalized(self, projection_engine):
        plan = make_plan(10)
        expenses = spending([40] * 12)
        assert projection_engine.calculate_health_score(
            plan, monthly_income(), expenses, [plan],
        ) == 100

    def test_over_allocation(self, projection_engine):
        plan = make_plan(60)
        other = make_plan(40, id="plan-2")
        assert projection_engine.calculate_health_score(
            plan, monthly_income(), [], [plan, other],
        ) == 80

    def test_inactive_plans_do_not_count(self, projection_engine):
        plan = make_plan(10)
        paused = make_plan(90, id="plan-2", active=False)
        assert projection_engine.calculate_health_score(
            plan, monthly_income(), [], [plan, paused],
        ) == 100

    def test_unreachable_goal(self, projection_engine):
        plan = make_plan(10, target_amount=1000, target_date=NOW + timedelta(days=59))
        assert projection_engine.calculate_health_score(plan, monthly_income(), [], [plan]) == 90

    def test_late_goal(self, projection_engine):
        # The last payment (Mar 15) lands after the Mar 1 target date
        plan = make_plan(10, target_amount=400, target_date=NOW + timedelta(days=45))
        assert projection_engine.calculate_health_score(plan, monthly_income(), [], [plan]) == 95

    def test_bounds(self, projection_engine):
        plan = make_plan(100, target_amount=1_000_000, target_date=NOW + timedelta(days=30))
        income = [
            tx.model_copy(update={"in_amount": 10 if i % 2 else 10_000})
            for i, tx in enumerate(monthly_income())
        ]
        expenses = spending([1] * 15 + [5000])
        score = projection_engine.calculate_health_score(plan, income, expenses, [plan])
        assert isinstance(score, int)
        assert score == 0

    def test_internal_error_returns_neutral_score(self, projection_engine):
        plan = make_plan(10)
        assert projection_engine.calculate_health_score(plan, monthly_income(), None, [plan]) == 50


class TestRecommendations:

    def test_behind_schedule_suggests_percentage(self, projection_engine):
        plan = make_plan(20, target_amount=3000, target_date=NOW + timedelta(days=90))

        recommendations = projection_engine.generate_recommendations(
            plan, monthly_income(), [], [plan],
        )

        [rec] = recommendations
        assert rec.type == RecommendationType.INFO
        assert rec.action == RecommendationAction.INCREASE_PERCENTAGE
        assert rec.current_value == 20
        assert rec.suggested_value == 50

    def test_unreachable_goal_suggests_adjusting_goal(self, projection_engine):
        plan = make_plan(20, target_amount=10000, target_date=NOW + timedelta(days=90))

        [rec] = projection_engine.generate_recommendations(plan, monthly_income(), [], [plan])

        assert rec.type == RecommendationType.WARNING
        assert rec.action == RecommendationAction.ADJUST_GOAL
        assert rec.current_value == plan.target_date
        assert rec.suggested_value is None

    def test_low_health_and_high_total(self):
        plan = make_plan(20)
        other = make_plan(70, id="plan-2")

        recommendations = build_recommendations(
            plan, 40, ProjectionResult(), monthly_income(), [], [plan, other], NOW,
        )

        assert [r.type for r in recommendations] == [
            RecommendationType.WARNING,
            RecommendationType.ALERT,
        ]
        assert recommendations[0].suggested_value == 15
        assert recommendations[1].current_value == 90
        assert recommendations[1].suggested_value == 70

    def test_low_health_suggests_at_least_one_percent(self):
        plan = make_plan(1)
        [rec] = build_recommendations(plan, 10, ProjectionResult(), [], [], [plan], NOW)
        assert rec.suggested_value == 1

    def test_category_spending(self):
        plan = make_plan(10, target_category="Dining", cumulative_total_for_plan=100)
        expenses = spending([100, 100, 100], category="Dining") + spending([999], category="Rent")

        [rec] = build_recommendations(
            plan, 70, ProjectionResult(), monthly_income(), expenses, [plan], NOW,
        )

        assert rec.action == RecommendationAction.REDUCE_SPENDING
        assert rec.category == "Dining"
        assert rec.current_value == pytest.approx(70)
        assert rec.suggested_value == pytest.approx(59.5)

    def test_on_track(self):
        plan = make_plan(10, target_amount=1000, target_date=NOW + timedelta(days=365))
        projection = ProjectionResult(goal_achievement_date=NOW + timedelta(days=150))

        [rec] = build_recommendations(plan, 90, projection, monthly_income(), [], [plan], NOW)

        assert rec.type == RecommendationType.SUCCESS
        assert rec.action == RecommendationAction.NONE

    def test_checks_are_independent(self):
        plan = make_plan(20, target_category="Dining")
        other = make_plan(70, id="plan-2")
        expenses = spending([50], category="Dining")

        recommendations = build_recommendations(
            plan, 30, ProjectionResult(), monthly_income(), expenses, [plan, other], NOW,
        )

        assert [r.action for r in recommendations] == [
            RecommendationAction.ADJUST_PERCENTAGE,
            RecommendationAction.REBALANCE,
            RecommendationAction.REDUCE_SPENDING,
        ]

    def test_internal_error_returns_empty_list(self, projection_engine):
        assert projection_engine.generate_recommendations(
            make_plan(), monthly_income(), [], None,
        ) == []


class TestPlanInsightsService:

    async def seed(self, store, registry, percentage=10, **plan_fields):
        plan = await create_plan(registry, percentage, **plan_fields)
        for tx in monthly_income(months=3):
            await add_ledger_entry(store, in_amount=tx.in_amount, date=tx.date)
        return plan

    @pytest.mark.asyncio
    async def test_projections_for_plan(self, store, registry, insights):
        plan = await self.seed(store, registry, target_amount=1000)
        result = await insights.projections_for_plan(USER_ID, plan.id)
        assert result.goal_achievement_date is not None
        assert "5 months" in result.message

    @pytest.mark.asyncio
    async def test_missing_plan(self, insights):
        with pytest.raises(PlanNotFoundError):
            await insights.projections_for_plan(USER_ID, "missing")

    @pytest.mark.asyncio
    async def test_what_if_does_not_persist(self, store, registry, insights):
        plan = await self.seed(store, registry)
        result = await insights.what_if(USER_ID, plan.id, 40)
        assert result.simulated_percentage == 40
        assert (await registry.get(USER_ID, plan.id)).percentage_of_income == 10

    @pytest.mark.asyncio
    async def test_update_all_health_scores(self, store, registry, insights):
        plan = await self.seed(store, registry, 60, name="Big")
        other = await create_plan(registry, 40, name="Other")

        scores = await insights.update_all_health_scores(USER_ID)

        assert scores == {plan.id: 80, other.id: 80}
        assert (await registry.get(USER_ID, plan.id)).health_score == 80

    @pytest.mark.asyncio
    async def test_health_score_for_plan(self, store, registry, insights):
        plan = await self.seed(store, registry)
        assert await insights.health_score_for_plan(USER_ID, plan.id) == 100

    @pytest.mark.asyncio
    async def test_recommendations_for_plan(self, store, registry, insights):
        plan = await self.seed(store, registry, 90)
        recommendations = await insights.recommendations_for_plan(USER_ID, plan.id)
        assert [r.action for r in recommendations] == [RecommendationAction.REBALANCE]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
