"""
Plan Recommendations

Five independent checks, always evaluated in the same order. Any number
of them may fire for one plan; none suppresses another.

    1. low health          -> cut the percentage by a quarter
    2. total over 80%      -> rebalance towards 70%
    3. behind schedule     -> raise the percentage, or relax the goal
    4. category spending   -> trim spending in the plan's category by 15%
    5. healthy and on time -> positive reinforcement
"""

import math
from datetime import datetime
from typing import Optional, Sequence

from savings_engine.models.plan import IncomeTransaction, LedgerEntry, Plan
from savings_engine.models.projection import (
    ProjectionResult,
    Recommendation,
    RecommendationAction,
    RecommendationType,
)
from savings_engine.projection.forecasting import (
    days_between,
    detect_income_frequency,
    moving_average,
)

LOW_HEALTH_THRESHOLD = 50
HEALTHY_THRESHOLD = 80
HIGH_TOTAL_ALLOCATION = 80.0
SUGGESTED_TOTAL_ALLOCATION = 70.0
SPENDING_WINDOW_DAYS = 30
SPENDING_TO_SAVINGS_RATIO = 0.05
SPENDING_CUT = 0.85


def _format_date(value: datetime) -> str:
    return value.strftime("%b %d, %Y")


def low_health(plan: Plan, health_score: int) -> Optional[Recommendation]:
    if health_score >= LOW_HEALTH_THRESHOLD:
        return None
    return Recommendation(
        type=RecommendationType.WARNING,
        title="Plan Health Needs Attention",
        message=(
            f'Your "{plan.plan_name}" plan health is {health_score}/100. '
            "Consider reducing your allocation percentage to improve stability."
        ),
        action=RecommendationAction.ADJUST_PERCENTAGE,
        current_value=plan.percentage_of_income,
        suggested_value=max(1, math.floor(plan.percentage_of_income * 0.75)),
    )


def high_total_allocation(all_plans: Sequence[Plan]) -> Optional[Recommendation]:
    total = sum(p.percentage_of_income for p in all_plans if p.active)
    if total <= HIGH_TOTAL_ALLOCATION:
        return None
    return Recommendation(
        type=RecommendationType.ALERT,
        title="High Total Allocation",
        message=(
            f"You're allocating {total:.0f}% of income across all plans. "
            "This may strain your budget for day-to-day expenses."
        ),
        action=RecommendationAction.REBALANCE,
        current_value=total,
        suggested_value=SUGGESTED_TOTAL_ALLOCATION,
    )


def behind_schedule(
    plan: Plan,
    projection: ProjectionResult,
    income: Sequence[IncomeTransaction],
    now: datetime,
    periods: int = 3,
) -> Optional[Recommendation]:
    """
    Work out the percentage that would hit the target date.

    Only for plans with a target amount and a future target date whose
    projected achievement is missing or late.
    """
    if not (plan.target_amount and plan.target_date):
        return None
    days_left = round(days_between(now, plan.target_date))
    if days_left <= 0:
        return None
    achieved_at = projection.goal_achievement_date
    if achieved_at is not None and achieved_at <= plan.target_date:
        return None

    remaining = plan.target_amount - plan.cumulative_total_for_plan
    average_income = moving_average(income, periods)
    gap = max(1, detect_income_frequency(income).average_days_between)
    events_left = math.ceil(days_left / gap)

    needed = None
    if average_income > 0:
        needed = math.ceil(remaining / events_left / average_income * 100)

    if needed is not None and needed <= 100:
        return Recommendation(
            type=RecommendationType.INFO,
            title="Increase Allocation to Meet Goal",
            message=(
                f"To reach your ${plan.target_amount:.0f} goal by "
                f"{_format_date(plan.target_date)}, increase allocation to {needed}%."
            ),
            action=RecommendationAction.INCREASE_PERCENTAGE,
            current_value=plan.percentage_of_income,
            suggested_value=needed,
        )
    return Recommendation(
        type=RecommendationType.WARNING,
        title="Goal Timeline Too Aggressive",
        message=(
            "Your goal timeline is too ambitious with current income. "
            "Consider extending your target date or reducing your target amount."
        ),
        action=RecommendationAction.ADJUST_GOAL,
        current_value=plan.target_date,
    )


def category_spending(
    plan: Plan,
    expenses: Sequence[LedgerEntry],
    now: datetime,
) -> Optional[Recommendation]:
    """Flag weekly spending in the plan's category above 5% of its savings."""
    if not plan.target_category:
        return None
    recent = [
        entry for entry in expenses
        if entry.is_outbound
        and entry.category == plan.target_category
        and days_between(entry.date, now) <= SPENDING_WINDOW_DAYS
    ]
    if not recent:
        return None

    weekly = sum(entry.out_amount for entry in recent) / SPENDING_WINDOW_DAYS * 7
    if weekly <= plan.cumulative_total_for_plan * SPENDING_TO_SAVINGS_RATIO:
        return None
    return Recommendation(
        type=RecommendationType.WARNING,
        title=f"{plan.target_category} Spending Is High",
        message=(
            f"Your {plan.target_category} spending (${weekly:.0f}/week) is impacting "
            "your savings. Reduce by 10-15% to reach your goal faster."
        ),
        action=RecommendationAction.REDUCE_SPENDING,
        current_value=weekly,
        suggested_value=weekly * SPENDING_CUT,
        category=plan.target_category,
    )


def on_track(
    plan: Plan,
    health_score: int,
    projection: ProjectionResult,
) -> Optional[Recommendation]:
    achieved_at = projection.goal_achievement_date
    if health_score < HEALTHY_THRESHOLD or achieved_at is None or plan.target_date is None:
        return None
    if achieved_at > plan.target_date:
        return None
    return Recommendation(
        type=RecommendationType.SUCCESS,
        title="On Track to Meet Goal!",
        message=(
            f"Great work! You're on pace to reach your ${plan.target_amount:.0f} goal "
            f"by {_format_date(achieved_at)}. Keep up the consistency!"
        ),
    )


def build_recommendations(
    plan: Plan,
    health_score: int,
    projection: ProjectionResult,
    income: Sequence[IncomeTransaction],
    expenses: Sequence[LedgerEntry],
    all_plans: Sequence[Plan],
    now: datetime,
    periods: int = 3,
) -> list[Recommendation]:
    """Run every check and keep the ones that fired, in check order."""
    candidates = [
        low_health(plan, health_score),
        high_total_allocation(all_plans),
        behind_schedule(plan, projection, income, now, periods),
        category_spending(plan, expenses, now),
        on_track(plan, health_score, projection),
    ]
    return [rec for rec in candidates if rec is not None]
