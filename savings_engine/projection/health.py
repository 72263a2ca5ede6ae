"""
Plan Health Scoring

A plan starts at 100 and loses points for four risk factors:

    income consistency     up to 40
    spending volatility    up to 30
    over-allocation        up to 20
    goal timeline realism  up to 10

Each factor is a pure function returning its penalty. The total is clamped
to [0, 100] and rounded by score_from_penalties.
"""

from collections import defaultdict
from datetime import datetime
from typing import Optional, Sequence

from savings_engine.models.plan import IncomeTransaction, LedgerEntry, Plan
from savings_engine.models.projection import ProjectionResult
from savings_engine.projection.forecasting import days_between, mean_and_stddev

MAX_SCORE = 100

INCOME_SAMPLE_SIZE = 6
MIN_INCOME_EVENTS = 3
INSUFFICIENT_INCOME_PENALTY = 10.0

MIN_EXPENSE_RECORDS = 10
SPENDING_WINDOW_DAYS = 30

COMFORTABLE_ALLOCATION = 50.0


def income_consistency_penalty(income: Sequence[IncomeTransaction]) -> float:
    """
    Penalize income whose amounts vary by more than 30% (CV).

    Uses the six most recent events; fewer than three costs a flat 10.
    """
    if len(income) < MIN_INCOME_EVENTS:
        return INSUFFICIENT_INCOME_PENALTY

    recent = sorted(income, key=lambda tx: tx.date, reverse=True)[:INCOME_SAMPLE_SIZE]
    mean, stddev = mean_and_stddev([tx.in_amount for tx in recent])
    variation = stddev / mean
    if variation > 0.3:
        return min(40.0, (variation - 0.3) * 100)
    return 0.0


def spending_volatility_penalty(expenses: Sequence[LedgerEntry], now: datetime) -> float:
    """
    Penalize erratic day-to-day spending over the last 30 days.

    Needs at least ten ledger records overall before it judges anything.
    """
    if len(expenses) < MIN_EXPENSE_RECORDS:
        return 0.0

    daily: dict = defaultdict(float)
    for entry in expenses:
        if entry.is_outbound and days_between(entry.date, now) <= SPENDING_WINDOW_DAYS:
            daily[entry.date.date()] += entry.out_amount
    if not daily:
        return 0.0

    mean, stddev = mean_and_stddev(list(daily.values()))
    if stddev > mean * 0.5:
        return min(30.0, (stddev / mean - 0.5) * 50)
    return 0.0


def over_allocation_penalty(all_plans: Sequence[Plan]) -> float:
    """Penalize routing more than half of income into active plans."""
    total = sum(plan.percentage_of_income for plan in all_plans if plan.active)
    if total > COMFORTABLE_ALLOCATION:
        return min(20.0, (total - COMFORTABLE_ALLOCATION) * 0.4)
    return 0.0


def goal_realism_penalty(plan: Plan, projection: Optional[ProjectionResult]) -> float:
    """
    Penalize goals the projection can't reach (10) or reaches late (5).

    Only plans with both a target amount and a target date are judged.
    """
    if not (plan.target_amount and plan.target_date):
        return 0.0
    if projection is None or projection.goal_achievement_date is None:
        return 10.0
    if projection.goal_achievement_date > plan.target_date:
        return 5.0
    return 0.0


def score_from_penalties(*penalties: float) -> int:
    score = MAX_SCORE - sum(penalties)
    return max(0, min(MAX_SCORE, round(score)))
