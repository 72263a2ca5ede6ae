"""
Forecasting Models

Outputs of the projection engine. None of these are persisted: they are
recomputed on demand from plans, income and the allocation ledger.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class IncomeFrequency(str, Enum):
    """Detected cadence of income events."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    IRREGULAR = "irregular"


class IncomePattern(BaseModel):
    """Cadence plus the rounded mean gap between income events (days)."""

    frequency: IncomeFrequency = IncomeFrequency.IRREGULAR
    average_days_between: int = Field(default=30, ge=0)


class ProjectionPoint(BaseModel):
    """One projected future income event."""

    date: datetime
    projected_income: float
    projected_allocation: float
    cumulative_total: float


class ProjectionResult(BaseModel):
    """Forward simulation of a plan's accumulation."""

    projections: list[ProjectionPoint] = Field(default_factory=list)
    goal_achievement_date: Optional[datetime] = None
    message: str = ""
    income_pattern: Optional[IncomePattern] = None
    moving_average: float = 0.0

    @property
    def final_total(self) -> Optional[float]:
        if not self.projections:
            return None
        return self.projections[-1].cumulative_total


class WhatIfResult(ProjectionResult):
    """A projection under a hypothetical percentage. Never persisted."""

    simulated_percentage: float


class RecommendationType(str, Enum):
    WARNING = "warning"
    ALERT = "alert"
    INFO = "info"
    SUCCESS = "success"


class RecommendationAction(str, Enum):
    """What the client should offer the user for a recommendation."""
    ADJUST_PERCENTAGE = "adjust_percentage"
    REBALANCE = "rebalance"
    INCREASE_PERCENTAGE = "increase_percentage"
    ADJUST_GOAL = "adjust_goal"
    REDUCE_SPENDING = "reduce_spending"
    NONE = "none"


class Recommendation(BaseModel):
    """A single piece of advice for a plan."""

    type: RecommendationType
    title: str
    message: str
    action: RecommendationAction = RecommendationAction.NONE
    current_value: Optional[Union[float, datetime]] = None
    suggested_value: Optional[float] = None
    category: Optional[str] = None
