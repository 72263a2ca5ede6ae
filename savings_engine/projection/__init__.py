"""Forecasting, health scoring and recommendations."""

from savings_engine.projection.engine import ProjectionEngine
from savings_engine.projection.forecasting import (
    add_months,
    detect_income_frequency,
    moving_average,
    next_income_date,
)
from savings_engine.projection.insights import PlanInsightsService

__all__ = [
    "PlanInsightsService",
    "ProjectionEngine",
    "add_months",
    "detect_income_frequency",
    "moving_average",
    "next_income_date",
]
