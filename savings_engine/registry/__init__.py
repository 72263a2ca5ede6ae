"""Plan registry package."""

from savings_engine.registry.plan_registry import PlanNotFoundError, PlanRegistry

__all__ = ["PlanNotFoundError", "PlanRegistry"]
