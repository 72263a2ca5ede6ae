"""Allocation engine package."""

from savings_engine.allocation.engine import AllocationEngine, allocated_amount

__all__ = ["AllocationEngine", "allocated_amount"]
