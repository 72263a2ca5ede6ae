"""Income reader and allocation ledger."""

from savings_engine.ledger.allocations import (
    AllocationLedger,
    DuplicateAllocationError,
    cumulative_total,
)
from savings_engine.ledger.income import IncomeTransactionReader

__all__ = [
    "AllocationLedger",
    "DuplicateAllocationError",
    "IncomeTransactionReader",
    "cumulative_total",
]
