"""Services package: the store and clock collaborators."""

from savings_engine.services.clock import Clock, FixedClock, SystemClock
from savings_engine.services.storage import (
    SERVER_TIMESTAMP,
    ConnectionError,
    DuplicateError,
    Filter,
    GoogleSheetsClient,
    GoogleSheetsStore,
    InMemoryStore,
    NotFoundError,
    OrderBy,
    StorageError,
    Store,
    Subscription,
)

__all__ = [
    # Clock
    "Clock",
    "FixedClock",
    "SystemClock",
    # Storage
    "ConnectionError",
    "DuplicateError",
    "Filter",
    "GoogleSheetsClient",
    "GoogleSheetsStore",
    "InMemoryStore",
    "NotFoundError",
    "OrderBy",
    "SERVER_TIMESTAMP",
    "StorageError",
    "Store",
    "Subscription",
]
