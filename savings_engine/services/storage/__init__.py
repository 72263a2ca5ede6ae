"""
Storage Services Package

Provides the abstract document store interface and concrete backends.
The engine only ever sees the interface; memory and Google Sheets are
interchangeable behind it.
"""

from savings_engine.services.storage.interface import (
    SERVER_TIMESTAMP,
    ConnectionError,
    Document,
    DuplicateError,
    Filter,
    NotFoundError,
    OrderBy,
    StorageError,
    Store,
    Subscription,
)
from savings_engine.services.storage.memory import InMemoryStore
from savings_engine.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsStore,
)

__all__ = [
    # Interface
    "Document",
    "Filter",
    "OrderBy",
    "SERVER_TIMESTAMP",
    "Store",
    "Subscription",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsStore",
    "InMemoryStore",
]
