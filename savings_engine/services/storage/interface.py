"""
Abstract Document Store Interface

DESIGN DECISION: The engine talks to an abstract document store.
This allows us to:
1. Back the engine with Google Sheets, a hosted document DB, or memory
2. Use in-memory storage for testing
3. Keep allocation and forecasting logic decoupled from any backend

The interface mirrors what a hosted document database offers:
path-addressed documents grouped in collections, filtered and ordered
queries, and change subscriptions that deliver full snapshots.

Paths look like ``users/{user_id}/plans/{plan_id}``; the collection of that
document is ``users/{user_id}/plans``.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]


class _ServerTimestamp:
    """Sentinel replaced by the store's clock time when written."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo) -> "_ServerTimestamp":
        return self

    def __reduce__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Filter:
    """A single field condition, e.g. ``Filter("inAmount", ">", 0)``."""

    field: str
    op: str
    value: Any

    OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")

    def __post_init__(self):
        if self.op not in self.OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Document) -> bool:
        if self.field not in document:
            return False
        actual = document[self.field]
        try:
            if self.op == "==":
                return actual == self.value
            if self.op == "!=":
                return actual != self.value
            if self.op == "in":
                return actual in self.value
            if actual is None:
                return False
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            return actual >= self.value
        except TypeError:
            return False


@dataclass(frozen=True)
class OrderBy:
    """Ordering on one field. Ties keep insertion order."""

    field: str
    descending: bool = False


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection, document_id)."""
    collection, _, document_id = path.strip("/").rpartition("/")
    if not collection or not document_id:
        raise ValueError(f"Not a document path: {path!r}")
    return collection, document_id


def resolve_server_timestamps(fields: Document, now: datetime) -> Document:
    """Replace SERVER_TIMESTAMP sentinels with the store's current time."""
    return {
        key: now if value is SERVER_TIMESTAMP else value
        for key, value in fields.items()
    }


def apply_query(
    documents: Sequence[Document],
    filters: Sequence[Filter] = (),
    order_by: Sequence[OrderBy] = (),
) -> list[Document]:
    """
    Filter and order documents in Python.

    Documents missing an ordering field sort last. Sorting is stable, so
    documents that tie on every ordering field keep insertion order.
    """
    results = [
        copy.deepcopy(doc)
        for doc in documents
        if all(f.matches(doc) for f in filters)
    ]
    for order in reversed(order_by):
        present = [doc for doc in results if doc.get(order.field) is not None]
        missing = [doc for doc in results if doc.get(order.field) is None]
        present.sort(key=lambda doc: doc[order.field], reverse=order.descending)
        results = present + missing
    return results


class Subscription:
    """
    Handle for a live subscription.

    The store keeps delivering snapshots until ``unsubscribe()`` is called.
    A handle that is dropped without unsubscribing leaks its listener.
    """

    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        """Stop receiving updates. Safe to call more than once."""
        if self._cancel is not None:
            cancel, self._cancel = self._cancel, None
            cancel()

    def __call__(self) -> None:
        self.unsubscribe()


class Store(ABC):
    """
    Abstract interface for document storage operations.

    Any backend (Google Sheets, a hosted document DB, memory) must
    implement these methods. Returned documents always carry their
    identifier under the ``id`` key.
    """

    @abstractmethod
    async def get(self, path: str) -> Optional[Document]:
        """
        Retrieve one document.

        Returns:
            The document, or None if it doesn't exist

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> list[Document]:
        """
        List the documents of a collection matching every filter.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def add(self, collection: str, fields: Document) -> str:
        """
        Create a document with a store-assigned identifier.

        SERVER_TIMESTAMP values are replaced by the store's time.

        Returns:
            The new document's identifier
        """
        pass

    @abstractmethod
    async def update(self, path: str, fields: Document) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFoundError: If the document doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def batch_delete(self, paths: Sequence[str]) -> None:
        """Delete several documents. Missing documents are ignored."""
        pass

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter],
        order_by: Sequence[OrderBy],
        callback: SnapshotCallback,
    ) -> Subscription:
        """
        Deliver the full matching snapshot now and after every change.

        Returns:
            A handle the caller must unsubscribe
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
