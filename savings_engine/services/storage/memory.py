"""
In-Memory Document Store

Dict-backed implementation of the Store interface. Used by the test
suite and by embedders that don't need persistence.

Documents keep insertion order inside a collection, so query ties break
by insertion order, as the interface promises. Subscribers receive a full
snapshot immediately and after every write that touches their collection.
"""

import copy
from typing import Optional, Sequence
from uuid import uuid4

import structlog

from savings_engine.services.clock import Clock, SystemClock
from savings_engine.services.storage.interface import (
    Document,
    Filter,
    NotFoundError,
    OrderBy,
    SnapshotCallback,
    Store,
    Subscription,
    apply_query,
    resolve_server_timestamps,
    split_path,
)

logger = structlog.get_logger(__name__)


class _Listener:
    def __init__(self, collection, filters, order_by, callback):
        self.collection = collection
        self.filters = tuple(filters)
        self.order_by = tuple(order_by)
        self.callback = callback


class InMemoryStore(Store):
    """Store kept entirely in process memory."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._collections: dict[str, dict[str, Document]] = {}
        self._listeners: dict[str, _Listener] = {}

    def _snapshot(self, listener: _Listener) -> list[Document]:
        documents = self._collections.get(listener.collection, {}).values()
        return apply_query(list(documents), listener.filters, listener.order_by)

    def _deliver(self, listener: _Listener) -> None:
        try:
            listener.callback(self._snapshot(listener))
        except Exception as e:
            # A broken consumer must not fail the writer
            logger.error(
                "subscription_callback_failed",
                collection=listener.collection,
                error=str(e),
            )

    def _notify(self, collection: str) -> None:
        for listener in list(self._listeners.values()):
            if listener.collection == collection:
                self._deliver(listener)

    async def get(self, path: str) -> Optional[Document]:
        collection, document_id = split_path(path)
        document = self._collections.get(collection, {}).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> list[Document]:
        documents = self._collections.get(collection.strip("/"), {}).values()
        return apply_query(list(documents), filters, order_by)

    async def add(self, collection: str, fields: Document) -> str:
        collection = collection.strip("/")
        document_id = uuid4().hex
        document = copy.deepcopy(resolve_server_timestamps(fields, self._clock.now()))
        document["id"] = document_id
        self._collections.setdefault(collection, {})[document_id] = document
        self._notify(collection)
        return document_id

    async def update(self, path: str, fields: Document) -> None:
        collection, document_id = split_path(path)
        document = self._collections.get(collection, {}).get(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {path}")
        changes = copy.deepcopy(resolve_server_timestamps(fields, self._clock.now()))
        changes.pop("id", None)
        document.update(changes)
        self._notify(collection)

    async def batch_delete(self, paths: Sequence[str]) -> None:
        touched = set()
        for path in paths:
            collection, document_id = split_path(path)
            if self._collections.get(collection, {}).pop(document_id, None) is not None:
                touched.add(collection)
        for collection in touched:
            self._notify(collection)

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter],
        order_by: Sequence[OrderBy],
        callback: SnapshotCallback,
    ) -> Subscription:
        key = uuid4().hex
        listener = _Listener(collection.strip("/"), filters, order_by, callback)
        self._listeners[key] = listener
        self._deliver(listener)
        return Subscription(lambda: self._listeners.pop(key, None))

    @property
    def listener_count(self) -> int:
        """Number of live subscriptions (leak detection in tests)."""
        return len(self._listeners)
