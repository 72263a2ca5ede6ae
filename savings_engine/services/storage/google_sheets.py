"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets can back the engine because:
1. Users can see their plans and allocation ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (each allocation row is appended independently, which
  is all the idempotent allocation engine needs)
- Limited query capabilities (we filter in Python)
- No change feed, so subscriptions poll

Each leaf collection name ("plans", "planAllocations", "expenses") gets
one worksheet. A row holds the document id, its full collection path and
the JSON-encoded document body.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from savings_engine.config import get_settings
from savings_engine.services.clock import Clock, SystemClock
from savings_engine.services.storage.interface import (
    ConnectionError,
    Document,
    Filter,
    NotFoundError,
    OrderBy,
    SnapshotCallback,
    StorageError,
    Store,
    Subscription,
    apply_query,
    resolve_server_timestamps,
    split_path,
)

logger = structlog.get_logger(__name__)

DOCUMENT_COLUMNS = [
    "id",
    "collection",
    "document_json",
]

DATE_TAG = "$date"


def encode_document(document: Document) -> str:
    """JSON-encode a document body, tagging datetimes."""
    def default(value: Any) -> Any:
        if isinstance(value, datetime):
            return {DATE_TAG: value.isoformat()}
        raise TypeError(f"Cannot store value of type {type(value).__name__}")

    body = {key: value for key, value in document.items() if key != "id"}
    return json.dumps(body, default=default, sort_keys=True)


def decode_document(document_id: str, raw: str) -> Document:
    """Inverse of encode_document."""
    def object_hook(obj: dict) -> Any:
        if set(obj) == {DATE_TAG}:
            return datetime.fromisoformat(obj[DATE_TAG])
        return obj

    document = json.loads(raw, object_hook=object_hook) if raw else {}
    document["id"] = document_id
    return document


def worksheet_title(collection: str) -> str:
    """Worksheet holding a collection: its leaf name."""
    return collection.strip("/").rsplit("/", 1)[-1]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str) -> gspread.Worksheet:
        """Get or create the worksheet for a collection."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(DOCUMENT_COLUMNS),
            )
            sheet.append_row(DOCUMENT_COLUMNS)
        return sheet

    @property
    def poll_interval(self) -> float:
        return self._settings.poll_interval_seconds


class GoogleSheetsStore(Store):
    """
    Google Sheets implementation of the document store.

    Subscriptions poll the worksheet and only call back when the matching
    snapshot changed. They need a running event loop.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        clock: Optional[Clock] = None,
        poll_interval: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval or self._client.poll_interval

    def _rows(self, collection: str) -> tuple[gspread.Worksheet, list[list[str]]]:
        sheet = self._client.get_worksheet(worksheet_title(collection))
        return sheet, sheet.get_all_values()

    def _find_row(
        self,
        rows: list[list[str]],
        collection: str,
        document_id: str,
    ) -> Optional[int]:
        """1-based sheet row index of a document (row 1 is the header)."""
        for idx, row in enumerate(rows[1:], start=2):
            if len(row) >= 2 and row[0] == document_id and row[1] == collection:
                return idx
        return None

    async def get(self, path: str) -> Optional[Document]:
        collection, document_id = split_path(path)
        try:
            _, rows = self._rows(collection)
            idx = self._find_row(rows, collection, document_id)
            if idx is None:
                return None
            row = rows[idx - 1]
            return decode_document(document_id, row[2] if len(row) > 2 else "")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get document {path}: {e}")

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> list[Document]:
        collection = collection.strip("/")
        try:
            _, rows = self._rows(collection)
            documents = []
            for row in rows[1:]:
                if len(row) < 2 or not row[0] or row[1] != collection:
                    continue
                try:
                    documents.append(decode_document(row[0], row[2] if len(row) > 2 else ""))
                except ValueError:
                    logger.warning("malformed_document_row", collection=collection, id=row[0])
                    continue
            return apply_query(documents, filters, order_by)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {collection}: {e}")

    async def add(self, collection: str, fields: Document) -> str:
        # Not retried: a lost response after a successful append would
        # write the document twice.
        collection = collection.strip("/")
        document_id = uuid4().hex
        try:
            sheet = self._client.get_worksheet(worksheet_title(collection))
            document = resolve_server_timestamps(fields, self._clock.now())
            sheet.append_row(
                [document_id, collection, encode_document(document)],
                value_input_option="RAW",
            )
            return document_id
        except Exception as e:
            raise StorageError(f"Failed to add document to {collection}: {e}")

    @retry(
        retry=retry_if_not_exception_type(NotFoundError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update(self, path: str, fields: Document) -> None:
        collection, document_id = split_path(path)
        try:
            sheet, rows = self._rows(collection)
            idx = self._find_row(rows, collection, document_id)
            if idx is None:
                raise NotFoundError(f"Document not found: {path}")
            row = rows[idx - 1]
            document = decode_document(document_id, row[2] if len(row) > 2 else "")
            document.update(resolve_server_timestamps(fields, self._clock.now()))
            sheet.update_cell(idx, 3, encode_document(document))
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update document {path}: {e}")

    async def batch_delete(self, paths: Sequence[str]) -> None:
        by_collection: dict[str, set[str]] = {}
        for path in paths:
            collection, document_id = split_path(path)
            by_collection.setdefault(collection, set()).add(document_id)

        try:
            for collection, document_ids in by_collection.items():
                sheet, rows = self._rows(collection)
                indices = [
                    idx
                    for idx, row in enumerate(rows[1:], start=2)
                    if len(row) >= 2 and row[1] == collection and row[0] in document_ids
                ]
                # Bottom-up so earlier deletions don't shift later rows
                for idx in sorted(indices, reverse=True):
                    sheet.delete_rows(idx)
        except Exception as e:
            raise StorageError(f"Failed to delete documents: {e}")

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter],
        order_by: Sequence[OrderBy],
        callback: SnapshotCallback,
    ) -> Subscription:
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._poll(collection, tuple(filters), tuple(order_by), callback)
        )
        return Subscription(task.cancel)

    async def _poll(
        self,
        collection: str,
        filters: tuple[Filter, ...],
        order_by: tuple[OrderBy, ...],
        callback: SnapshotCallback,
    ) -> None:
        last_snapshot: Optional[list[Document]] = None
        while True:
            try:
                snapshot = await self.query(collection, filters, order_by)
                if snapshot != last_snapshot:
                    last_snapshot = snapshot
                    callback(snapshot)
            except StorageError as e:
                logger.error("subscription_poll_failed", collection=collection, error=str(e))
            except Exception as e:
                logger.error("subscription_callback_failed", collection=collection, error=str(e))
            await asyncio.sleep(self._poll_interval)
