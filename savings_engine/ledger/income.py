"""
Income Transaction Reader

Read-only view over the shared expense ledger. An income transaction is
any ledger entry with a positive inbound amount. This engine never writes
to the expense ledger.
"""

from savings_engine.layout import EXPENSES, user_collection
from savings_engine.ledger.documents import parse_documents
from savings_engine.models.plan import IncomeTransaction, LedgerEntry
from savings_engine.services.storage import Filter, OrderBy, Store

NEWEST_FIRST = (OrderBy("date", descending=True),)


class IncomeTransactionReader:
    """Reads income (and, for spending analysis, all ledger entries)."""

    def __init__(self, store: Store):
        self._store = store

    async def list_income(self, user_id: str) -> list[IncomeTransaction]:
        """
        Income events, newest first. Same-day ties keep store order.

        Raises:
            StorageError: If the ledger can't be read or holds a malformed entry
        """
        collection = user_collection(user_id, EXPENSES)
        documents = await self._store.query(
            collection,
            filters=(Filter("inAmount", ">", 0),),
            order_by=NEWEST_FIRST,
        )
        return parse_documents(IncomeTransaction, documents, collection)

    async def list_expenses(self, user_id: str) -> list[LedgerEntry]:
        """
        Every ledger entry, newest first.

        Raises:
            StorageError: If the ledger can't be read or holds a malformed entry
        """
        collection = user_collection(user_id, EXPENSES)
        documents = await self._store.query(collection, order_by=NEWEST_FIRST)
        return parse_documents(LedgerEntry, documents, collection)
