"""Parsing of stored ledger documents into records."""

from typing import Sequence, TypeVar

import pydantic

from savings_engine.services.storage import Document, StorageError

Record = TypeVar("Record", bound=pydantic.BaseModel)


def parse_documents(
    model: type[Record],
    documents: Sequence[Document],
    collection: str,
) -> list[Record]:
    """
    Validate every document as `model`.

    A malformed document is a load failure, so it surfaces as StorageError
    like any other read problem.
    """
    try:
        return [model.model_validate(doc) for doc in documents]
    except pydantic.ValidationError as e:
        raise StorageError(f"Malformed document in {collection}: {e}")
