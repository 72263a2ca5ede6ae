"""Store collection layout. Every user's data lives under ``users/{user_id}``."""

PLANS = "plans"
ALLOCATIONS = "planAllocations"
EXPENSES = "expenses"


def user_collection(user_id: str, name: str) -> str:
    if not user_id:
        raise ValueError("User ID is required")
    return f"users/{user_id}/{name}"


def user_document(user_id: str, name: str, document_id: str) -> str:
    if not document_id:
        raise ValueError("Document ID is required")
    return f"{user_collection(user_id, name)}/{document_id}"
