"""API routers for all endpoints."""

from ledgerbridge.routers import (
    accounts,
    analysis,
    auth,
    category_mapping,
    connection,
    ingestion,
    transactions,
)

__all__ = [
    "auth",
    "connection",
    "ingestion",
    "transactions",
    "category_mapping",
    "accounts",
    "analysis",
]
