"""
Local storage layer.

The DuckDB store holds the QuickBooks mirror (Customers, Payments,
JournalEntries, Accounts), transaction list rows with their categorization
and push-back status, the category to account map and the OAuth2
connection. It is the source of truth for every persisted status.
"""

from functools import lru_cache

from ledgerbridge.config import get_settings

from .base import StorageBackend, StorageError
from .duckdb_storage import DuckDBStorage


@lru_cache
def get_storage() -> StorageBackend:
    """
    Get cached storage backend instance (singleton).

    Returns:
        StorageBackend implementation instance
    """
    settings = get_settings()
    return DuckDBStorage(db_path=settings.db_path)


__all__ = [
    "StorageBackend",
    "StorageError",
    "DuckDBStorage",
    "get_storage",
]
