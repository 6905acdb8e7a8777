"""
Abstract storage interface for LedgerBridge.

This module defines the storage abstraction layer used by the connectors and
engines. The local store is the source of truth for mirrored QuickBooks
entities, transaction list rows and their categorization/push-back status;
other tools may read the persisted status columns directly.

Layers:
- Credentials: the single authoritative QuickBooks connection
- Mirror: Customers, Payments, JournalEntries, Accounts keyed by QuickBooks Id
- Transactions: transaction list rows, replaced per report window
- Mapping: category to account map used for push-back
- Aggregates: read-only views feeding the summary and analysis agent
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from ledgerbridge.models.connection import Connection
from ledgerbridge.models.entities import (
    AccountRecord,
    CustomerRecord,
    JournalEntryRecord,
    PaymentRecord,
)
from ledgerbridge.models.enums import SyncStatus
from ledgerbridge.models.transactions import CategoryAccountMapping, TransactionListRow


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


class StorageBackend(ABC):
    """
    Abstract base class for all storage implementations.

    Implementations must make every single-row status write durable on
    return, so that a crash in the middle of a background job leaves
    correctly attributed partial progress.
    """

    # =========================================================================
    # Credentials
    # =========================================================================

    @abstractmethod
    def get_connection(self, realm_id: Optional[str] = None) -> Optional[Connection]:
        """
        Read the QuickBooks connection.

        Args:
            realm_id: Optional company ID; when omitted the most recently
                updated connection is returned

        Returns:
            Connection or None when no connection is stored

        Raises:
            StorageError: If read operation fails
        """
        pass

    @abstractmethod
    def save_connection(self, connection: Connection) -> None:
        """
        Insert or replace the credential pair for ``connection.realm_id``.

        Raises:
            StorageError: If write operation fails
        """
        pass

    @abstractmethod
    def delete_connection(self, realm_id: str) -> bool:
        """Delete a connection. Returns True when a record was removed."""
        pass

    # =========================================================================
    # Mirrored entities
    # =========================================================================

    @abstractmethod
    def upsert_customers(self, records: list[CustomerRecord]) -> int:
        """
        Idempotently upsert customers keyed by QuickBooks Id.

        Re-ingesting an existing Id updates its mutable fields and refreshes
        ``updated_at``; it never creates a duplicate.

        Returns:
            Number of records written

        Raises:
            StorageError: If write operation fails
        """
        pass

    @abstractmethod
    def upsert_payments(self, records: list[PaymentRecord]) -> int:
        """Idempotently upsert payments keyed by QuickBooks Id."""
        pass

    @abstractmethod
    def upsert_journal_entries(self, records: list[JournalEntryRecord]) -> int:
        """Idempotently upsert journal entries keyed by QuickBooks Id."""
        pass

    @abstractmethod
    def upsert_accounts(self, records: list[AccountRecord]) -> int:
        """Idempotently upsert accounts keyed by QuickBooks Id."""
        pass

    @abstractmethod
    def count_entities(self) -> dict[str, int]:
        """
        Count mirrored records.

        Returns:
            Dictionary with keys customers, payments, journal_entries,
            accounts and transaction_list_rows
        """
        pass

    @abstractmethod
    def read_accounts(self, active_only: bool = False) -> list[AccountRecord]:
        """Read mirrored accounts ordered by name."""
        pass

    @abstractmethod
    def read_account(self, qbo_id: str) -> Optional[AccountRecord]:
        """Read a single mirrored account."""
        pass

    # =========================================================================
    # Transaction list rows
    # =========================================================================

    @abstractmethod
    def replace_transaction_window(
        self,
        window_start: date,
        window_end: date,
        rows: list[TransactionListRow],
    ) -> int:
        """
        Replace every row of an exact report window.

        Deletes all rows whose (report_start_date, report_end_date) equals the
        given window and bulk-inserts ``rows`` in the same transaction.

        Returns:
            Number of rows inserted

        Raises:
            StorageError: If the replacement fails (nothing is changed)
        """
        pass

    @abstractmethod
    def count_transaction_rows(
        self,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> int:
        """Count rows, optionally restricted to one exact window."""
        pass

    @abstractmethod
    def read_transaction_rows(self, limit: int = 50, offset: int = 0) -> list[TransactionListRow]:
        """Read rows most-recent-first for listing."""
        pass

    @abstractmethod
    def read_transaction_row(self, row_id: int) -> Optional[TransactionListRow]:
        """Read a single row by local id."""
        pass

    @abstractmethod
    def read_rows_for_categorization(self, limit: int) -> list[TransactionListRow]:
        """
        Select up to ``limit`` rows whose ai_status is not ``categorized``.

        Rows are ordered by transaction date descending, undated rows last.
        """
        pass

    @abstractmethod
    def mark_rows_categorizing(self, row_ids: list[int]) -> None:
        """Set ai_status to ``categorizing`` for the given rows."""
        pass

    @abstractmethod
    def write_categorization(
        self,
        row_id: int,
        category: str,
        confidence: Optional[float] = None,
    ) -> None:
        """Persist a category and set ai_status to ``categorized``."""
        pass

    @abstractmethod
    def read_rows_for_sync(self, limit: int) -> list[TransactionListRow]:
        """
        Select up to ``limit`` categorized rows not yet ``synced``.

        Rows are ordered by transaction date descending, undated rows last.
        """
        pass

    @abstractmethod
    def update_sync_status(
        self,
        row_id: int,
        status: SyncStatus,
        error: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> None:
        """
        Persist a push-back outcome for one row.

        ``error`` is stored as given (callers truncate); a ``synced`` outcome
        clears any previous error. ``class_id`` is only written when provided.
        """
        pass

    @abstractmethod
    def read_sync_failures(self, limit: int = 10) -> list[TransactionListRow]:
        """Read the most recently updated rows with qb_sync_status ``failed``."""
        pass

    # =========================================================================
    # Category to account mapping
    # =========================================================================

    @abstractmethod
    def read_category_mappings(self) -> list[CategoryAccountMapping]:
        pass

    @abstractmethod
    def read_category_mapping(self, category: str) -> Optional[CategoryAccountMapping]:
        """Case-insensitive lookup of a category mapping."""
        pass

    @abstractmethod
    def write_category_mapping(self, mapping: CategoryAccountMapping) -> None:
        """Insert or update the mapping for ``mapping.category``."""
        pass

    # =========================================================================
    # Aggregates
    # =========================================================================

    @abstractmethod
    def read_payment_totals(self) -> dict:
        """Return ``{"count": int, "total": float}`` over all payments."""
        pass

    @abstractmethod
    def read_monthly_payments(self) -> list[dict]:
        """Payment totals per ``YYYY-MM`` month, ascending."""
        pass

    @abstractmethod
    def read_monthly_journal_entries(self) -> list[dict]:
        """Journal entry counts per ``YYYY-MM`` month, ascending."""
        pass

    @abstractmethod
    def read_top_customers(self, limit: int = 10) -> list[dict]:
        """Customers ranked by total payments, descending."""
        pass

    @abstractmethod
    def read_transaction_type_breakdown(self) -> list[dict]:
        """Row count and amount total per transaction type."""
        pass

    @abstractmethod
    def read_category_breakdown(self) -> list[dict]:
        """Row count and amount total per assigned category."""
        pass

    @abstractmethod
    def read_sync_status_breakdown(self) -> dict[str, int]:
        """Row count per push-back status (``none`` for never attempted)."""
        pass

    @abstractmethod
    def read_account_activity(self) -> list[dict]:
        """Row count and amount total per account name with account metadata."""
        pass

    # =========================================================================
    # Maintenance
    # =========================================================================

    @abstractmethod
    def purge_qbo_data(self) -> None:
        """
        Delete all mirrored entities, transaction rows and category mappings.

        The stored connection is kept.
        """
        pass
