"""
Ingestion service orchestrating the pull from QuickBooks into DuckDB.

This module coordinates the complete ingestion workflow:
1. Fetch and upsert Customers, Payments, JournalEntries and Accounts
2. Split the configured date range into calendar-month report windows
3. For each window: fetch the TransactionList report, parse it and replace
   the stored rows of that exact window

Any failure aborts the run: entity upserts already written stay written, a
failing window leaves every later window unattempted, and totals are only
reported on full success.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import structlog

from ledgerbridge.connectors.qbo_client import QBOAPIError, QBOAuthError, QBOClient
from ledgerbridge.connectors.report_parser import parse_report
from ledgerbridge.config import Settings, get_settings
from ledgerbridge.models.entities import (
    AccountRecord,
    CustomerRecord,
    JournalEntryRecord,
    PaymentRecord,
)
from ledgerbridge.models.jobs import IngestionResult
from ledgerbridge.storage.base import StorageBackend, StorageError

logger = structlog.get_logger(__name__)


# Column hint for the extended TransactionList request.
REPORT_COLUMNS = "tx_date,txn_type,doc_num,name,account_name,subt_nat_amount,klass_name"


class IngestionError(Exception):
    """Raised when an ingestion run fails for a non-connectivity reason."""

    pass


def _add_months(day: date, months: int) -> date:
    """First day of the month ``months`` after ``day``'s month."""
    month_index = day.month - 1 + months
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


def chunk_months(start: date, end: date, months: int = 6) -> list[tuple[date, date]]:
    """
    Split ``[start, end]`` into calendar-month windows.

    Each window starts at the cursor and ends on the last day of the
    ``months``-th calendar month counted from the cursor's month, clamped
    to ``end``. The next window starts on the first day of the following
    month, so only the first window may start mid-month.

    Example: 2023-01-15..2023-08-10 in 6-month windows gives
    2023-01-15..2023-06-30 and 2023-07-01..2023-08-10.
    """
    if months < 1:
        raise ValueError("months must be at least 1")

    windows: list[tuple[date, date]] = []
    cursor = start

    while cursor <= end:
        window_end = _add_months(cursor, months) - timedelta(days=1)
        if window_end > end:
            window_end = end
        windows.append((cursor, window_end))
        cursor = _add_months(window_end, 1)

    return windows


def _date_range_clause(field: str, start: str, end: str) -> str:
    return f"{field} >= '{start}' AND {field} <= '{end}'"


class IngestionService:
    """
    Orchestrates ingestion from QuickBooks Online into the local store.

    Attributes:
        qbo_client: QuickBooks Online API client
        storage: Storage backend for persistence
        settings: Application settings
    """

    def __init__(
        self,
        qbo_client: QBOClient,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize ingestion service.

        Args:
            qbo_client: QBO client bound to the stored connection
            storage: Storage backend for persistence
            settings: Settings instance (defaults to cached settings)
        """
        self.qbo_client = qbo_client
        self.storage = storage
        self.settings = settings or get_settings()

    async def ingest_all(self) -> IngestionResult:
        """
        Run a full ingestion.

        Returns:
            IngestionResult with local totals per entity type and row count

        Raises:
            QBOAuthError: If there is no usable connection
            QBOAPIError: If any entity page or report request fails
            IngestionError: If the local store rejects a write
        """
        started_at = datetime.utcnow()
        start_str = self.settings.data_start_date
        end_str = self.settings.data_end_date

        try:
            window_start = date.fromisoformat(start_str)
            window_end = date.fromisoformat(end_str)
        except ValueError as e:
            raise IngestionError(f"Invalid ingestion date range: {e}") from e

        # Fail fast without a connection, before any request is made.
        connection = await self.qbo_client.get_valid_connection()

        logger.info(
            "ingestion_started",
            realm_id=connection.realm_id,
            data_start_date=start_str,
            data_end_date=end_str,
        )

        try:
            customers = await self.qbo_client.fetch_all(
                "Customer",
                _date_range_clause("MetaData.LastUpdatedTime", start_str, end_str),
            )
            self.storage.upsert_customers([CustomerRecord.from_qbo(c) for c in customers if c.get("Id")])

            payments = await self.qbo_client.fetch_all(
                "Payment", _date_range_clause("TxnDate", start_str, end_str)
            )
            self.storage.upsert_payments([PaymentRecord.from_qbo(p) for p in payments if p.get("Id")])

            journal_entries = await self.qbo_client.fetch_all(
                "JournalEntry", _date_range_clause("TxnDate", start_str, end_str)
            )
            self.storage.upsert_journal_entries(
                [JournalEntryRecord.from_qbo(j) for j in journal_entries if j.get("Id")]
            )

            # Accounts are reference data; no date filter.
            accounts = await self.qbo_client.fetch_all("Account")
            self.storage.upsert_accounts([AccountRecord.from_qbo(a) for a in accounts if a.get("Id")])

            windows = chunk_months(window_start, window_end, self.settings.report_chunk_months)
            for chunk_start, chunk_end in windows:
                await self.ingest_window(chunk_start, chunk_end)

            counts = self.storage.count_entities()

        except (QBOAuthError, QBOAPIError) as e:
            logger.error("ingestion_failed", error=str(e), error_type=type(e).__name__)
            raise

        except StorageError as e:
            logger.error("ingestion_failed", error=str(e), error_type=type(e).__name__)
            raise IngestionError(f"Failed to store ingested data: {e}") from e

        result = IngestionResult(
            customers=counts["customers"],
            payments=counts["payments"],
            journal_entries=counts["journal_entries"],
            accounts=counts["accounts"],
            transaction_list_rows=counts["transaction_list_rows"],
            started_at=started_at,
            completed_at=datetime.utcnow(),
            windows=[(s.isoformat(), e.isoformat()) for s, e in windows],
        )

        logger.info(
            "ingestion_complete",
            customers=result.customers,
            payments=result.payments,
            journal_entries=result.journal_entries,
            accounts=result.accounts,
            transaction_list_rows=result.transaction_list_rows,
            windows=len(windows),
            duration_seconds=round((result.completed_at - started_at).total_seconds(), 2),
        )

        return result

    async def fetch_transaction_report(self, window_start: date, window_end: date) -> dict:
        """
        Request the TransactionList report for one window.

        The extended column request is tried first; when QuickBooks rejects
        it the default request shape is used.
        """
        params = {
            "start_date": window_start.isoformat(),
            "end_date": window_end.isoformat(),
        }

        try:
            return await self.qbo_client.get_report(
                "TransactionList", {**params, "columns": REPORT_COLUMNS}
            )
        except QBOAPIError as e:
            logger.warning(
                "report_columns_rejected",
                window_start=params["start_date"],
                window_end=params["end_date"],
                status_code=e.status_code,
            )
            return await self.qbo_client.get_report("TransactionList", params)

    async def ingest_window(self, window_start: date, window_end: date) -> int:
        """
        Replace the stored rows of one report window.

        The report is fetched and parsed before the stored rows are touched,
        and the delete and insert share one transaction.

        Returns:
            Number of rows stored for the window
        """
        report = await self.fetch_transaction_report(window_start, window_end)
        rows = parse_report(report, window_start, window_end)
        stored = self.storage.replace_transaction_window(window_start, window_end, rows)

        logger.info(
            "report_chunk_ingested",
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
            rows=stored,
        )

        return stored
