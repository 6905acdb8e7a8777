"""
DuckDB storage implementation for LedgerBridge.

Provides the local relational store for the QuickBooks mirror, the
transaction list rows with their categorization/push-back status, the
category to account map and the OAuth2 connection.

Key features:
- Thread-local connections
- Idempotent schema creation on first use
- Upserts keyed by QuickBooks Id (``INSERT ... ON CONFLICT DO UPDATE``)
- Transactional delete-then-insert replacement of report windows
- Every status write is an auto-committed single statement
"""

import json
import threading
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Optional

import duckdb
import structlog

from ledgerbridge.models.connection import Connection
from ledgerbridge.models.entities import (
    AccountRecord,
    CustomerRecord,
    JournalEntryRecord,
    PaymentRecord,
)
from ledgerbridge.models.enums import AIStatus, SyncStatus
from ledgerbridge.models.transactions import CategoryAccountMapping, TransactionListRow

from .base import StorageBackend, StorageError

logger = structlog.get_logger(__name__)


TXN_COLUMNS = (
    "id",
    "report_start_date",
    "report_end_date",
    "txn_id",
    "txn_date",
    "txn_type",
    "doc_num",
    "name",
    "account",
    "amount",
    "class_name",
    "ai_category",
    "ai_confidence",
    "ai_status",
    "qb_class_id",
    "qb_sync_status",
    "qb_sync_error",
    "raw",
)

ACCOUNT_COLUMNS = (
    "qbo_id",
    "name",
    "account_type",
    "account_sub_type",
    "classification",
    "active",
    "current_balance",
    "raw",
)


def _loads(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    return json.loads(value)


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/ledgerbridge.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except duckdb.Error as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    def close(self) -> None:
        """Close this thread's connection, if open."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            del self._local.connection

    @staticmethod
    def _fetch_dicts(conn, query: str, params: Optional[list] = None) -> list[dict]:
        cursor = conn.execute(query, params or [])
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def _initialize_schema(self):
        """
        Initialize all database tables, sequences and indexes.

        This method is idempotent and safe to call multiple times.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS qbo_connection (
                            realm_id VARCHAR PRIMARY KEY,
                            access_token VARCHAR NOT NULL,
                            refresh_token VARCHAR NOT NULL,
                            access_token_expires_at TIMESTAMP NOT NULL,
                            refresh_token_expires_at TIMESTAMP,
                            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    # =========================================================
                    # Mirrored entities
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS qbo_customers (
                            qbo_id VARCHAR PRIMARY KEY,
                            display_name VARCHAR,
                            active BOOLEAN,
                            balance DOUBLE,
                            last_updated_time TIMESTAMP,
                            raw JSON,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS qbo_payments (
                            qbo_id VARCHAR PRIMARY KEY,
                            txn_date DATE,
                            total_amt DOUBLE,
                            customer_ref VARCHAR,
                            raw JSON,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS qbo_journal_entries (
                            qbo_id VARCHAR PRIMARY KEY,
                            txn_date DATE,
                            total_amt DOUBLE,
                            total_debit DOUBLE,
                            total_credit DOUBLE,
                            raw JSON,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS qbo_accounts (
                            qbo_id VARCHAR PRIMARY KEY,
                            name VARCHAR,
                            account_type VARCHAR,
                            account_sub_type VARCHAR,
                            classification VARCHAR,
                            active BOOLEAN,
                            current_balance DOUBLE,
                            raw JSON,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    # =========================================================
                    # Transaction list rows
                    # =========================================================

                    conn.execute("CREATE SEQUENCE IF NOT EXISTS seq_transaction_list_rows START 1")

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS qbo_transaction_list_rows (
                            id BIGINT PRIMARY KEY DEFAULT nextval('seq_transaction_list_rows'),
                            report_start_date DATE NOT NULL,
                            report_end_date DATE NOT NULL,
                            txn_id VARCHAR,
                            txn_date DATE,
                            txn_type VARCHAR,
                            doc_num VARCHAR,
                            name VARCHAR,
                            account VARCHAR,
                            amount DOUBLE,
                            class_name VARCHAR,
                            ai_category VARCHAR,
                            ai_confidence DOUBLE,
                            ai_status VARCHAR,
                            qb_class_id VARCHAR,
                            qb_sync_status VARCHAR,
                            qb_sync_error VARCHAR,
                            raw JSON,
                            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    # Only immutable columns are indexed; status columns are
                    # updated in place.
                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_txn_rows_window
                        ON qbo_transaction_list_rows(report_start_date, report_end_date)
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ai_category_account_map (
                            category VARCHAR PRIMARY KEY,
                            account_id VARCHAR NOT NULL,
                            account_name VARCHAR,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                self._initialized = True
                logger.info("duckdb_schema_initialized", db_path=str(self.db_path))

            except duckdb.Error as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    # =========================================================================
    # Credentials
    # =========================================================================

    def get_connection(self, realm_id: Optional[str] = None) -> Optional[Connection]:
        """Read the requested or most recently updated connection."""
        query = """
            SELECT realm_id, access_token, refresh_token, access_token_expires_at,
                   refresh_token_expires_at, updated_at
            FROM qbo_connection
        """
        params: list = []
        if realm_id:
            query += " WHERE realm_id = ?"
            params.append(realm_id)
        query += " ORDER BY updated_at DESC LIMIT 1"

        try:
            with self._get_connection() as conn:
                row = conn.execute(query, params).fetchone()
        except duckdb.Error as e:
            logger.error("read_connection_failed", realm_id=realm_id, error=str(e))
            raise StorageError(f"Failed to read connection: {e}") from e

        if row is None:
            return None

        return Connection(
            realm_id=row[0],
            access_token=row[1],
            refresh_token=row[2],
            access_token_expires_at=row[3],
            refresh_token_expires_at=row[4],
            updated_at=row[5],
        )

    def save_connection(self, connection: Connection) -> None:
        """Insert or replace the credential pair for a realm."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO qbo_connection (
                        realm_id, access_token, refresh_token,
                        access_token_expires_at, refresh_token_expires_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT (realm_id) DO UPDATE SET
                        access_token = EXCLUDED.access_token,
                        refresh_token = EXCLUDED.refresh_token,
                        access_token_expires_at = EXCLUDED.access_token_expires_at,
                        refresh_token_expires_at = EXCLUDED.refresh_token_expires_at,
                        updated_at = get_current_timestamp()
                    """,
                    [
                        connection.realm_id,
                        connection.access_token,
                        connection.refresh_token,
                        connection.access_token_expires_at,
                        connection.refresh_token_expires_at,
                    ],
                )
            logger.info(
                "connection_saved",
                realm_id=connection.realm_id,
                access_token_expires_at=connection.access_token_expires_at.isoformat(),
            )
        except duckdb.Error as e:
            logger.error("save_connection_failed", realm_id=connection.realm_id, error=str(e))
            raise StorageError(f"Failed to save connection: {e}") from e

    def delete_connection(self, realm_id: str) -> bool:
        try:
            with self._get_connection() as conn:
                deleted = conn.execute(
                    "DELETE FROM qbo_connection WHERE realm_id = ? RETURNING realm_id",
                    [realm_id],
                ).fetchall()
        except duckdb.Error as e:
            logger.error("delete_connection_failed", realm_id=realm_id, error=str(e))
            raise StorageError(f"Failed to delete connection: {e}") from e

        logger.info("connection_deleted", realm_id=realm_id, deleted=bool(deleted))
        return bool(deleted)

    # =========================================================================
    # Mirrored entities
    # =========================================================================

    def _upsert(self, table: str, query: str, params: list[list], entity_type: str) -> int:
        try:
            with self._get_connection() as conn:
                for row_params in params:
                    conn.execute(query, row_params)
        except duckdb.Error as e:
            logger.error("entity_upsert_failed", table=table, entity_type=entity_type, error=str(e))
            raise StorageError(f"Failed to upsert {entity_type}: {e}") from e

        logger.info("entities_upserted", entity_type=entity_type, count=len(params))
        return len(params)

    def upsert_customers(self, records: list[CustomerRecord]) -> int:
        """Upsert customers keyed by QuickBooks Id."""
        return self._upsert(
            "qbo_customers",
            """
            INSERT INTO qbo_customers (
                qbo_id, display_name, active, balance, last_updated_time, raw, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (qbo_id) DO UPDATE SET
                display_name = EXCLUDED.display_name,
                active = EXCLUDED.active,
                balance = EXCLUDED.balance,
                last_updated_time = EXCLUDED.last_updated_time,
                raw = EXCLUDED.raw,
                updated_at = get_current_timestamp()
            """,
            [
                [r.qbo_id, r.display_name, r.active, r.balance, r.last_updated_time, json.dumps(r.raw)]
                for r in records
                if r.qbo_id
            ],
            "Customer",
        )

    def upsert_payments(self, records: list[PaymentRecord]) -> int:
        """Upsert payments keyed by QuickBooks Id."""
        return self._upsert(
            "qbo_payments",
            """
            INSERT INTO qbo_payments (
                qbo_id, txn_date, total_amt, customer_ref, raw, updated_at
            ) VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (qbo_id) DO UPDATE SET
                txn_date = EXCLUDED.txn_date,
                total_amt = EXCLUDED.total_amt,
                customer_ref = EXCLUDED.customer_ref,
                raw = EXCLUDED.raw,
                updated_at = get_current_timestamp()
            """,
            [
                [r.qbo_id, r.txn_date, r.total_amt, r.customer_ref, json.dumps(r.raw)]
                for r in records
                if r.qbo_id
            ],
            "Payment",
        )

    def upsert_journal_entries(self, records: list[JournalEntryRecord]) -> int:
        """Upsert journal entries keyed by QuickBooks Id."""
        return self._upsert(
            "qbo_journal_entries",
            """
            INSERT INTO qbo_journal_entries (
                qbo_id, txn_date, total_amt, total_debit, total_credit, raw, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (qbo_id) DO UPDATE SET
                txn_date = EXCLUDED.txn_date,
                total_amt = EXCLUDED.total_amt,
                total_debit = EXCLUDED.total_debit,
                total_credit = EXCLUDED.total_credit,
                raw = EXCLUDED.raw,
                updated_at = get_current_timestamp()
            """,
            [
                [
                    r.qbo_id,
                    r.txn_date,
                    r.total_amt,
                    r.total_debit,
                    r.total_credit,
                    json.dumps(r.raw),
                ]
                for r in records
                if r.qbo_id
            ],
            "JournalEntry",
        )

    def upsert_accounts(self, records: list[AccountRecord]) -> int:
        """Upsert accounts keyed by QuickBooks Id."""
        return self._upsert(
            "qbo_accounts",
            """
            INSERT INTO qbo_accounts (
                qbo_id, name, account_type, account_sub_type, classification,
                active, current_balance, raw, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (qbo_id) DO UPDATE SET
                name = EXCLUDED.name,
                account_type = EXCLUDED.account_type,
                account_sub_type = EXCLUDED.account_sub_type,
                classification = EXCLUDED.classification,
                active = EXCLUDED.active,
                current_balance = EXCLUDED.current_balance,
                raw = EXCLUDED.raw,
                updated_at = get_current_timestamp()
            """,
            [
                [
                    r.qbo_id,
                    r.name,
                    r.account_type,
                    r.account_sub_type,
                    r.classification,
                    r.active,
                    r.current_balance,
                    json.dumps(r.raw),
                ]
                for r in records
                if r.qbo_id
            ],
            "Account",
        )

    def count_entities(self) -> dict[str, int]:
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT
                        (SELECT COUNT(*) FROM qbo_customers),
                        (SELECT COUNT(*) FROM qbo_payments),
                        (SELECT COUNT(*) FROM qbo_journal_entries),
                        (SELECT COUNT(*) FROM qbo_accounts),
                        (SELECT COUNT(*) FROM qbo_transaction_list_rows)
                """).fetchone()
        except duckdb.Error as e:
            logger.error("count_entities_failed", error=str(e))
            raise StorageError(f"Failed to count entities: {e}") from e

        return {
            "customers": int(row[0]),
            "payments": int(row[1]),
            "journal_entries": int(row[2]),
            "accounts": int(row[3]),
            "transaction_list_rows": int(row[4]),
        }

    def _row_to_account(self, row: dict) -> AccountRecord:
        return AccountRecord(**{**row, "raw": _loads(row.get("raw"))})

    def read_accounts(self, active_only: bool = False) -> list[AccountRecord]:
        query = f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM qbo_accounts"
        if active_only:
            query += " WHERE active IS DISTINCT FROM FALSE"
        query += " ORDER BY name ASC NULLS LAST"

        try:
            with self._get_connection() as conn:
                rows = self._fetch_dicts(conn, query)
        except duckdb.Error as e:
            logger.error("read_accounts_failed", error=str(e))
            raise StorageError(f"Failed to read accounts: {e}") from e

        return [self._row_to_account(row) for row in rows]

    def read_account(self, qbo_id: str) -> Optional[AccountRecord]:
        try:
            with self._get_connection() as conn:
                rows = self._fetch_dicts(
                    conn,
                    f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM qbo_accounts WHERE qbo_id = ?",
                    [qbo_id],
                )
        except duckdb.Error as e:
            logger.error("read_account_failed", qbo_id=qbo_id, error=str(e))
            raise StorageError(f"Failed to read account: {e}") from e

        return self._row_to_account(rows[0]) if rows else None

    # =========================================================================
    # Transaction list rows
    # =========================================================================

    def _row_to_transaction(self, row: dict) -> TransactionListRow:
        return TransactionListRow(**{**row, "raw": _loads(row.get("raw"))})

    def _read_transactions(self, where: str, order: str, params: list) -> list[TransactionListRow]:
        query = f"SELECT {', '.join(TXN_COLUMNS)} FROM qbo_transaction_list_rows {where} {order}"
        try:
            with self._get_connection() as conn:
                rows = self._fetch_dicts(conn, query, params)
        except duckdb.Error as e:
            logger.error("read_transaction_rows_failed", error=str(e))
            raise StorageError(f"Failed to read transaction rows: {e}") from e

        return [self._row_to_transaction(row) for row in rows]

    def replace_transaction_window(
        self,
        window_start: date,
        window_end: date,
        rows: list[TransactionListRow],
    ) -> int:
        """Delete-then-insert all rows of one report window atomically."""
        insert_columns = [c for c in TXN_COLUMNS if c != "id"]
        insert_query = f"""
            INSERT INTO qbo_transaction_list_rows ({', '.join(insert_columns)})
            VALUES ({', '.join('?' for _ in insert_columns)})
        """
        params = [
            [
                window_start,
                window_end,
                row.txn_id,
                row.txn_date,
                row.txn_type,
                row.doc_num,
                row.name,
                row.account,
                row.amount,
                row.class_name,
                row.ai_category,
                row.ai_confidence,
                row.ai_status.value if row.ai_status else None,
                row.qb_class_id,
                row.qb_sync_status.value if row.qb_sync_status else None,
                row.qb_sync_error,
                json.dumps(row.raw),
            ]
            for row in rows
        ]

        with self._get_connection() as conn:
            try:
                conn.begin()
                conn.execute(
                    """
                    DELETE FROM qbo_transaction_list_rows
                    WHERE report_start_date = ? AND report_end_date = ?
                    """,
                    [window_start, window_end],
                )
                if params:
                    conn.executemany(insert_query, params)
                conn.commit()
            except duckdb.Error as e:
                conn.rollback()
                logger.error(
                    "replace_transaction_window_failed",
                    window_start=window_start.isoformat(),
                    window_end=window_end.isoformat(),
                    error=str(e),
                )
                raise StorageError(f"Failed to replace transaction window: {e}") from e

        logger.info(
            "transaction_window_replaced",
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
            rows=len(params),
        )
        return len(params)

    def count_transaction_rows(
        self,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> int:
        query = "SELECT COUNT(*) FROM qbo_transaction_list_rows"
        params: list = []
        if window_start is not None and window_end is not None:
            query += " WHERE report_start_date = ? AND report_end_date = ?"
            params = [window_start, window_end]

        try:
            with self._get_connection() as conn:
                return int(conn.execute(query, params).fetchone()[0])
        except duckdb.Error as e:
            raise StorageError(f"Failed to count transaction rows: {e}") from e

    def read_transaction_rows(self, limit: int = 50, offset: int = 0) -> list[TransactionListRow]:
        return self._read_transactions(
            "",
            "ORDER BY txn_date DESC NULLS LAST, id ASC LIMIT ? OFFSET ?",
            [limit, offset],
        )

    def read_transaction_row(self, row_id: int) -> Optional[TransactionListRow]:
        rows = self._read_transactions("WHERE id = ?", "", [row_id])
        return rows[0] if rows else None

    def read_rows_for_categorization(self, limit: int) -> list[TransactionListRow]:
        return self._read_transactions(
            "WHERE ai_status IS DISTINCT FROM ?",
            "ORDER BY txn_date DESC NULLS LAST, id ASC LIMIT ?",
            [AIStatus.CATEGORIZED.value, limit],
        )

    def mark_rows_categorizing(self, row_ids: list[int]) -> None:
        if not row_ids:
            return
        placeholders = ", ".join("?" for _ in row_ids)
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    UPDATE qbo_transaction_list_rows
                    SET ai_status = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id IN ({placeholders})
                    """,
                    [AIStatus.CATEGORIZING.value, *row_ids],
                )
        except duckdb.Error as e:
            logger.error("mark_rows_categorizing_failed", count=len(row_ids), error=str(e))
            raise StorageError(f"Failed to mark rows categorizing: {e}") from e

    def write_categorization(
        self,
        row_id: int,
        category: str,
        confidence: Optional[float] = None,
    ) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    UPDATE qbo_transaction_list_rows
                    SET ai_category = ?, ai_confidence = ?, ai_status = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    [category, confidence, AIStatus.CATEGORIZED.value, row_id],
                )
        except duckdb.Error as e:
            logger.error("write_categorization_failed", row_id=row_id, error=str(e))
            raise StorageError(f"Failed to write categorization: {e}") from e

    def read_rows_for_sync(self, limit: int) -> list[TransactionListRow]:
        return self._read_transactions(
            "WHERE ai_category IS NOT NULL AND qb_sync_status IS DISTINCT FROM ?",
            "ORDER BY txn_date DESC NULLS LAST, id ASC LIMIT ?",
            [SyncStatus.SYNCED.value, limit],
        )

    def update_sync_status(
        self,
        row_id: int,
        status: SyncStatus,
        error: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    UPDATE qbo_transaction_list_rows
                    SET qb_sync_status = ?,
                        qb_sync_error = ?,
                        qb_class_id = COALESCE(?, qb_class_id),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    [status.value, error, class_id, row_id],
                )
        except duckdb.Error as e:
            logger.error("update_sync_status_failed", row_id=row_id, status=status.value, error=str(e))
            raise StorageError(f"Failed to update sync status: {e}") from e

    def read_sync_failures(self, limit: int = 10) -> list[TransactionListRow]:
        return self._read_transactions(
            "WHERE qb_sync_status = ?",
            "ORDER BY updated_at DESC, id DESC LIMIT ?",
            [SyncStatus.FAILED.value, limit],
        )

    # =========================================================================
    # Category to account mapping
    # =========================================================================

    def read_category_mappings(self) -> list[CategoryAccountMapping]:
        try:
            with self._get_connection() as conn:
                rows = self._fetch_dicts(
                    conn,
                    """
                    SELECT category, account_id, account_name
                    FROM ai_category_account_map
                    ORDER BY category
                    """,
                )
        except duckdb.Error as e:
            raise StorageError(f"Failed to read category mappings: {e}") from e

        return [CategoryAccountMapping(**row) for row in rows]

    def read_category_mapping(self, category: str) -> Optional[CategoryAccountMapping]:
        try:
            with self._get_connection() as conn:
                rows = self._fetch_dicts(
                    conn,
                    """
                    SELECT category, account_id, account_name
                    FROM ai_category_account_map
                    WHERE lower(category) = lower(?)
                    LIMIT 1
                    """,
                    [category],
                )
        except duckdb.Error as e:
            raise StorageError(f"Failed to read category mapping: {e}") from e

        return CategoryAccountMapping(**rows[0]) if rows else None

    def write_category_mapping(self, mapping: CategoryAccountMapping) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO ai_category_account_map (category, account_id, account_name, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT (category) DO UPDATE SET
                        account_id = EXCLUDED.account_id,
                        account_name = EXCLUDED.account_name,
                        updated_at = get_current_timestamp()
                    """,
                    [mapping.category, mapping.account_id, mapping.account_name],
                )
        except duckdb.Error as e:
            logger.error("write_category_mapping_failed", category=mapping.category, error=str(e))
            raise StorageError(f"Failed to write category mapping: {e}") from e

        logger.info(
            "category_mapping_written",
            category=mapping.category,
            account_id=mapping.account_id,
        )

    # =========================================================================
    # Aggregates
    # =========================================================================

    def _aggregate(self, query: str, params: Optional[list] = None) -> list[dict]:
        try:
            with self._get_connection() as conn:
                return self._fetch_dicts(conn, query, params)
        except duckdb.Error as e:
            logger.error("aggregate_query_failed", error=str(e))
            raise StorageError(f"Failed to run aggregate query: {e}") from e

    def read_payment_totals(self) -> dict:
        row = self._aggregate(
            "SELECT COUNT(*) AS count, COALESCE(SUM(total_amt), 0) AS total FROM qbo_payments"
        )[0]
        return {"count": int(row["count"]), "total": float(row["total"])}

    def read_monthly_payments(self) -> list[dict]:
        rows = self._aggregate("""
            SELECT strftime(txn_date, '%Y-%m') AS month, COALESCE(SUM(total_amt), 0) AS total
            FROM qbo_payments
            WHERE txn_date IS NOT NULL
            GROUP BY 1
            ORDER BY 1
        """)
        return [{"month": r["month"], "total": float(r["total"])} for r in rows]

    def read_monthly_journal_entries(self) -> list[dict]:
        rows = self._aggregate("""
            SELECT strftime(txn_date, '%Y-%m') AS month, COUNT(*) AS count
            FROM qbo_journal_entries
            WHERE txn_date IS NOT NULL
            GROUP BY 1
            ORDER BY 1
        """)
        return [{"month": r["month"], "count": int(r["count"])} for r in rows]

    def read_top_customers(self, limit: int = 10) -> list[dict]:
        rows = self._aggregate(
            """
            SELECT c.display_name AS display_name, p.customer_ref AS customer_ref,
                   SUM(p.total_amt) AS total
            FROM qbo_payments p
            LEFT JOIN qbo_customers c ON c.qbo_id = p.customer_ref
            WHERE p.total_amt IS NOT NULL
            GROUP BY c.display_name, p.customer_ref
            ORDER BY total DESC
            LIMIT ?
            """,
            [limit],
        )
        return [{**r, "total": float(r["total"])} for r in rows]

    def read_transaction_type_breakdown(self) -> list[dict]:
        rows = self._aggregate("""
            SELECT txn_type, COUNT(*) AS count, COALESCE(SUM(amount), 0) AS total
            FROM qbo_transaction_list_rows
            GROUP BY txn_type
            ORDER BY count DESC, txn_type ASC NULLS LAST
        """)
        return [{**r, "count": int(r["count"]), "total": float(r["total"])} for r in rows]

    def read_category_breakdown(self) -> list[dict]:
        rows = self._aggregate("""
            SELECT ai_category AS category, COUNT(*) AS count, COALESCE(SUM(amount), 0) AS total
            FROM qbo_transaction_list_rows
            WHERE ai_category IS NOT NULL
            GROUP BY ai_category
            ORDER BY count DESC, ai_category ASC
        """)
        return [{**r, "count": int(r["count"]), "total": float(r["total"])} for r in rows]

    def read_sync_status_breakdown(self) -> dict[str, int]:
        rows = self._aggregate("""
            SELECT COALESCE(qb_sync_status, 'none') AS status, COUNT(*) AS count
            FROM qbo_transaction_list_rows
            GROUP BY 1
        """)
        return {r["status"]: int(r["count"]) for r in rows}

    def read_account_activity(self) -> list[dict]:
        rows = self._aggregate("""
            SELECT t.account AS name, a.account_type, a.account_sub_type, a.classification,
                   COUNT(*) AS txn_count, COALESCE(SUM(t.amount), 0) AS total_amount
            FROM qbo_transaction_list_rows t
            LEFT JOIN qbo_accounts a ON a.name = t.account
            WHERE t.account IS NOT NULL AND t.account <> ''
            GROUP BY t.account, a.account_type, a.account_sub_type, a.classification
            ORDER BY txn_count DESC, t.account ASC
        """)
        return [
            {**r, "txn_count": int(r["txn_count"]), "total_amount": float(r["total_amount"])}
            for r in rows
        ]

    # =========================================================================
    # Maintenance
    # =========================================================================

    def purge_qbo_data(self) -> None:
        tables = [
            "qbo_customers",
            "qbo_payments",
            "qbo_journal_entries",
            "qbo_accounts",
            "qbo_transaction_list_rows",
            "ai_category_account_map",
        ]
        try:
            with self._get_connection() as conn:
                for table in tables:
                    conn.execute(f"DELETE FROM {table}")
        except duckdb.Error as e:
            logger.error("purge_failed", error=str(e))
            raise StorageError(f"Failed to purge QuickBooks data: {e}") from e

        logger.warning("qbo_data_purged", tables=tables)
