"""
Unit tests for the DuckDB storage backend.
"""

from datetime import date

import pytest

from ledgerbridge.models.entities import CustomerRecord, JournalEntryRecord, PaymentRecord
from ledgerbridge.models.enums import AIStatus, SyncStatus
from ledgerbridge.models.transactions import CategoryAccountMapping
from ledgerbridge.storage import StorageError
from tests.conftest import REALM_ID, make_account, make_connection, make_row

H1 = (date(2024, 1, 1), date(2024, 6, 30))
H2 = (date(2024, 7, 1), date(2024, 12, 31))


class TestConnections:
    """Tests for the credential store."""

    def test_save_and_read_connection(self, storage):
        storage.save_connection(make_connection())

        stored = storage.get_connection()

        assert stored.realm_id == REALM_ID
        assert stored.updated_at is not None

    def test_save_replaces_pair_for_realm(self, storage):
        storage.save_connection(make_connection(access_token="a1"))
        storage.save_connection(make_connection(access_token="a2"))

        assert storage.get_connection(REALM_ID).access_token == "a2"

    def test_unknown_realm(self, storage):
        storage.save_connection(make_connection())

        assert storage.get_connection("other") is None

    def test_delete_connection(self, storage):
        storage.save_connection(make_connection())

        assert storage.delete_connection(REALM_ID) is True
        assert storage.delete_connection(REALM_ID) is False
        assert storage.get_connection() is None


class TestEntityUpserts:
    """Tests for idempotent mirroring of QuickBooks entities."""

    def test_upsert_is_idempotent_and_updates_in_place(self, storage):
        storage.upsert_customers(
            [CustomerRecord.from_qbo({"Id": "1", "DisplayName": "Acme"}), CustomerRecord.from_qbo({"Id": "2"})]
        )
        storage.upsert_customers([CustomerRecord.from_qbo({"Id": "1", "DisplayName": "Acme Corp"})])

        counts = storage.count_entities()
        assert counts["customers"] == 2

    def test_journal_entry_totals_from_posting_type(self):
        record = JournalEntryRecord.from_qbo(
            {
                "Id": "9",
                "TxnDate": "2024-02-01",
                "Line": [
                    {"Amount": 100, "JournalEntryLineDetail": {"PostingType": "Debit"}},
                    {"Amount": 60, "JournalEntryLineDetail": {"PostingType": "Credit"}},
                    {"Amount": 40, "JournalEntryLineDetail": {"PostingType": "Credit"}},
                    {"Amount": 999, "JournalEntryLineDetail": {}},
                ],
            }
        )

        assert record.total_debit == 100.0
        assert record.total_credit == 100.0

    def test_accounts_active_filter_and_order(self, storage):
        storage.upsert_accounts(
            [
                make_account("2", "Rent Expense"),
                make_account("1", "Advertising"),
                make_account("3", "Old Rent", active=False),
            ]
        )

        assert [a.name for a in storage.read_accounts()] == ["Advertising", "Old Rent", "Rent Expense"]
        assert [a.qbo_id for a in storage.read_accounts(active_only=True)] == ["1", "2"]
        assert storage.read_account("3").active is False
        assert storage.read_account("404") is None


class TestTransactionWindows:
    """Tests for window replacement and row selection."""

    def test_replace_window_is_idempotent(self, storage):
        rows = [make_row(txn_id="1"), make_row(txn_id="2")]

        storage.replace_transaction_window(*H1, rows)
        storage.replace_transaction_window(*H1, rows)

        assert storage.count_transaction_rows() == 2
        assert storage.count_transaction_rows(*H1) == 2

    def test_replace_window_leaves_other_windows(self, storage):
        storage.replace_transaction_window(*H1, [make_row(txn_id="1")])
        storage.replace_transaction_window(*H2, [make_row(txn_id="2", window=H2, txn_date=date(2024, 8, 1))])

        storage.replace_transaction_window(*H1, [])

        assert storage.count_transaction_rows(*H1) == 0
        assert storage.count_transaction_rows(*H2) == 1

    def test_replace_window_resets_statuses(self, storage):
        storage.replace_transaction_window(*H1, [make_row()])
        row = storage.read_transaction_rows()[0]
        storage.write_categorization(row.id, "Rent")

        storage.replace_transaction_window(*H1, [make_row()])

        fresh = storage.read_transaction_rows()[0]
        assert fresh.ai_category is None
        assert fresh.ai_status is None
        assert fresh.id != row.id

    def test_failed_replace_keeps_previous_rows(self, storage):
        storage.replace_transaction_window(*H1, [make_row(txn_id="1")])

        # Unvalidated copy: the insert fails after the delete has run.
        bad = make_row(txn_id="2").model_copy(update={"amount": "not-a-number"})

        with pytest.raises(StorageError):
            storage.replace_transaction_window(*H1, [bad])

        assert [r.txn_id for r in storage.read_transaction_rows()] == ["1"]

    def test_read_rows_most_recent_first_with_nulls_last(self, storage):
        storage.replace_transaction_window(
            *H1,
            [
                make_row(txn_id="old", txn_date=date(2024, 1, 5)),
                make_row(txn_id="none", txn_date=None),
                make_row(txn_id="new", txn_date=date(2024, 5, 5)),
            ],
        )

        assert [r.txn_id for r in storage.read_transaction_rows()] == ["new", "old", "none"]
        assert [r.txn_id for r in storage.read_transaction_rows(limit=1, offset=1)] == ["old"]

    def test_raw_round_trips(self, storage):
        storage.replace_transaction_window(*H1, [make_row(raw={"record": {"Name": "Acme"}})])

        assert storage.read_transaction_rows()[0].raw == {"record": {"Name": "Acme"}}

    def test_categorization_selection_excludes_categorized(self, storage):
        storage.replace_transaction_window(*H1, [make_row(txn_id="1"), make_row(txn_id="2")])
        first, second = storage.read_transaction_rows()
        storage.write_categorization(first.id, "Rent", 0.9)
        storage.mark_rows_categorizing([second.id])

        selected = storage.read_rows_for_categorization(10)

        # Rows stuck in "categorizing" are picked up again.
        assert [r.id for r in selected] == [second.id]
        assert selected[0].ai_status == AIStatus.CATEGORIZING
        stored = storage.read_transaction_row(first.id)
        assert stored.ai_status == AIStatus.CATEGORIZED
        assert stored.ai_confidence == pytest.approx(0.9)

    def test_sync_selection(self, storage):
        storage.replace_transaction_window(
            *H1, [make_row(txn_id="1"), make_row(txn_id="2"), make_row(txn_id="3")]
        )
        a, b, c = storage.read_transaction_rows()
        for row in (a, b):
            storage.write_categorization(row.id, "Rent")
        storage.update_sync_status(a.id, SyncStatus.SYNCED)

        selected = storage.read_rows_for_sync(10)

        assert [r.id for r in selected] == [b.id]

    def test_update_sync_status_keeps_class_id(self, storage):
        storage.replace_transaction_window(*H1, [make_row()])
        row = storage.read_transaction_rows()[0]

        storage.update_sync_status(row.id, SyncStatus.SYNCED, class_id="5000")
        storage.update_sync_status(row.id, SyncStatus.FAILED, error="boom")

        stored = storage.read_transaction_row(row.id)
        assert stored.qb_sync_status == SyncStatus.FAILED
        assert stored.qb_sync_error == "boom"
        assert stored.qb_class_id == "5000"

    def test_sync_failures(self, storage):
        storage.replace_transaction_window(*H1, [make_row(txn_id="1"), make_row(txn_id="2")])
        a, b = storage.read_transaction_rows()
        storage.update_sync_status(a.id, SyncStatus.FAILED, error="500")
        storage.update_sync_status(b.id, SyncStatus.SKIPPED, error="no account")

        failures = storage.read_sync_failures()

        assert [f.id for f in failures] == [a.id]


class TestCategoryMappings:
    def test_write_and_read_case_insensitive(self, storage):
        storage.write_category_mapping(CategoryAccountMapping(category="Rent", account_id="7", account_name="Rent"))
        storage.write_category_mapping(CategoryAccountMapping(category="Rent", account_id="8"))

        mapping = storage.read_category_mapping("rent")

        assert mapping.account_id == "8"
        assert len(storage.read_category_mappings()) == 1


class TestAggregates:
    """Tests for the summary aggregates."""

    def test_payment_aggregates(self, storage):
        storage.upsert_customers([CustomerRecord.from_qbo({"Id": "c1", "DisplayName": "Acme"})])
        storage.upsert_payments(
            [
                PaymentRecord.from_qbo({"Id": "1", "TxnDate": "2024-01-10", "TotalAmt": 100, "CustomerRef": {"value": "c1"}}),
                PaymentRecord.from_qbo({"Id": "2", "TxnDate": "2024-01-20", "TotalAmt": 50, "CustomerRef": {"value": "c1"}}),
                PaymentRecord.from_qbo({"Id": "3", "TxnDate": "2024-02-01", "TotalAmt": 25, "CustomerRef": {"value": "c9"}}),
            ]
        )

        assert storage.read_payment_totals() == {"count": 3, "total": 175.0}
        assert storage.read_monthly_payments() == [
            {"month": "2024-01", "total": 150.0},
            {"month": "2024-02", "total": 25.0},
        ]
        top = storage.read_top_customers()
        assert top[0]["display_name"] == "Acme"
        assert top[0]["total"] == 150.0
        assert top[1]["display_name"] is None
        assert top[1]["customer_ref"] == "c9"

    def test_row_breakdowns(self, storage):
        storage.upsert_accounts([make_account("1", "Office Supplies")])
        storage.replace_transaction_window(
            *H1,
            [
                make_row(txn_type="Bill", amount=-10.0),
                make_row(txn_type="Bill", amount=-5.0),
                make_row(txn_type="Invoice", amount=100.0, account="Sales"),
            ],
        )
        first = storage.read_transaction_rows()[0]
        storage.write_categorization(first.id, "Rent")
        storage.update_sync_status(first.id, SyncStatus.SYNCED)

        types = {t["txn_type"]: t for t in storage.read_transaction_type_breakdown()}
        assert types["Bill"]["count"] == 2
        assert types["Bill"]["total"] == -15.0
        assert storage.read_category_breakdown()[0]["category"] == "Rent"
        assert storage.read_sync_status_breakdown() == {"synced": 1, "none": 2}

        activity = {a["name"]: a for a in storage.read_account_activity()}
        assert activity["Office Supplies"]["txn_count"] == 2
        assert activity["Office Supplies"]["account_type"] == "Expense"
        assert activity["Sales"]["account_type"] is None

    def test_purge_keeps_connection(self, storage):
        storage.save_connection(make_connection())
        storage.upsert_accounts([make_account("1", "Rent")])
        storage.replace_transaction_window(*H1, [make_row()])

        storage.purge_qbo_data()

        assert storage.count_entities() == {
            "customers": 0,
            "payments": 0,
            "journal_entries": 0,
            "accounts": 0,
            "transaction_list_rows": 0,
        }
        assert storage.get_connection() is not None
