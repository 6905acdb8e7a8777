"""
Unit tests for the TransactionList report parser.

Covers nested row flattening, column keying, field aliases, transaction id
extraction and best-effort amount/date parsing.
"""

from datetime import date

import pytest

from ledgerbridge.connectors.report_parser import (
    ReportCell,
    build_row_tree,
    extract_field,
    extract_txn_id,
    parse_amount,
    parse_date,
    parse_report,
)

WINDOW = (date(2024, 1, 1), date(2024, 6, 30))

COLUMNS = {
    "Column": [
        {"ColTitle": "Date", "ColType": "tx_date"},
        {"ColTitle": "Transaction Type", "ColType": "txn_type"},
        {"ColTitle": "Num", "ColType": "doc_num"},
        {"ColTitle": "Name", "ColType": "name"},
        {"ColTitle": "Account", "ColType": "account_name"},
        {"ColTitle": "Amount", "ColType": "subt_nat_amount"},
    ]
}


def data_row(*values, type_id=None):
    cells = [{"value": v} for v in values]
    if type_id is not None:
        cells[1]["id"] = type_id
    return {"type": "Data", "ColData": cells}


class TestParseReport:
    """Tests for parse_report flattening."""

    def test_parse_report_flattens_nested_sections_in_order(self):
        """Leaf rows at every depth become rows, in report order."""
        payload = {
            "Columns": COLUMNS,
            "Rows": {
                "Row": [
                    {
                        "type": "Section",
                        "Header": {"ColData": [{"value": "Bills"}]},
                        "Rows": {
                            "Row": [
                                data_row("2024-03-14", "Bill", "1001", "Acme", "Supplies", "(125.50)", type_id="145"),
                                data_row("2024-03-15", "Bill", "1002", "Globex", "Rent", "2,000.00", type_id="146"),
                            ]
                        },
                        "Summary": {"ColData": [{"value": "Total"}]},
                    },
                    data_row("2024-04-01", "Invoice", "2001", "Initech", "Sales", "$500.00", type_id="300"),
                ]
            },
        }

        rows = parse_report(payload, *WINDOW)

        assert [r.txn_id for r in rows] == ["145", "146", "300"]
        assert rows[0].txn_date == date(2024, 3, 14)
        assert rows[0].txn_type == "Bill"
        assert rows[0].doc_num == "1001"
        assert rows[0].name == "Acme"
        assert rows[0].account == "Supplies"
        assert rows[0].amount == -125.5
        assert rows[1].amount == 2000.0
        assert rows[2].amount == 500.0

    def test_parse_report_rows_carry_window(self):
        payload = {"Columns": COLUMNS, "Rows": {"Row": [data_row("2024-03-14", "Bill", "", "", "", "1")]}}

        row = parse_report(payload, *WINDOW)[0]

        assert row.report_start_date == WINDOW[0]
        assert row.report_end_date == WINDOW[1]

    def test_parse_report_row_with_cells_and_children(self):
        """A row holding both leaf cells and nested rows contributes both."""
        payload = {
            "Columns": COLUMNS,
            "Rows": {
                "Row": [
                    {
                        **data_row("2024-02-01", "Deposit", "", "Parent", "Bank", "10"),
                        "Rows": {"Row": [data_row("2024-02-02", "Deposit", "", "Child", "Bank", "20")]},
                    }
                ]
            },
        }

        rows = parse_report(payload, *WINDOW)

        assert [r.name for r in rows] == ["Parent", "Child"]

    def test_parse_report_positional_columns_without_titles(self):
        """Without column titles, cells are keyed by position."""
        payload = {"Rows": {"Row": [data_row("03/14/2024", "Expense", "7", "Uber", "Travel", "-42.10", "Ops")]}}

        row = parse_report(payload, *WINDOW)[0]

        assert row.txn_date == date(2024, 3, 14)
        assert row.txn_type == "Expense"
        assert row.name == "Uber"
        assert row.amount == -42.1
        assert row.class_name == "Ops"

    def test_parse_report_malformed_cells_become_none(self):
        payload = {"Columns": COLUMNS, "Rows": {"Row": [data_row("not a date", "Bill", "", "", "", "n/a")]}}

        row = parse_report(payload, *WINDOW)[0]

        assert row.txn_date is None
        assert row.amount is None
        assert row.name is None

    def test_parse_report_keeps_raw_record(self):
        payload = {"Columns": COLUMNS, "Rows": {"Row": [data_row("2024-03-14", "Bill", "9", "Acme", "Rent", "1")]}}

        row = parse_report(payload, *WINDOW)[0]

        assert row.raw["record"]["Name"] == "Acme"
        assert row.raw["row"]["type"] == "Data"

    def test_parse_report_duplicate_titles_fall_back_to_index(self):
        payload = {
            "Columns": {"Column": [{"ColTitle": "Name"}, {"ColTitle": "Name"}]},
            "Rows": {"Row": [{"ColData": [{"value": "First"}, {"value": "Second"}]}]},
        }

        row = parse_report(payload, *WINDOW)[0]

        assert row.name == "First"
        assert row.raw["record"]["col_1"] == "Second"

    @pytest.mark.parametrize("payload", [None, [], "report", {}])
    def test_parse_report_invalid_or_empty_payload(self, payload):
        assert parse_report(payload, *WINDOW) == []


class TestTxnIdExtraction:
    """Tests for the transaction id extractor pipeline."""

    def test_type_cell_id_wins_over_other_ids(self):
        cells = [
            ("Date", ReportCell(value="2024-03-14", id="999")),
            ("Transaction Type", ReportCell(value="Bill", id="145")),
        ]
        assert extract_txn_id(cells) == "145"

    def test_first_cell_id_when_type_has_none(self):
        cells = [
            ("Date", ReportCell(value="2024-03-14")),
            ("Name", ReportCell(value="Acme", id="58")),
        ]
        assert extract_txn_id(cells) == "58"

    def test_id_from_link_query(self):
        cells = [("Transaction Type", ReportCell(value="Bill", href="https://app.qbo.intuit.com/app/bill?txnId=77"))]
        assert extract_txn_id(cells) == "77"

    def test_id_from_id_column(self):
        cells = [("Txn ID", ReportCell(value=" 3021 ")), ("Name", ReportCell(value="Acme"))]
        assert extract_txn_id(cells) == "3021"

    def test_no_id_anywhere(self):
        assert extract_txn_id([("Name", ReportCell(value="Acme"))]) is None

    def test_cell_from_non_dict_payload(self):
        assert ReportCell.from_payload("x") == ReportCell()


class TestExtractField:
    """Tests for alias-based field extraction."""

    def test_exact_alias_is_case_insensitive(self):
        assert extract_field({"NAME": "Acme"}, "name") == "Acme"

    def test_substring_match_respects_excludes(self):
        record = {"Due Date": "2024-05-01", "Posting Date": "2024-03-01"}
        assert extract_field(record, "txn_date") == "2024-03-01"

    def test_account_type_is_not_an_account(self):
        record = {"Account Type": "Expense", "Split Account": "Cash"}
        assert extract_field(record, "account") == "Cash"

    def test_empty_values_are_skipped(self):
        assert extract_field({"Amount": "  ", "Total": "12.00"}, "amount") == "12.00"

    def test_missing_field(self):
        assert extract_field({"Memo": "x"}, "doc_num") is None


class TestValueParsing:
    """Tests for amount and date parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1,234.56", 1234.56),
            ("$1,234.56", 1234.56),
            ("(500.00)", -500.0),
            ("-42", -42.0),
            ("€ 10", 10.0),
            (12, 12.0),
            ("0", 0.0),
        ],
    )
    def test_parse_amount_valid(self, value, expected):
        assert parse_amount(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "", "-", "()", "abc", "nan", "inf", True, float("nan")])
    def test_parse_amount_invalid(self, value):
        assert parse_amount(value) is None

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-03-14", date(2024, 3, 14)),
            ("2024-03-14T10:00:00-07:00", date(2024, 3, 14)),
            ("03/14/2024", date(2024, 3, 14)),
        ],
    )
    def test_parse_date_valid(self, value, expected):
        assert parse_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "14.03.2024", "2024-13-01"])
    def test_parse_date_invalid(self, value):
        assert parse_date(value) is None


class TestBuildRowTree:
    def test_leaves_depth_first(self):
        tree = build_row_tree(
            {
                "Rows": {
                    "Row": [
                        {"Rows": {"Row": [{"ColData": [{"value": "a"}]}, {"ColData": [{"value": "b"}]}]}},
                        {"ColData": [{"value": "c"}]},
                    ]
                }
            }
        )

        assert [leaf.cells[0].value for leaf in tree.leaves()] == ["a", "b", "c"]
