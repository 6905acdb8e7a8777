"""
Parser for QuickBooks tabular reports (``TransactionList``).

A report payload is a nested structure::

    {
        "Columns": {"Column": [{"ColTitle": "Date", ...}, ...]},
        "Rows": {"Row": [
            {"ColData": [{"value": "2024-03-14"}, {"value": "Bill", "id": "145"}, ...]},
            {"Header": {...}, "Rows": {"Row": [...]}, "Summary": {...}},
        ]}
    }

A row may carry leaf cells (``ColData``), nested rows (``Rows.Row``) or
both; the two are checked independently and every leaf row at any depth is
flattened into a ``TransactionListRow``. Field values are extracted through
a declarative alias table, and the QuickBooks transaction id through an
ordered pipeline of extractors where the first non-empty result wins.

Parsing is best-effort: a malformed cell becomes ``None`` and never aborts
the report.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterator, NamedTuple, Optional
from urllib.parse import parse_qs, urlparse

import structlog

from ledgerbridge.models.transactions import TransactionListRow

logger = structlog.get_logger(__name__)


# Used when the report carries no meaningful column titles.
POSITIONAL_COLUMNS = (
    "Date",
    "Transaction Type",
    "Num",
    "Name",
    "Account",
    "Amount",
    "Class",
)


class FieldAliases(NamedTuple):
    """Candidate column keys for one field, all lowercase."""

    exact: tuple[str, ...]
    contains: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


FIELD_ALIASES: dict[str, FieldAliases] = {
    "txn_date": FieldAliases(
        exact=("date", "txn date", "transaction date", "tx_date"),
        contains=("date",),
        exclude=("due", "modified", "created"),
    ),
    "txn_type": FieldAliases(
        exact=("transaction type", "txn type", "txn_type", "type"),
        contains=("type",),
        exclude=("account",),
    ),
    "doc_num": FieldAliases(
        exact=("num", "doc num", "doc_num", "no.", "number", "ref no."),
        contains=("num",),
    ),
    "name": FieldAliases(
        exact=("name", "customer", "vendor", "payee", "customer/vendor"),
        contains=("name",),
        exclude=("account", "class"),
    ),
    "account": FieldAliases(
        exact=("account", "account name", "account_name"),
        contains=("account",),
        exclude=("type",),
    ),
    "amount": FieldAliases(
        exact=("amount", "total", "subt_nat_amount"),
        contains=("amount", "total", "credit", "debit"),
    ),
    "class_name": FieldAliases(
        exact=("class", "class name", "klass_name"),
        contains=("class",),
    ),
}

TYPE_LIKE_KEYS = ("transaction type", "txn type", "txn_type", "type")
ID_LIKE_KEYS = ("txn id", "txnid", "txn_id", "transaction id", "id")

_AMOUNT_STRIP = re.compile(r"[\s$€£,]")


@dataclass
class ReportCell:
    """One ``ColData`` entry."""

    value: str = ""
    id: Optional[str] = None
    href: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ReportCell":
        if not isinstance(payload, dict):
            return cls()
        value = payload.get("value")
        cell_id = payload.get("id")
        return cls(
            value="" if value is None else str(value),
            id=str(cell_id) if cell_id not in (None, "") else None,
            href=payload.get("href") or payload.get("url"),
        )


@dataclass
class ReportRow:
    """
    A report row as a recursive variant.

    ``cells`` is set when the row carries leaf data; ``children`` holds the
    nested rows. Both may be present on the same row.
    """

    cells: Optional[list[ReportCell]] = None
    children: list["ReportRow"] = field(default_factory=list)
    raw: dict = field(default_factory=dict)

    def leaves(self) -> Iterator["ReportRow"]:
        """Yield every row carrying cells, depth-first in report order."""
        if self.cells is not None:
            yield self
        for child in self.children:
            yield from child.leaves()


def build_row_tree(payload: Any) -> ReportRow:
    """Build a ``ReportRow`` tree from a raw report row (or the report itself)."""
    if not isinstance(payload, dict):
        return ReportRow()

    cells = None
    col_data = payload.get("ColData")
    if isinstance(col_data, list):
        cells = [ReportCell.from_payload(cell) for cell in col_data]

    nested = (payload.get("Rows") or {}).get("Row") if isinstance(payload.get("Rows"), dict) else None
    children = [build_row_tree(row) for row in nested if isinstance(row, dict)] if isinstance(nested, list) else []

    return ReportRow(cells=cells, children=children, raw=payload)


# =============================================================================
# Value parsing
# =============================================================================


def parse_amount(value: Any) -> Optional[float]:
    """
    Parse a report amount cell.

    Currency symbols, thousands separators and whitespace are stripped;
    parenthesized or minus-prefixed values are negative. Anything that does
    not parse to a finite number yields ``None``.

    >>> parse_amount("(500.00)")
    -500.0
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    text = str(value).strip()
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = _AMOUNT_STRIP.sub("", text)
    if text.startswith("-"):
        negative = True
        text = text[1:]

    if not text:
        return None

    try:
        amount = float(text)
    except ValueError:
        return None

    if not math.isfinite(amount):
        return None
    return -amount if negative else amount


def parse_date(value: Any) -> Optional[date]:
    """Parse ``YYYY-MM-DD`` (optionally with a time part) or ``MM/DD/YYYY``."""
    if not value:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        return None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# =============================================================================
# Field extraction
# =============================================================================


def extract_field(record: dict[str, str], field_name: str) -> Optional[str]:
    """
    Extract a field from a keyed row using ``FIELD_ALIASES``.

    Exact aliases are tried in order first, then any key containing one of
    the substring aliases (in column order). Matching is case-insensitive
    and empty values are skipped.
    """
    aliases = FIELD_ALIASES[field_name]
    lowered = {key.strip().lower(): value for key, value in record.items()}

    for alias in aliases.exact:
        value = _clean(lowered.get(alias))
        if value is not None:
            return value

    for key, value in lowered.items():
        if any(part in key for part in aliases.exclude):
            continue
        if any(part in key for part in aliases.contains):
            value = _clean(value)
            if value is not None:
                return value

    return None


KeyedCells = list[tuple[str, ReportCell]]


def _id_from_type_cell(cells: KeyedCells) -> Optional[str]:
    for key, cell in cells:
        if key.strip().lower() in TYPE_LIKE_KEYS and cell.id:
            return cell.id
    return None


def _first_cell_id(cells: KeyedCells) -> Optional[str]:
    for _, cell in cells:
        if cell.id:
            return cell.id
    return None


def _id_from_link(cells: KeyedCells) -> Optional[str]:
    for _, cell in cells:
        if not cell.href:
            continue
        values = parse_qs(urlparse(cell.href).query).get("txnId")
        if values and values[0]:
            return values[0]
    return None


def _id_from_id_column(cells: KeyedCells) -> Optional[str]:
    for key, cell in cells:
        if key.strip().lower() in ID_LIKE_KEYS and _clean(cell.value):
            return cell.value.strip()
    return None


TXN_ID_EXTRACTORS: tuple[Callable[[KeyedCells], Optional[str]], ...] = (
    _id_from_type_cell,
    _first_cell_id,
    _id_from_link,
    _id_from_id_column,
)


def extract_txn_id(cells: KeyedCells) -> Optional[str]:
    """Return the first transaction id found by ``TXN_ID_EXTRACTORS``."""
    for extractor in TXN_ID_EXTRACTORS:
        txn_id = extractor(cells)
        if txn_id:
            return txn_id
    return None


# =============================================================================
# Report parsing
# =============================================================================


def column_titles(payload: dict) -> list[str]:
    columns = (payload.get("Columns") or {}).get("Column") or []
    titles = []
    for column in columns:
        if not isinstance(column, dict):
            titles.append("")
            continue
        title = column.get("ColTitle") or column.get("ColName") or column.get("Name") or ""
        titles.append(str(title).strip())
    return titles


def _column_key(titles: list[str], index: int, meaningful: bool) -> str:
    if meaningful and index < len(titles) and titles[index]:
        return titles[index]
    if index < len(POSITIONAL_COLUMNS):
        return POSITIONAL_COLUMNS[index]
    return f"col_{index}"


def _key_cells(cells: list[ReportCell], titles: list[str], meaningful: bool) -> KeyedCells:
    keyed: KeyedCells = []
    seen: set[str] = set()
    for index, cell in enumerate(cells):
        key = _column_key(titles, index, meaningful)
        if key in seen:
            key = f"col_{index}"
        seen.add(key)
        keyed.append((key, cell))
    return keyed


def parse_report(
    payload: Any,
    window_start: date,
    window_end: date,
) -> list[TransactionListRow]:
    """
    Flatten a transaction list report into rows for one report window.

    Args:
        payload: Report JSON as returned by the reports endpoint
        window_start: First day of the report window
        window_end: Last day of the report window

    Returns:
        One ``TransactionListRow`` per leaf row, in report order
    """
    if not isinstance(payload, dict):
        logger.warning("report_payload_invalid", payload_type=type(payload).__name__)
        return []

    titles = column_titles(payload)
    meaningful = any(titles)
    tree = build_row_tree({"Rows": payload.get("Rows") or {}})

    rows: list[TransactionListRow] = []
    for leaf in tree.leaves():
        keyed = _key_cells(leaf.cells or [], titles, meaningful)
        record = {key: cell.value for key, cell in keyed}

        rows.append(
            TransactionListRow(
                report_start_date=window_start,
                report_end_date=window_end,
                txn_id=extract_txn_id(keyed),
                txn_date=parse_date(extract_field(record, "txn_date")),
                txn_type=extract_field(record, "txn_type"),
                doc_num=extract_field(record, "doc_num"),
                name=extract_field(record, "name"),
                account=extract_field(record, "account"),
                amount=parse_amount(extract_field(record, "amount")),
                class_name=extract_field(record, "class_name"),
                raw={"record": record, "row": leaf.raw},
            )
        )

    logger.debug(
        "report_parsed",
        window_start=window_start.isoformat(),
        window_end=window_end.isoformat(),
        columns=len(titles),
        rows=len(rows),
    )

    return rows
