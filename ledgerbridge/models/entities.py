"""
Local projections of mirrored QuickBooks entities.

Each record keeps the handful of fields used for reporting plus the full
payload for fidelity. Records are keyed by the QuickBooks ``Id`` and are
upserted idempotently by the ingestion pipeline.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _ref_value(ref: Any) -> Optional[str]:
    if isinstance(ref, dict) and ref.get("value") is not None:
        return str(ref["value"])
    return None


class CustomerRecord(BaseModel):
    """Customer projection."""

    qbo_id: str
    display_name: Optional[str] = None
    active: Optional[bool] = None
    balance: Optional[float] = None
    last_updated_time: Optional[datetime] = None
    raw: dict = Field(default_factory=dict)

    @classmethod
    def from_qbo(cls, entity: dict) -> "CustomerRecord":
        return cls(
            qbo_id=str(entity.get("Id", "")),
            display_name=entity.get("DisplayName") or entity.get("FullyQualifiedName"),
            active=entity.get("Active"),
            balance=_to_float(entity.get("Balance")),
            last_updated_time=_to_datetime((entity.get("MetaData") or {}).get("LastUpdatedTime")),
            raw=entity,
        )


class PaymentRecord(BaseModel):
    """Customer payment projection."""

    qbo_id: str
    txn_date: Optional[date] = None
    total_amt: Optional[float] = None
    customer_ref: Optional[str] = None
    raw: dict = Field(default_factory=dict)

    @classmethod
    def from_qbo(cls, entity: dict) -> "PaymentRecord":
        return cls(
            qbo_id=str(entity.get("Id", "")),
            txn_date=_to_date(entity.get("TxnDate")),
            total_amt=_to_float(entity.get("TotalAmt")),
            customer_ref=_ref_value(entity.get("CustomerRef")),
            raw=entity,
        )


class JournalEntryRecord(BaseModel):
    """
    Journal entry projection.

    Debit and credit totals are summed from the ``PostingType`` of each
    ``JournalEntryLineDetail`` line; lines without a posting type are ignored.
    """

    qbo_id: str
    txn_date: Optional[date] = None
    total_amt: Optional[float] = None
    total_debit: float = 0.0
    total_credit: float = 0.0
    raw: dict = Field(default_factory=dict)

    @classmethod
    def from_qbo(cls, entity: dict) -> "JournalEntryRecord":
        debit = 0.0
        credit = 0.0
        for line in entity.get("Line") or []:
            detail = line.get("JournalEntryLineDetail") or {}
            amount = _to_float(line.get("Amount")) or 0.0
            if detail.get("PostingType") == "Debit":
                debit += amount
            elif detail.get("PostingType") == "Credit":
                credit += amount

        return cls(
            qbo_id=str(entity.get("Id", "")),
            txn_date=_to_date(entity.get("TxnDate")),
            total_amt=_to_float(entity.get("TotalAmt")),
            total_debit=round(debit, 2),
            total_credit=round(credit, 2),
            raw=entity,
        )


class AccountRecord(BaseModel):
    """Chart-of-accounts projection, used for category to account resolution."""

    qbo_id: str
    name: Optional[str] = None
    account_type: Optional[str] = None
    account_sub_type: Optional[str] = None
    classification: Optional[str] = None
    active: Optional[bool] = None
    current_balance: Optional[float] = None
    raw: dict = Field(default_factory=dict)

    @classmethod
    def from_qbo(cls, entity: dict) -> "AccountRecord":
        return cls(
            qbo_id=str(entity.get("Id", "")),
            name=entity.get("Name") or entity.get("FullyQualifiedName"),
            account_type=entity.get("AccountType"),
            account_sub_type=entity.get("AccountSubType"),
            classification=entity.get("Classification"),
            active=entity.get("Active"),
            current_balance=_to_float(entity.get("CurrentBalance")),
            raw=entity,
        )
