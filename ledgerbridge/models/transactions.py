"""
Transaction list rows and category mapping models.

A transaction list row is one line of the QuickBooks ``TransactionList``
report for a given report window. Row identity is (window, position): rows
for a window are replaced wholesale when that window is re-ingested, and the
QuickBooks transaction id is advisory (used only for push-back) and may be
missing.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .enums import AIStatus, SyncStatus


class TransactionListRow(BaseModel):
    """
    One flattened row of a transaction list report.

    Attributes:
        id: Local surrogate key (assigned on insert)
        report_start_date: First day of the report window the row came from
        report_end_date: Last day of the report window the row came from
        txn_id: QuickBooks transaction id, best-effort extracted
        txn_date: Transaction date
        txn_type: Transaction type as printed by the report (e.g. "Bill")
        doc_num: Document number
        name: Counterparty name
        account: Account name
        amount: Signed amount; None when the cell could not be parsed
        class_name: Class/category hint from the report, if any
        ai_category: Category assigned by the categorization engine
        ai_confidence: Model confidence, when the model supplied one
        ai_status: Categorization state
        qb_class_id: QuickBooks Class id attached during push-back
        qb_sync_status: Push-back outcome
        qb_sync_error: Reason for a skipped/failed push-back
        raw: Original report row payload
    """

    id: Optional[int] = None
    report_start_date: date
    report_end_date: date
    txn_id: Optional[str] = None
    txn_date: Optional[date] = None
    txn_type: Optional[str] = None
    doc_num: Optional[str] = None
    name: Optional[str] = None
    account: Optional[str] = None
    amount: Optional[float] = None
    class_name: Optional[str] = None
    ai_category: Optional[str] = None
    ai_confidence: Optional[float] = None
    ai_status: Optional[AIStatus] = None
    qb_class_id: Optional[str] = None
    qb_sync_status: Optional[SyncStatus] = None
    qb_sync_error: Optional[str] = None
    raw: dict = Field(default_factory=dict)

    @field_validator("report_end_date")
    @classmethod
    def validate_window_order(cls, v: date, info) -> date:
        """Ensure the report window is not inverted."""
        start = info.data.get("report_start_date")
        if start is not None and v < start:
            raise ValueError("report_end_date must not precede report_start_date")
        return v

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "id": 42,
                "report_start_date": "2024-01-01",
                "report_end_date": "2024-06-30",
                "txn_id": "145",
                "txn_date": "2024-03-14",
                "txn_type": "Bill",
                "doc_num": "INV-2291",
                "name": "ACME Payroll Services",
                "account": "Accounts Payable (A/P)",
                "amount": -1250.0,
                "ai_category": "Payroll",
                "ai_status": "categorized",
                "qb_sync_status": "synced",
            }
        }


class CategoryAccountMapping(BaseModel):
    """Maps a category label to the QuickBooks account used for push-back."""

    category: str = Field(description="Category label (unique)")
    account_id: str = Field(description="QuickBooks account Id")
    account_name: Optional[str] = Field(default=None, description="Account display name")

    @field_validator("category", "account_id")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Value cannot be empty")
        return v.strip()
