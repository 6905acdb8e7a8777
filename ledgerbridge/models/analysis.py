"""
Summary and analysis-agent response models.

The summary is derived entirely from the local store and is the only data
the analysis agent sees.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class DateRange(BaseModel):
    start: str
    end: str


class MonthlyTotal(BaseModel):
    month: str = Field(description="YYYY-MM")
    total: float


class MonthlyCount(BaseModel):
    month: str = Field(description="YYYY-MM")
    count: int


class CustomerTotal(BaseModel):
    display_name: Optional[str] = None
    customer_ref: Optional[str] = None
    total: float


class TypeBreakdown(BaseModel):
    txn_type: Optional[str] = None
    count: int
    total: float


class CategoryBreakdown(BaseModel):
    category: str
    count: int
    total: float


class Summary(BaseModel):
    """Aggregate view of the synchronized QuickBooks data."""

    date_range: DateRange
    total_customers: int = 0
    total_payments: float = 0.0
    payment_count: int = 0
    total_journal_entries: int = 0
    total_accounts: int = 0
    total_transaction_rows: int = 0
    monthly_payments: list[MonthlyTotal] = Field(default_factory=list)
    monthly_journal_entries: list[MonthlyCount] = Field(default_factory=list)
    top_customers: list[CustomerTotal] = Field(default_factory=list)
    transaction_type_breakdown: list[TypeBreakdown] = Field(default_factory=list)
    category_breakdown: list[CategoryBreakdown] = Field(default_factory=list)
    sync_status_breakdown: dict[str, int] = Field(default_factory=dict)


class AnalysisResponse(BaseModel):
    """Answer from the analysis agent, with Chart.js chart configs."""

    answer: str = ""
    insights: list[str] = Field(default_factory=list)
    charts: list[dict[str, Any]] = Field(default_factory=list)
    source: str = Field(default="model", description="model or fallback")

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "answer": "Payments peaked in March 2024.",
                "insights": ["Total payments in range: $48,210.00."],
                "charts": [
                    {
                        "title": "Payments by Month",
                        "type": "bar",
                        "data": {"labels": ["2024-03"], "datasets": [{"label": "Payments", "data": [9120.0]}]},
                    }
                ],
                "source": "model",
            }
        }
