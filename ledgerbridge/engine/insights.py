"""
Read-only summary over the local store.

Feeds the dashboard endpoint and is the only context the analysis agent
receives.
"""

from typing import Optional

import structlog

from ledgerbridge.config import Settings, get_settings
from ledgerbridge.models.analysis import (
    CategoryBreakdown,
    CustomerTotal,
    DateRange,
    MonthlyCount,
    MonthlyTotal,
    Summary,
    TypeBreakdown,
)
from ledgerbridge.storage.base import StorageBackend

logger = structlog.get_logger(__name__)


class InsightsService:
    """Builds aggregate views of the synchronized data."""

    TOP_CUSTOMERS = 10

    def __init__(self, storage: StorageBackend, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()

    def build_summary(self) -> Summary:
        counts = self.storage.count_entities()
        payments = self.storage.read_payment_totals()

        summary = Summary(
            date_range=DateRange(
                start=self.settings.data_start_date,
                end=self.settings.data_end_date,
            ),
            total_customers=counts["customers"],
            total_payments=payments["total"],
            payment_count=payments["count"],
            total_journal_entries=counts["journal_entries"],
            total_accounts=counts["accounts"],
            total_transaction_rows=counts["transaction_list_rows"],
            monthly_payments=[MonthlyTotal(**m) for m in self.storage.read_monthly_payments()],
            monthly_journal_entries=[
                MonthlyCount(**m) for m in self.storage.read_monthly_journal_entries()
            ],
            top_customers=[
                CustomerTotal(**c) for c in self.storage.read_top_customers(self.TOP_CUSTOMERS)
            ],
            transaction_type_breakdown=[
                TypeBreakdown(**t) for t in self.storage.read_transaction_type_breakdown()
            ],
            category_breakdown=[
                CategoryBreakdown(**c) for c in self.storage.read_category_breakdown()
            ],
            sync_status_breakdown=self.storage.read_sync_status_breakdown(),
        )

        logger.debug(
            "summary_built",
            customers=summary.total_customers,
            payments=summary.payment_count,
            transaction_rows=summary.total_transaction_rows,
        )

        return summary
