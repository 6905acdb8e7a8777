"""
Data ingestion router - Run a full pull from QuickBooks.
"""

from fastapi import APIRouter

from ledgerbridge import services
from ledgerbridge.models.jobs import IngestionResult
from ledgerbridge.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/run", response_model=IngestionResult)
async def run_ingestion():
    """
    Ingest Customers, Payments, JournalEntries, Accounts and the
    TransactionList report for the configured date range.

    Runs to completion before responding; any failure aborts the run and
    no totals are returned.
    """
    logger.info("ingestion_requested")
    return await services.ingest_all()
