"""
Transactions router - list rows, run categorization and push-back jobs.
"""

from datetime import date
from typing import List, Optional, Union

from fastapi import APIRouter, Query
from pydantic import BaseModel

from ledgerbridge import services
from ledgerbridge.models.jobs import CategorizeJobState, SyncJobState
from ledgerbridge.models.transactions import TransactionListRow
from ledgerbridge.storage import get_storage
from ledgerbridge.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

MAX_PAGE_SIZE = 200
MAX_FAILURES = 50


class TransactionPage(BaseModel):
    """Paginated transaction list rows."""

    total: int
    limit: int
    offset: int
    rows: List[TransactionListRow]


class JobRequest(BaseModel):
    """Optional row limit for a background job (clamped to the configured bounds)."""

    limit: Optional[int] = None


class JobResponse(BaseModel):
    ok: bool = True
    job: Union[CategorizeJobState, SyncJobState]


class SyncFailure(BaseModel):
    id: Optional[int] = None
    txn_date: Optional[date] = None
    txn_type: Optional[str] = None
    name: Optional[str] = None
    account: Optional[str] = None
    amount: Optional[float] = None
    qb_sync_error: Optional[str] = None


class SyncFailuresResponse(BaseModel):
    rows: List[SyncFailure]


@router.get("", response_model=TransactionPage)
async def list_transactions(
    limit: int = Query(50, description="Page size (at most 200)"),
    offset: int = Query(0, description="Rows to skip"),
):
    """
    List transaction list rows, most recent first.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(offset, 0)

    storage = get_storage()
    return TransactionPage(
        total=storage.count_transaction_rows(),
        limit=limit,
        offset=offset,
        rows=storage.read_transaction_rows(limit=limit, offset=offset),
    )


@router.post("/categorize", response_model=JobResponse)
async def start_categorize(request: Optional[JobRequest] = None):
    """
    Start the categorize job, or return the running one unchanged.
    """
    limit = request.limit if request else None
    job = await services.categorize(limit)
    logger.info("categorize_requested", limit=limit, status=job.status.value)
    return JobResponse(job=job)


@router.get("/categorize/status", response_model=JobResponse)
async def categorize_status():
    return JobResponse(job=services.get_categorize_job())


@router.post("/sync", response_model=JobResponse)
async def start_sync(request: Optional[JobRequest] = None):
    """
    Start the push-back job, or return the running one unchanged.
    """
    limit = request.limit if request else None
    job = await services.sync(limit)
    logger.info("sync_requested", limit=limit, status=job.status.value)
    return JobResponse(job=job)


@router.get("/sync/status", response_model=JobResponse)
async def sync_status():
    return JobResponse(job=services.get_sync_job())


@router.get("/sync/failures", response_model=SyncFailuresResponse)
async def sync_failures(limit: int = Query(10, description="Rows to return (at most 50)")):
    """
    Most recently failed push-back rows with their errors.
    """
    limit = max(1, min(limit, MAX_FAILURES))
    rows = get_storage().read_sync_failures(limit)
    return SyncFailuresResponse(
        rows=[SyncFailure(**row.model_dump(include=set(SyncFailure.model_fields))) for row in rows]
    )
