"""
In-memory job state models for the background categorize and sync jobs.

Job state is never persisted. A restart resets every job kind to ``idle``;
row statuses in the local store remain the source of truth for work that was
already dispatched.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .enums import JobKind, JobStatus


class JobState(BaseModel):
    """
    Snapshot of a single-slot background job.

    Attributes:
        kind: Job kind this slot belongs to
        status: idle, running, done or error
        total: Rows selected for the run (known after selection)
        processed: Rows that reached a terminal outcome so far
        failed: Rows counted as failed
        started_at: When the current/last run started
        finished_at: When the current/last run ended
        error: Error message when the run itself failed
    """

    kind: JobKind
    status: JobStatus = JobStatus.IDLE
    total: int = Field(default=0, ge=0)
    processed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


class CategorizeJobState(JobState):
    """Categorize job snapshot."""

    kind: JobKind = JobKind.CATEGORIZE
    categorized: int = Field(default=0, ge=0)


class SyncJobState(JobState):
    """Push-back sync job snapshot."""

    kind: JobKind = JobKind.SYNC
    synced: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)


class IngestionResult(BaseModel):
    """Totals reported by a fully successful ingestion run."""

    customers: int = Field(ge=0, description="Customer records in the local store")
    payments: int = Field(ge=0, description="Payment records in the local store")
    journal_entries: int = Field(ge=0, description="Journal entry records in the local store")
    accounts: int = Field(ge=0, description="Account records in the local store")
    transaction_list_rows: int = Field(ge=0, description="Transaction list rows in the local store")
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    windows: list[tuple[str, str]] = Field(
        default_factory=list, description="Report windows ingested in this run"
    )
