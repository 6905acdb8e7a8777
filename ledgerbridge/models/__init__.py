"""
Pydantic v2 data models for LedgerBridge.

Model Organization:
    - enums: Persisted status values and job kinds
    - connection: OAuth2 credential pair for a QuickBooks company
    - entities: Local projections of mirrored QuickBooks entities
    - transactions: Transaction list rows and category mappings
    - jobs: Background job snapshots and ingestion results
    - analysis: Summary aggregates and analysis-agent responses
"""

from .analysis import (
    AnalysisResponse,
    CategoryBreakdown,
    CustomerTotal,
    DateRange,
    MonthlyCount,
    MonthlyTotal,
    Summary,
    TypeBreakdown,
)
from .connection import Connection
from .entities import AccountRecord, CustomerRecord, JournalEntryRecord, PaymentRecord
from .enums import AIStatus, JobKind, JobStatus, SyncStatus
from .jobs import CategorizeJobState, IngestionResult, JobState, SyncJobState
from .transactions import CategoryAccountMapping, TransactionListRow

__all__ = [
    # Enumerations
    "AIStatus",
    "JobKind",
    "JobStatus",
    "SyncStatus",
    # Credentials
    "Connection",
    # Mirrored entities
    "AccountRecord",
    "CustomerRecord",
    "JournalEntryRecord",
    "PaymentRecord",
    # Transactions
    "CategoryAccountMapping",
    "TransactionListRow",
    # Jobs
    "CategorizeJobState",
    "IngestionResult",
    "JobState",
    "SyncJobState",
    # Analysis
    "AnalysisResponse",
    "CategoryBreakdown",
    "CustomerTotal",
    "DateRange",
    "MonthlyCount",
    "MonthlyTotal",
    "Summary",
    "TypeBreakdown",
]
