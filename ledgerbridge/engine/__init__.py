"""
Processing engines for LedgerBridge.

Components:
    TransactionCategorizer: Model-based categorization with keyword fallback
    CategoryMappingService: Category to QuickBooks account mapping
    TransactionSyncEngine: Push-back of categories to QuickBooks
    JobTracker: Single-slot background job state
    InsightsService: Read-only summary over the local store
    AnalysisAgent: Chat-style questions over the summary
"""

from .analysis_agent import AnalysisAgent
from .categorizer import TransactionCategorizer
from .category_mapping import CategoryMappingService
from .insights import InsightsService
from .jobs import JobTracker
from .transaction_sync import TransactionSyncEngine

__all__ = [
    "AnalysisAgent",
    "CategoryMappingService",
    "InsightsService",
    "JobTracker",
    "TransactionCategorizer",
    "TransactionSyncEngine",
]
