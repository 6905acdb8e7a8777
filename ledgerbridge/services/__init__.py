"""
Process-wide service wiring.

Every component is created once per process and cached. The functions
below are the operations exposed to the HTTP layer:

    ingest_all()            full ingestion, raises on any failure
    categorize(limit)       start (or observe) the categorize job
    get_categorize_job()    categorize job snapshot
    sync(limit)             start (or observe) the push-back job
    get_sync_job()          push-back job snapshot
    build_summary()         aggregate view of the local store
    run_analysis_agent(q)   analysis agent answer
"""

from functools import lru_cache
from typing import Optional

from ledgerbridge.config import get_settings
from ledgerbridge.connectors.ingestion_service import IngestionService
from ledgerbridge.connectors.llm_client import ChatCompletionClient
from ledgerbridge.connectors.qbo_client import QBOClient
from ledgerbridge.engine.analysis_agent import AnalysisAgent
from ledgerbridge.engine.categorizer import TransactionCategorizer
from ledgerbridge.engine.category_mapping import CategoryMappingService
from ledgerbridge.engine.insights import InsightsService
from ledgerbridge.engine.jobs import JobTracker, ProgressCallback
from ledgerbridge.engine.transaction_sync import TransactionSyncEngine
from ledgerbridge.models.analysis import AnalysisResponse, Summary
from ledgerbridge.models.enums import JobKind
from ledgerbridge.models.jobs import IngestionResult, JobState
from ledgerbridge.storage import get_storage


@lru_cache
def get_qbo_client() -> QBOClient:
    return QBOClient(get_storage())


@lru_cache
def get_llm_client() -> ChatCompletionClient:
    return ChatCompletionClient()


@lru_cache
def get_mapping_service() -> CategoryMappingService:
    return CategoryMappingService(get_storage())


@lru_cache
def get_insights_service() -> InsightsService:
    return InsightsService(get_storage())


def get_ingestion_service() -> IngestionService:
    return IngestionService(get_qbo_client(), get_storage())


def get_categorizer() -> TransactionCategorizer:
    return TransactionCategorizer(get_storage(), get_llm_client())


def get_sync_engine() -> TransactionSyncEngine:
    return TransactionSyncEngine(get_qbo_client(), get_storage(), get_mapping_service())


def get_analysis_agent() -> AnalysisAgent:
    return AnalysisAgent(get_insights_service(), get_llm_client())


async def _run_categorize(limit: int, on_progress: ProgressCallback) -> dict[str, int]:
    return await get_categorizer().categorize(limit, on_progress=on_progress)


async def _run_sync(limit: int, on_progress: ProgressCallback) -> dict[str, int]:
    return await get_sync_engine().sync(limit, on_progress=on_progress)


@lru_cache
def get_categorize_tracker() -> JobTracker:
    return JobTracker(JobKind.CATEGORIZE, _run_categorize)


@lru_cache
def get_sync_tracker() -> JobTracker:
    return JobTracker(JobKind.SYNC, _run_sync)


def _bounded(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


async def ingest_all() -> IngestionResult:
    return await get_ingestion_service().ingest_all()


async def categorize(limit: Optional[int] = None) -> JobState:
    settings = get_settings()
    return await get_categorize_tracker().start(
        _bounded(limit, settings.categorize_default_limit, settings.categorize_max_limit)
    )


def get_categorize_job() -> JobState:
    return get_categorize_tracker().get()


async def sync(limit: Optional[int] = None) -> JobState:
    settings = get_settings()
    return await get_sync_tracker().start(
        _bounded(limit, settings.sync_default_limit, settings.sync_max_limit)
    )


def get_sync_job() -> JobState:
    return get_sync_tracker().get()


def build_summary() -> Summary:
    return get_insights_service().build_summary()


async def run_analysis_agent(question: str) -> AnalysisResponse:
    return await get_analysis_agent().run(question)


def reset_services() -> None:
    """Drop every cached component (used between tests)."""
    for cached in (
        get_qbo_client,
        get_llm_client,
        get_mapping_service,
        get_insights_service,
        get_categorize_tracker,
        get_sync_tracker,
    ):
        cached.cache_clear()
