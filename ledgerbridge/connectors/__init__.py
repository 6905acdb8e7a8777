"""
QuickBooks Online and chat-model connectors for LedgerBridge.

Main Components:
    QBOClient: QuickBooks API client bound to the stored OAuth2 connection
    report_parser: Flattens TransactionList reports into typed rows
    IngestionService: Pulls entities and report windows into the local store
    ChatCompletionClient: OpenAI-compatible chat-completion client

Usage:
    >>> from ledgerbridge.connectors import IngestionService, QBOClient
    >>> from ledgerbridge.storage import get_storage
    >>>
    >>> storage = get_storage()
    >>> async with QBOClient(storage) as client:
    ...     result = await IngestionService(client, storage).ingest_all()
"""

from ledgerbridge.connectors.ingestion_service import (
    IngestionError,
    IngestionService,
    chunk_months,
)
from ledgerbridge.connectors.llm_client import ChatCompletionClient, LLMClientError
from ledgerbridge.connectors.qbo_client import QBOAPIError, QBOAuthError, QBOClient
from ledgerbridge.connectors.report_parser import parse_amount, parse_date, parse_report

__all__ = [
    # Core client
    "QBOClient",
    "QBOAuthError",
    "QBOAPIError",
    # Reports
    "parse_report",
    "parse_amount",
    "parse_date",
    # Ingestion orchestration
    "IngestionService",
    "IngestionError",
    "chunk_months",
    # Chat model
    "ChatCompletionClient",
    "LLMClientError",
]
