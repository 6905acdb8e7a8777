"""
Pytest configuration and shared fixtures for the LedgerBridge test suite.

Provides data factories, an isolated DuckDB store per test, settings
overrides and httpx mock transports standing in for QuickBooks and the
chat model.
"""

import json
import os
import tempfile
import uuid as _uuid
from datetime import date, datetime, timedelta
from typing import Callable, Optional

import httpx
import pytest

# Set testing environment BEFORE importing the app.
# DuckDB creates the file; the path must not exist yet.
_test_db_path = os.path.join(tempfile.gettempdir(), f"ledgerbridge_test_{_uuid.uuid4().hex[:8]}.duckdb")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ["LLM_API_KEY"] = ""
os.environ["DEV_MODE"] = "true"

from ledgerbridge.config import Settings
from ledgerbridge.connectors.llm_client import ChatCompletionClient
from ledgerbridge.connectors.qbo_client import QBOClient
from ledgerbridge.models.connection import Connection
from ledgerbridge.models.entities import AccountRecord
from ledgerbridge.models.transactions import TransactionListRow
from ledgerbridge.storage.duckdb_storage import DuckDBStorage

REALM_ID = "9130350000000001"

Handler = Callable[[httpx.Request], httpx.Response]


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_connection(
    realm_id: str = REALM_ID,
    expires_in: timedelta = timedelta(hours=1),
    refresh_expires_in: Optional[timedelta] = timedelta(days=100),
    **overrides,
) -> Connection:
    """Factory for a stored QuickBooks connection."""
    now = datetime.utcnow()
    defaults = dict(
        realm_id=realm_id,
        access_token="access-token",
        refresh_token="refresh-token",
        access_token_expires_at=now + expires_in,
        refresh_token_expires_at=now + refresh_expires_in if refresh_expires_in else None,
        updated_at=now,
    )
    defaults.update(overrides)
    return Connection(**defaults)


def make_row(
    txn_date: Optional[date] = date(2024, 3, 14),
    txn_type: Optional[str] = "Bill",
    name: Optional[str] = "Acme Supplies",
    window: tuple[date, date] = (date(2024, 1, 1), date(2024, 6, 30)),
    **overrides,
) -> TransactionListRow:
    """Factory for a transaction list row."""
    defaults = dict(
        report_start_date=window[0],
        report_end_date=window[1],
        txn_id="145",
        txn_date=txn_date,
        txn_type=txn_type,
        doc_num="1001",
        name=name,
        account="Office Supplies",
        amount=-125.5,
    )
    defaults.update(overrides)
    return TransactionListRow(**defaults)


def make_account(qbo_id: str, name: str, **overrides) -> AccountRecord:
    """Factory for a chart-of-accounts record."""
    defaults = dict(
        qbo_id=qbo_id,
        name=name,
        account_type="Expense",
        account_sub_type=None,
        classification="Expense",
        active=True,
    )
    defaults.update(overrides)
    return AccountRecord(**defaults)


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def query_text(request: httpx.Request) -> str:
    """The ``query`` parameter of a QuickBooks query request."""
    return request.url.params.get("query", "")


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content.decode() or "{}")


def chat_response(content: str) -> httpx.Response:
    return json_response({"choices": [{"message": {"role": "assistant", "content": content}}]})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment defaults that matter in tests."""
    return Settings(
        intuit_client_id="client-id",
        intuit_client_secret="client-secret",
        llm_api_key="test-key",
        llm_base_url="https://llm.test/v1",
        qbo_max_retries=3,
        query_page_size=1000,
        categorize_batch_size=2,
        data_start_date="2024-01-01",
        data_end_date="2024-12-31",
        report_chunk_months=6,
        sync_apply_class=False,
    )


@pytest.fixture
def storage(tmp_path):
    """Fresh DuckDB store per test."""
    store = DuckDBStorage(db_path=str(tmp_path / "ledgerbridge.duckdb"))
    yield store
    store.close()


@pytest.fixture
def connected_storage(storage):
    """Store holding a valid, non-expiring connection."""
    storage.save_connection(make_connection())
    return storage


@pytest.fixture
def make_qbo_client(settings):
    """Build a QBOClient whose HTTP traffic goes to ``handler``."""
    def _make(store, handler: Handler, **kwargs) -> QBOClient:
        client = QBOClient(
            store,
            settings=kwargs.pop("settings", settings),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            retry_backoff=0,
            **kwargs,
        )
        return client

    return _make


@pytest.fixture
def make_llm_client(settings):
    """Build a ChatCompletionClient whose HTTP traffic goes to ``handler``."""

    def _make(handler: Handler, **kwargs) -> ChatCompletionClient:
        return ChatCompletionClient(
            settings=kwargs.pop("settings", settings),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            **kwargs,
        )

    return _make
