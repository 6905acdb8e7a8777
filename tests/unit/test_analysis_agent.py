"""
Unit tests for the summary builder and the analysis agent.
"""

import json
from datetime import date

import httpx
import pytest

from ledgerbridge.engine.analysis_agent import (
    FALLBACK_ANSWER,
    AnalysisAgent,
    extract_json_object,
    fallback_response,
)
from ledgerbridge.engine.insights import InsightsService
from ledgerbridge.models.analysis import DateRange, Summary
from ledgerbridge.models.entities import CustomerRecord, PaymentRecord
from tests.conftest import chat_response, json_response, make_row, request_json


@pytest.fixture
def populated_storage(storage):
    storage.upsert_customers([CustomerRecord.from_qbo({"Id": "c1", "DisplayName": "Acme"})])
    storage.upsert_payments(
        [
            PaymentRecord.from_qbo({"Id": "1", "TxnDate": "2024-01-10", "TotalAmt": 1200.5, "CustomerRef": {"value": "c1"}}),
            PaymentRecord.from_qbo({"Id": "2", "TxnDate": "2024-02-10", "TotalAmt": 300, "CustomerRef": {"value": "c1"}}),
        ]
    )
    storage.replace_transaction_window(
        date(2024, 1, 1), date(2024, 6, 30), [make_row(txn_type="Bill"), make_row(txn_type="Invoice")]
    )
    return storage


class TestInsightsService:
    def test_build_summary(self, populated_storage, settings):
        summary = InsightsService(populated_storage, settings).build_summary()

        assert summary.date_range == DateRange(start="2024-01-01", end="2024-12-31")
        assert summary.total_customers == 1
        assert summary.total_payments == pytest.approx(1500.5)
        assert summary.payment_count == 2
        assert summary.total_transaction_rows == 2
        assert [m.month for m in summary.monthly_payments] == ["2024-01", "2024-02"]
        assert summary.top_customers[0].display_name == "Acme"
        assert {t.txn_type for t in summary.transaction_type_breakdown} == {"Bill", "Invoice"}
        assert summary.sync_status_breakdown == {"none": 2}

    def test_empty_store(self, storage, settings):
        summary = InsightsService(storage, settings).build_summary()

        assert summary.total_payments == 0.0
        assert summary.monthly_payments == []
        assert summary.top_customers == []


class TestFallback:
    """Tests for the templated fallback answer."""

    def test_fallback_with_data(self, populated_storage, settings):
        summary = InsightsService(populated_storage, settings).build_summary()

        response = fallback_response(summary)

        assert response.source == "fallback"
        assert response.answer == FALLBACK_ANSWER
        assert response.insights[0] == "Total payments in range: $1,500.50."
        assert response.insights[1] == "Top customer by payments: Acme."
        assert response.insights[2] == "Most recent month in data: 2024-02 with $300.00 in payments."
        chart = response.charts[0]
        assert chart["title"] == "Payments by Month"
        assert chart["type"] == "bar"
        assert chart["data"]["labels"] == ["2024-01", "2024-02"]
        assert chart["data"]["datasets"][0]["backgroundColor"] == "#1f77b4"

    def test_fallback_without_data(self):
        response = fallback_response(Summary(date_range=DateRange(start="2024-01-01", end="2024-12-31")))

        assert response.insights == ["Total payments in range: $0.00."]
        assert response.charts == []


class TestExtractJsonObject:
    def test_object_inside_prose(self):
        assert extract_json_object('Here: {"answer": "ok"} done') == {"answer": "ok"}

    @pytest.mark.parametrize("content", ["", "nothing", "{broken", '["a"]'])
    def test_invalid(self, content):
        assert extract_json_object(content) is None


class TestAnalysisAgent:
    """Tests for model-backed answers."""

    @pytest.mark.asyncio
    async def test_model_answer(self, populated_storage, make_llm_client, settings):
        requests = []

        def handler(request):
            requests.append(request_json(request))
            return chat_response(
                json.dumps(
                    {
                        "answer": "January was the strongest month.",
                        "insights": ["Payments fell in February", 3],
                        "charts": [{"title": "t", "type": "line", "data": {}}, "bad"],
                    }
                )
            )

        agent = AnalysisAgent(InsightsService(populated_storage, settings), make_llm_client(handler))

        response = await agent.run("  Which month was best?  ")

        assert response.source == "model"
        assert response.answer == "January was the strongest month."
        assert response.insights == ["Payments fell in February", "3"]
        assert response.charts == [{"title": "t", "type": "line", "data": {}}]
        user_payload = json.loads(requests[0]["messages"][1]["content"])
        assert user_payload["question"] == "Which month was best?"
        assert user_payload["totals"]["payments"] == pytest.approx(1500.5)
        assert user_payload["dataRange"] == {"start": "2024-01-01", "end": "2024-12-31"}

    @pytest.mark.asyncio
    async def test_model_failure_returns_fallback(self, populated_storage, make_llm_client, settings):
        agent = AnalysisAgent(
            InsightsService(populated_storage, settings),
            make_llm_client(lambda r: httpx.Response(500, text="down")),
        )

        response = await agent.run("How are we doing?")

        assert response.source == "fallback"
        assert response.charts[0]["title"] == "Payments by Month"

    @pytest.mark.asyncio
    async def test_unparsable_answer_returns_fallback(self, populated_storage, make_llm_client, settings):
        agent = AnalysisAgent(
            InsightsService(populated_storage, settings),
            make_llm_client(lambda r: chat_response("Revenue looks fine.")),
        )

        assert (await agent.run("How are we doing?")).source == "fallback"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [[], {"choices": ["x"]}, {"choices": [{"message": {"content": ["x"]}}]}],
    )
    async def test_malformed_model_body_returns_fallback(self, populated_storage, make_llm_client, settings, payload):
        agent = AnalysisAgent(
            InsightsService(populated_storage, settings),
            make_llm_client(lambda r: json_response(payload)),
        )

        response = await agent.run("How are we doing?")

        assert response.source == "fallback"
        assert response.answer == FALLBACK_ANSWER

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", ["", "   ", None])
    async def test_blank_question_rejected(self, storage, make_llm_client, settings, question):
        agent = AnalysisAgent(InsightsService(storage, settings), make_llm_client(lambda r: chat_response("{}")))

        with pytest.raises(ValueError, match="Missing message"):
            await agent.run(question)
