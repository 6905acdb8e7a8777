"""
Chat-style analysis agent over the stored QuickBooks summary.

The model receives only the summary and the question and must answer with
a JSON object ``{answer, insights, charts}`` where charts are Chart.js
configs. When the model is unavailable or its output cannot be parsed, a
templated answer built from the summary is returned instead.
"""

import json
from typing import Any, Optional

import structlog

from ledgerbridge.connectors.llm_client import ChatCompletionClient, LLMClientError
from ledgerbridge.engine.insights import InsightsService
from ledgerbridge.models.analysis import AnalysisResponse, Summary

logger = structlog.get_logger(__name__)


SYSTEM_PROMPT = (
    "You are a financial analysis agent for QuickBooks data. Use only the provided "
    "summary data.\nReturn JSON only with keys: answer, insights (array of short bullets), "
    "charts (array).\nEach chart must be valid Chart.js config: {title, type, data, options}."
)

FALLBACK_ANSWER = (
    "Here is a quick summary based on stored QuickBooks data. "
    "Ask a specific question for deeper analysis."
)


def extract_json_object(content: str) -> Optional[dict]:
    """Parse the text between the first ``{`` and the last ``}``."""
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(content[start : end + 1])
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def fallback_response(summary: Summary) -> AnalysisResponse:
    """Templated answer: totals, top customer, latest month and a monthly chart."""
    insights = [f"Total payments in range: ${summary.total_payments:,.2f}."]

    if summary.top_customers:
        top = summary.top_customers[0]
        insights.append(f"Top customer by payments: {top.display_name or top.customer_ref}.")

    charts: list[dict[str, Any]] = []
    if summary.monthly_payments:
        last = summary.monthly_payments[-1]
        insights.append(
            f"Most recent month in data: {last.month} with ${last.total:,.2f} in payments."
        )
        charts.append(
            {
                "title": "Payments by Month",
                "type": "bar",
                "data": {
                    "labels": [m.month for m in summary.monthly_payments],
                    "datasets": [
                        {
                            "label": "Payments",
                            "data": [m.total for m in summary.monthly_payments],
                            "backgroundColor": "#1f77b4",
                        }
                    ],
                },
            }
        )

    return AnalysisResponse(
        answer=FALLBACK_ANSWER,
        insights=insights,
        charts=charts,
        source="fallback",
    )


class AnalysisAgent:
    """Answers questions over the stored summary with the chat model."""

    def __init__(self, insights: InsightsService, llm_client: ChatCompletionClient):
        self.insights = insights
        self.llm_client = llm_client

    @staticmethod
    def _user_payload(question: str, summary: Summary) -> str:
        return json.dumps(
            {
                "question": question,
                "dataRange": summary.date_range.model_dump(),
                "monthlyPayments": [m.model_dump() for m in summary.monthly_payments],
                "monthlyJournalEntries": [m.model_dump() for m in summary.monthly_journal_entries],
                "topCustomers": [c.model_dump() for c in summary.top_customers],
                "transactionTypeBreakdown": [
                    t.model_dump() for t in summary.transaction_type_breakdown
                ],
                "categoryBreakdown": [c.model_dump() for c in summary.category_breakdown],
                "totals": {
                    "customers": summary.total_customers,
                    "payments": summary.total_payments,
                    "journalEntries": summary.total_journal_entries,
                    "transactionRows": summary.total_transaction_rows,
                },
            }
        )

    async def run(self, question: str) -> AnalysisResponse:
        """
        Answer ``question``.

        Raises:
            ValueError: If the question is blank
        """
        if not question or not question.strip():
            raise ValueError("Missing message")

        summary = self.insights.build_summary()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self._user_payload(question.strip(), summary)},
        ]

        try:
            content = await self.llm_client.complete(messages)
        except LLMClientError as e:
            logger.warning("analysis_agent_fallback", reason="model_error", error=str(e))
            return fallback_response(summary)

        parsed = extract_json_object(content)
        if parsed is None:
            logger.warning("analysis_agent_fallback", reason="unparsable_response")
            return fallback_response(summary)

        insights = parsed.get("insights") or []
        charts = parsed.get("charts") or []
        return AnalysisResponse(
            answer=str(parsed.get("answer") or ""),
            insights=[str(item) for item in insights] if isinstance(insights, list) else [],
            charts=[c for c in charts if isinstance(c, dict)] if isinstance(charts, list) else [],
            source="model",
        )
