"""
Transaction categorization engine.

Rows not yet categorized are sent to the chat model in fixed-size batches
using only the counterparty name. Each row gets the model's category when
it is one of the allowed categories (case-insensitive), otherwise a
deterministic keyword heuristic over the name decides. A batch whose model
call fails is categorized entirely by the heuristic; the run itself never
fails because of the model.
"""

import json
import re
from typing import Any, Callable, Optional

import structlog

from ledgerbridge.config import Settings, get_settings
from ledgerbridge.connectors.llm_client import ChatCompletionClient, LLMClientError
from ledgerbridge.models.transactions import TransactionListRow
from ledgerbridge.storage.base import StorageBackend, StorageError

logger = structlog.get_logger(__name__)


FALLBACK_CATEGORY = "Other"
INCOME_CATEGORY = "Income"

# Ordered; the first match wins.
CATEGORY_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\b(payroll|salary|salaries|wages|gusto|paychex|adp)\b", re.I), "Payroll"),
    (re.compile(r"\b(rent|rental|lease)\b", re.I), "Rent"),
    (
        re.compile(
            r"\b(electric|electricity|gas|water|utility|utilities|internet|comcast|verizon|at&t)\b",
            re.I,
        ),
        "Utilities",
    ),
    (
        re.compile(r"\b(marketing|advertising|ads|adwords|facebook|google ads|linkedin)\b", re.I),
        "Marketing",
    ),
    (re.compile(r"\b(uber|lyft|airlines?|airbnb|hotels?|travel|expedia)\b", re.I), "Travel"),
    (
        re.compile(r"\b(software|saas|aws|azure|gcp|github|gitlab|slack|notion|zoom)\b", re.I),
        "Software",
    ),
    (re.compile(r"\binsurance\b", re.I), "Insurance"),
    (re.compile(r"\b(repairs?|maintenance)\b", re.I), "Repairs"),
    (re.compile(r"\b(bank fees?|fees?|service charges?)\b", re.I), "Bank Fees"),
    (re.compile(r"\b(tax|taxes|irs|vat)\b", re.I), "Taxes"),
    (re.compile(r"\b(inventory|cogs|cost of goods)\b", re.I), "COGS"),
)

SALES_TYPE_PATTERN = re.compile(r"invoice|salesreceipt|payment|deposit", re.I)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.I | re.S)

SYSTEM_PROMPT = (
    "You are a bookkeeping categorization assistant. Use the transaction name to pick "
    "exactly one category from the provided list. Return ONLY a JSON array. Each element "
    'must be: {"id": number, "category": "<one of categories>"}. If unsure, use "Other". '
    "No extra text."
)

ProgressCallback = Callable[[dict[str, int]], None]


def match_category(category: Any, allowed: list[str]) -> Optional[str]:
    """Return the allowed category equal to ``category`` ignoring case, if any."""
    if not isinstance(category, str):
        return None
    wanted = category.strip().lower()
    for candidate in allowed:
        if candidate.lower() == wanted:
            return candidate
    return None


def normalize_category(category: Any, allowed: list[str]) -> str:
    """Coerce ``category`` onto the allowed list, defaulting to ``Other``."""
    return match_category(category, allowed) or FALLBACK_CATEGORY


def heuristic_category(
    name: Optional[str],
    txn_type: Optional[str],
    allowed: list[str],
) -> str:
    """
    Keyword fallback over the counterparty name.

    Sales-like transaction types with no keyword match default to Income.
    """
    text = name or ""
    for pattern, category in CATEGORY_RULES:
        if pattern.search(text):
            return normalize_category(category, allowed)

    compact_type = re.sub(r"\s+", "", txn_type or "")
    if SALES_TYPE_PATTERN.search(compact_type):
        return normalize_category(INCOME_CATEGORY, allowed)

    return normalize_category(FALLBACK_CATEGORY, allowed)


def extract_json_array(content: str) -> Optional[list]:
    """
    Pull a JSON array out of a model response.

    Code fences are unwrapped; when the text still does not parse, the
    substring between the first ``[`` and the last ``]`` is tried.
    """
    if not content:
        return None

    fenced = _FENCED_BLOCK.search(content)
    candidate = fenced.group(1).strip() if fenced else content.strip()

    try:
        parsed = json.loads(candidate)
    except ValueError:
        start = candidate.find("[")
        end = candidate.rfind("]")
        if start == -1 or end <= start:
            return None
        try:
            parsed = json.loads(candidate[start : end + 1])
        except ValueError:
            return None

    return parsed if isinstance(parsed, list) else None


def _row_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if 0.0 <= value <= 1.0 else None


class TransactionCategorizer:
    """
    Categorizes transaction list rows with the chat model and heuristics.

    Rows and batches are processed strictly sequentially and every row's
    result is written as soon as it is known.
    """

    def __init__(
        self,
        storage: StorageBackend,
        llm_client: ChatCompletionClient,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.llm_client = llm_client
        self.settings = settings or get_settings()

    @property
    def categories(self) -> list[str]:
        return self.settings.category_list

    def _build_messages(self, batch: list[TransactionListRow]) -> list[dict[str, str]]:
        prompt = {
            "categories": self.categories,
            "transactions": [{"id": row.id, "name": row.name or ""} for row in batch],
        }
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(prompt)},
        ]

    async def classify_batch(self, batch: list[TransactionListRow]) -> dict[int, dict]:
        """
        Ask the model for categories.

        Returns:
            Model results keyed by row id; unparsable output yields ``{}``

        Raises:
            LLMClientError: If the model call fails
        """
        content = await self.llm_client.complete(self._build_messages(batch))
        parsed = extract_json_array(content)
        if parsed is None:
            logger.warning("categorization_response_unparsable", batch_size=len(batch))
            return {}

        results: dict[int, dict] = {}
        for item in parsed:
            if not isinstance(item, dict):
                continue
            row_id = _row_id(item.get("id"))
            if row_id is not None and item.get("category"):
                results[row_id] = item
        return results

    async def categorize(
        self,
        limit: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> dict[str, int]:
        """
        Categorize up to ``limit`` rows not yet categorized, most recent first.

        Args:
            limit: Maximum rows to select
            on_progress: Called after every row with running totals

        Returns:
            ``{"processed", "categorized", "failed"}`` where ``failed`` counts
            rows whose result could not be written

        Raises:
            StorageError: If rows cannot be selected or marked
        """
        rows = self.storage.read_rows_for_categorization(limit)
        total = len(rows)
        processed = categorized = failed = 0

        logger.info("categorization_started", total=total, limit=limit)

        if not rows:
            return {"processed": 0, "categorized": 0, "failed": 0}

        batch_size = self.settings.categorize_batch_size
        allowed = self.categories

        for offset in range(0, total, batch_size):
            batch = rows[offset : offset + batch_size]
            self.storage.mark_rows_categorizing([row.id for row in batch])

            try:
                results = await self.classify_batch(batch)
                source = "model"
            except LLMClientError as e:
                logger.warning(
                    "categorization_batch_fallback",
                    batch_size=len(batch),
                    error=str(e),
                )
                results = {}
                source = "heuristic"

            for row in batch:
                result = results.get(row.id)
                if result:
                    matched = match_category(result.get("category"), allowed)
                    category = matched or FALLBACK_CATEGORY
                    confidence = _confidence(result.get("confidence")) if matched else None
                else:
                    category = heuristic_category(row.name, row.txn_type, allowed)
                    confidence = None

                try:
                    self.storage.write_categorization(row.id, category, confidence)
                    categorized += 1
                except StorageError as e:
                    failed += 1
                    logger.error("categorization_write_failed", row_id=row.id, error=str(e))

                processed += 1
                if on_progress:
                    on_progress(
                        {
                            "total": total,
                            "processed": processed,
                            "categorized": categorized,
                            "failed": failed,
                        }
                    )

            logger.debug(
                "categorization_batch_complete",
                batch_size=len(batch),
                source=source,
                processed=processed,
            )

        logger.info(
            "categorization_complete",
            total=total,
            processed=processed,
            categorized=categorized,
            failed=failed,
        )

        return {"processed": processed, "categorized": categorized, "failed": failed}
