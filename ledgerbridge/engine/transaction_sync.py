"""
Push-back sync of categories to QuickBooks.

For every categorized row not yet synced, the live transaction is fetched,
its account-based lines are pointed at the account mapped to the row's
category and a sparse update is posted. Each row ends in exactly one
persisted outcome:

- ``skipped``: the row cannot be pushed as-is (missing data, unsupported
  entity or operation, no account, no updatable line, missing reference).
  Retrying without changing data or mappings would skip again.
- ``failed``: any other error while fetching or updating.
- ``synced``: the update was accepted.

Outcomes are written immediately, so an interrupted run leaves correct
partial progress and a rerun only retries rows that are not synced.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from ledgerbridge.config import Settings, get_settings
from ledgerbridge.connectors.qbo_client import QBOAPIError, QBOClient
from ledgerbridge.engine.category_mapping import CategoryMappingService
from ledgerbridge.models.enums import SyncStatus
from ledgerbridge.models.transactions import TransactionListRow
from ledgerbridge.storage.base import StorageBackend

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EntityTarget:
    """QuickBooks endpoint and response key for a transaction type."""

    endpoint: str
    key: str


ENTITY_MAP: dict[str, EntityTarget] = {
    "bill": EntityTarget("bill", "Bill"),
    "invoice": EntityTarget("invoice", "Invoice"),
    "payment": EntityTarget("payment", "Payment"),
    "salesreceipt": EntityTarget("salesreceipt", "SalesReceipt"),
    "purchase": EntityTarget("purchase", "Purchase"),
    "expense": EntityTarget("purchase", "Purchase"),
    "journalentry": EntityTarget("journalentry", "JournalEntry"),
    "deposit": EntityTarget("deposit", "Deposit"),
    "transfer": EntityTarget("transfer", "Transfer"),
    "creditmemo": EntityTarget("creditmemo", "CreditMemo"),
    "refundreceipt": EntityTarget("refundreceipt", "RefundReceipt"),
    "vendorcredit": EntityTarget("vendorcredit", "VendorCredit"),
    "check": EntityTarget("purchase", "Purchase"),
    "billpayment": EntityTarget("billpayment", "BillPayment"),
}

# Entities whose lines carry no account to re-point.
UNSUPPORTED_UPDATE_ENTITIES = frozenset({"Payment", "BillPayment", "CreditCardPayment", "Transfer"})

UPDATABLE_LINE_DETAILS = ("AccountBasedExpenseLineDetail", "JournalEntryLineDetail")

REQUIRED_REFS: dict[str, tuple[str, ...]] = {
    "Bill": ("VendorRef",),
    "VendorCredit": ("VendorRef",),
    "Invoice": ("CustomerRef",),
    "SalesReceipt": ("CustomerRef",),
    "CreditMemo": ("CustomerRef",),
    "RefundReceipt": ("CustomerRef",),
}

# Copied unchanged from the fetched transaction into the sparse update.
CARRY_THROUGH_FIELDS = (
    "VendorRef",
    "CustomerRef",
    "EntityRef",
    "CurrencyRef",
    "ExchangeRate",
    "TxnTaxDetail",
    "GlobalTaxCalculation",
    "DepartmentRef",
    "APAccountRef",
    "AccountRef",
    "PaymentType",
    "DepositToAccountRef",
    "TxnDate",
)

LINE_PASSTHROUGH_FIELDS = ("Id", "LineNum", "Description")

_UNSUPPORTED_OPERATION = re.compile(r"operation.*not supported", re.I | re.S)

ProgressCallback = Callable[[dict[str, int]], None]


class SyncSkip(Exception):
    """A row cannot be pushed back; carries the persisted reason."""

    pass


class SyncPayloadError(Exception):
    """The fetched transaction cannot be updated (e.g. no SyncToken)."""

    pass


def resolve_entity(txn_type: Optional[str]) -> Optional[EntityTarget]:
    """Map a report transaction type (e.g. "Sales Receipt") to its entity."""
    if not txn_type:
        return None
    return ENTITY_MAP.get(re.sub(r"\s+", "", txn_type).lower())


def is_unsupported_operation(message: str) -> bool:
    """True when a QuickBooks error says the operation is not supported."""
    return bool(_UNSUPPORTED_OPERATION.search(message or ""))


def build_line_updates(
    lines: Any,
    account_ref: dict[str, str],
    class_ref: Optional[dict[str, str]] = None,
) -> list[dict[str, Any]]:
    """
    Rewrite the account (and optionally class) of every updatable line.

    Lines whose detail type is not account-updatable are left out of the
    result entirely.
    """
    updates: list[dict[str, Any]] = []
    if not isinstance(lines, list):
        return updates

    for line in lines:
        if not isinstance(line, dict):
            continue
        detail_type = line.get("DetailType")
        if detail_type not in UPDATABLE_LINE_DETAILS:
            continue

        detail = dict(line.get(detail_type) or {})
        detail["AccountRef"] = dict(account_ref)
        if class_ref:
            detail["ClassRef"] = dict(class_ref)

        update: dict[str, Any] = {
            field: line[field] for field in LINE_PASSTHROUGH_FIELDS if field in line
        }
        update["DetailType"] = detail_type
        update["Amount"] = line.get("Amount")
        update[detail_type] = detail
        updates.append(update)

    return updates


class TransactionSyncEngine:
    """Pushes row categories back to QuickBooks, one row at a time."""

    def __init__(
        self,
        qbo_client: QBOClient,
        storage: StorageBackend,
        mapping_service: Optional[CategoryMappingService] = None,
        settings: Optional[Settings] = None,
    ):
        self.qbo_client = qbo_client
        self.storage = storage
        self.settings = settings or get_settings()
        self.mapping_service = mapping_service or CategoryMappingService(storage, self.settings)

    def _truncate(self, message: str) -> str:
        return message[: self.settings.sync_error_max_length]

    async def _push_row(self, row: TransactionListRow) -> Optional[str]:
        """
        Push one row.

        Returns:
            The QuickBooks Class id attached, if any

        Raises:
            SyncSkip: For every skip outcome
            QBOAPIError, SyncPayloadError: For failures
        """
        if not row.txn_id or not row.txn_type or not row.ai_category:
            raise SyncSkip("Missing txn_id, txn_type, or category.")

        entity = resolve_entity(row.txn_type)
        if entity is None:
            raise SyncSkip(f"Unsupported txn_type: {row.txn_type}")

        if entity.key in UNSUPPORTED_UPDATE_ENTITIES:
            raise SyncSkip(f"Updating {entity.key} lines is not supported.")

        account_ref = self.mapping_service.resolve_account(row.ai_category)
        if account_ref is None:
            raise SyncSkip(f"No account mapped for category {row.ai_category!r}.")

        response = await self.qbo_client.get_entity(entity.endpoint, row.txn_id)
        payload = response.get(entity.key) or {}
        if not payload.get("Id") or not payload.get("SyncToken"):
            raise SyncPayloadError("Missing Id or SyncToken in transaction payload.")

        for ref in REQUIRED_REFS.get(entity.key, ()):
            if not payload.get(ref):
                raise SyncSkip(f"{entity.key} {payload['Id']} has no {ref}.")

        lines = build_line_updates(payload.get("Line"), account_ref)
        if not lines:
            raise SyncSkip(f"{entity.key} {payload['Id']} has no account-updatable lines.")

        # The Class is only created once the update is known to be sendable.
        class_id = None
        if self.settings.sync_apply_class:
            class_id = await self.qbo_client.ensure_class(row.ai_category)
            class_ref = {"value": class_id, "name": row.ai_category}
            lines = build_line_updates(payload.get("Line"), account_ref, class_ref)

        update: dict[str, Any] = {
            "Id": payload["Id"],
            "SyncToken": payload["SyncToken"],
            "sparse": True,
            "Line": lines,
        }
        for field in CARRY_THROUGH_FIELDS:
            if field in payload:
                update[field] = payload[field]

        await self.qbo_client.post_entity(entity.endpoint, update)
        return class_id

    async def sync_row(self, row: TransactionListRow) -> SyncStatus:
        """Push one row and persist its outcome."""
        class_id = None
        error = None

        try:
            class_id = await self._push_row(row)
            status = SyncStatus.SYNCED
        except SyncSkip as e:
            status = SyncStatus.SKIPPED
            error = str(e)
        except QBOAPIError as e:
            detail = f"{e} {e.body or ''}"
            status = SyncStatus.SKIPPED if is_unsupported_operation(detail) else SyncStatus.FAILED
            error = str(e)
        except Exception as e:
            status = SyncStatus.FAILED
            error = str(e) or type(e).__name__

        if error is not None:
            error = self._truncate(error)

        self.storage.update_sync_status(row.id, status, error=error, class_id=class_id)

        logger.info(
            f"transaction_sync_{status.value}",
            row_id=row.id,
            txn_id=row.txn_id,
            txn_type=row.txn_type,
            category=row.ai_category,
            error=error,
        )

        return status

    async def sync(
        self,
        limit: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> dict[str, int]:
        """
        Push up to ``limit`` categorized, not-yet-synced rows, most recent first.

        Raises:
            QBOAuthError: If there is no usable connection
            StorageError: If rows cannot be read or an outcome cannot be stored
        """
        await self.qbo_client.get_valid_connection()

        rows = self.storage.read_rows_for_sync(limit)
        counts = {
            "total": len(rows),
            "processed": 0,
            SyncStatus.SYNCED.value: 0,
            SyncStatus.SKIPPED.value: 0,
            SyncStatus.FAILED.value: 0,
        }

        logger.info("transaction_sync_started", total=len(rows), limit=limit)

        for row in rows:
            status = await self.sync_row(row)
            counts[status.value] += 1
            counts["processed"] += 1
            if on_progress:
                on_progress(dict(counts))

        logger.info("transaction_sync_complete", **counts)
        return counts
