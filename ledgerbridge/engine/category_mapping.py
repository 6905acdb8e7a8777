"""
Category to QuickBooks account mapping.

Push-back resolves a category to an account in this order: the explicit
mapping table, then an active account whose name equals the category,
then an active account whose name contains it. Mappings can be set by
hand or auto-generated by scoring every mirrored account against
per-category rules.
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from ledgerbridge.config import Settings, get_settings
from ledgerbridge.models.entities import AccountRecord
from ledgerbridge.models.transactions import CategoryAccountMapping
from ledgerbridge.storage.base import StorageBackend

logger = structlog.get_logger(__name__)


EXPENSE_TYPES = ("expense", "other expense")


@dataclass(frozen=True)
class CategoryRule:
    """Scoring rule for one category; all values lowercase."""

    category: str
    types: tuple[str, ...]
    classifications: tuple[str, ...]
    keywords: tuple[str, ...] = field(default_factory=tuple)


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule("Income", ("income", "other income"), ("revenue",), ("sales", "revenue", "income")),
    CategoryRule("COGS", ("cost of goods sold",), ("expense",), ("cogs", "cost of goods", "inventory")),
    CategoryRule("Payroll", EXPENSE_TYPES, ("expense",), ("payroll", "salary", "wages")),
    CategoryRule("Rent", EXPENSE_TYPES, ("expense",), ("rent", "lease")),
    CategoryRule(
        "Utilities",
        EXPENSE_TYPES,
        ("expense",),
        ("utilities", "utility", "electric", "water", "gas", "internet"),
    ),
    CategoryRule("Marketing", EXPENSE_TYPES, ("expense",), ("marketing", "advertising", "ads")),
    CategoryRule("Travel", EXPENSE_TYPES, ("expense",), ("travel", "meals", "entertainment", "lodging")),
    CategoryRule("Software", EXPENSE_TYPES, ("expense",), ("software", "subscription", "saas")),
    CategoryRule("Insurance", EXPENSE_TYPES, ("expense",), ("insurance",)),
    CategoryRule("Repairs", EXPENSE_TYPES, ("expense",), ("repair", "maintenance")),
    CategoryRule(
        "Bank Fees", EXPENSE_TYPES, ("expense",), ("bank", "fee", "service charge", "merchant")
    ),
    CategoryRule("Taxes", EXPENSE_TYPES, ("expense",), ("tax",)),
    CategoryRule("Other", EXPENSE_TYPES, ("expense",)),
)


def _lower(value: Optional[str]) -> str:
    return (value or "").lower()


def score_account(account: AccountRecord, rule: CategoryRule) -> int:
    """
    Score how well an account fits a category.

    Account type match +4, classification match +2, keyword in the name or
    sub-type +5 (once), inactive account -2.
    """
    score = 0
    if account.active is False:
        score -= 2
    if _lower(account.account_type) in rule.types:
        score += 4
    if _lower(account.classification) in rule.classifications:
        score += 2

    name = _lower(account.name)
    sub_type = _lower(account.account_sub_type)
    if any(keyword in name or keyword in sub_type for keyword in rule.keywords):
        score += 5

    return score


def find_rule(category: str) -> Optional[CategoryRule]:
    wanted = category.lower()
    for rule in CATEGORY_RULES:
        if rule.category.lower() == wanted:
            return rule
    return None


class CategoryMappingService:
    """Reads, writes, auto-generates and resolves category mappings."""

    def __init__(self, storage: StorageBackend, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()

    def list_mappings(self) -> dict:
        """Current mappings with the allowed categories and known accounts."""
        return {
            "categories": self.settings.category_list,
            "mappings": self.storage.read_category_mappings(),
            "accounts": self.storage.read_accounts(),
        }

    def upsert_mapping(self, category: str, account_id: str) -> CategoryAccountMapping:
        """Map a category to an account; the account name is looked up locally."""
        account = self.storage.read_account(account_id)
        mapping = CategoryAccountMapping(
            category=category,
            account_id=account_id,
            account_name=account.name if account else None,
        )
        self.storage.write_category_mapping(mapping)
        return mapping

    def auto_generate(self, categories: Optional[list[str]] = None) -> list[CategoryAccountMapping]:
        """
        Map every unmapped category with a rule to its best-scoring account.

        Only accounts with a positive score are used; ties keep the first
        account in name order.

        Returns:
            Mappings created by this call
        """
        categories = categories if categories is not None else self.settings.category_list
        accounts = self.storage.read_accounts()
        existing = {m.category.lower() for m in self.storage.read_category_mappings()}

        created: list[CategoryAccountMapping] = []
        for category in categories:
            if category.lower() in existing:
                continue
            rule = find_rule(category)
            if rule is None:
                continue

            best: Optional[AccountRecord] = None
            best_score = 0
            for account in accounts:
                score = score_account(account, rule)
                if score > best_score:
                    best, best_score = account, score

            if best is None:
                continue

            mapping = CategoryAccountMapping(
                category=category, account_id=best.qbo_id, account_name=best.name
            )
            self.storage.write_category_mapping(mapping)
            created.append(mapping)

        logger.info(
            "category_mappings_generated",
            created=len(created),
            categories=[m.category for m in created],
        )
        return created

    def resolve_account(self, category: str) -> Optional[dict[str, str]]:
        """
        Resolve a category to a QuickBooks ``AccountRef``.

        Returns:
            ``{"value": account_id, "name": account_name}`` or None
        """
        mapping = self.storage.read_category_mapping(category)
        if mapping is not None:
            ref = {"value": mapping.account_id}
            if mapping.account_name:
                ref["name"] = mapping.account_name
            return ref

        wanted = category.strip().lower()
        if not wanted:
            return None

        accounts = [a for a in self.storage.read_accounts(active_only=True) if a.name]
        match = next((a for a in accounts if a.name.lower() == wanted), None)
        if match is None:
            match = next((a for a in accounts if wanted in a.name.lower()), None)
        if match is None:
            return None

        return {"value": match.qbo_id, "name": match.name}
