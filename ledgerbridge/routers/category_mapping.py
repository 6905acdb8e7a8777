"""
Category mapping router - map categories to QuickBooks accounts.
"""

from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ledgerbridge import services
from ledgerbridge.models.entities import AccountRecord
from ledgerbridge.models.transactions import CategoryAccountMapping
from ledgerbridge.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class AccountOption(BaseModel):
    qbo_id: str
    name: Optional[str] = None
    account_type: Optional[str] = None
    account_sub_type: Optional[str] = None
    classification: Optional[str] = None

    @classmethod
    def from_record(cls, record: AccountRecord) -> "AccountOption":
        return cls(**record.model_dump(include=set(cls.model_fields)))


class MappingOverview(BaseModel):
    """Allowed categories, current mappings and accounts to choose from."""

    categories: List[str]
    mappings: List[CategoryAccountMapping]
    accounts: List[AccountOption]


class MappingRequest(BaseModel):
    category: str = Field(min_length=1)
    account_id: str = Field(min_length=1)


class MappingResponse(BaseModel):
    ok: bool = True
    mapping: CategoryAccountMapping


class AutoMappingResponse(BaseModel):
    ok: bool = True
    created: List[CategoryAccountMapping]


@router.get("", response_model=MappingOverview)
async def list_mappings():
    overview = services.get_mapping_service().list_mappings()
    return MappingOverview(
        categories=overview["categories"],
        mappings=overview["mappings"],
        accounts=[AccountOption.from_record(a) for a in overview["accounts"]],
    )


@router.post("", response_model=MappingResponse)
async def upsert_mapping(request: MappingRequest):
    """
    Map a category to a QuickBooks account.
    """
    mapping = services.get_mapping_service().upsert_mapping(request.category, request.account_id)
    logger.info("category_mapping_saved", category=mapping.category, account_id=mapping.account_id)
    return MappingResponse(mapping=mapping)


@router.post("/auto", response_model=AutoMappingResponse)
async def auto_generate_mappings():
    """
    Map every unmapped category to its best-scoring account.
    """
    created = services.get_mapping_service().auto_generate()
    return AutoMappingResponse(created=created)
