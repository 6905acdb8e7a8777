"""
Accounts router - transaction activity per account.
"""

from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from ledgerbridge.storage import get_storage

router = APIRouter()


class AccountActivity(BaseModel):
    name: str
    account_type: Optional[str] = None
    account_sub_type: Optional[str] = None
    classification: Optional[str] = None
    txn_count: int
    total_amount: float


class AccountActivityResponse(BaseModel):
    rows: List[AccountActivity]


@router.get("", response_model=AccountActivityResponse)
async def account_activity():
    """Transaction row counts and totals per account name."""
    return AccountActivityResponse(
        rows=[AccountActivity(**row) for row in get_storage().read_account_activity()]
    )
