"""
QuickBooks connection management router.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from ledgerbridge import services
from ledgerbridge.connectors.qbo_client import QBOAPIError, QBOAuthError
from ledgerbridge.storage import get_storage
from ledgerbridge.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class ConnectionStatus(BaseModel):
    """QuickBooks connection status."""

    connected: bool
    realm_id: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DisconnectResponse(BaseModel):
    """Disconnect response."""

    success: bool
    purged: bool
    message: str


class CompanyResponse(BaseModel):
    connected: bool
    company: Optional[dict[str, Any]] = None
    error: Optional[str] = None


@router.get("/status", response_model=ConnectionStatus)
async def get_connection_status():
    """
    Get the stored QuickBooks connection, if any.
    """
    connection = get_storage().get_connection()
    if connection is None:
        return ConnectionStatus(connected=False)

    return ConnectionStatus(
        connected=True,
        realm_id=connection.realm_id,
        token_expires_at=connection.access_token_expires_at,
        refresh_token_expires_at=connection.refresh_token_expires_at,
        updated_at=connection.updated_at,
    )


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect_quickbooks(
    purge: bool = Query(False, description="Also delete all mirrored QuickBooks data"),
):
    """
    Delete the stored connection, optionally purging mirrored data.
    """
    removed = services.get_qbo_client().disconnect()
    if purge:
        get_storage().purge_qbo_data()

    logger.info("connection_disconnect", removed=removed, purged=purge)

    message = "Disconnected from QuickBooks" if removed else "No QuickBooks connection stored"
    return DisconnectResponse(success=True, purged=purge, message=message)


@router.get("/company", response_model=CompanyResponse)
async def get_company_info():
    """
    Fetch CompanyInfo for the connected company.
    """
    try:
        company = await services.get_qbo_client().get_company_info()
    except (QBOAuthError, QBOAPIError) as e:
        logger.warning("company_info_unavailable", error=str(e))
        return CompanyResponse(connected=False, error=str(e))

    return CompanyResponse(connected=True, company=company)
