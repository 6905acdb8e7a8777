"""
Authentication router - OAuth2 authorization flow with QuickBooks.
"""

import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from ledgerbridge import services
from ledgerbridge.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

STATE_TTL_SECONDS = 600
MAX_PENDING_STATES = 100

# States issued by /authorize and not yet consumed, with their issue time.
_pending_states: dict[str, float] = {}


def _prune_states(now: float) -> None:
    for state, issued_at in list(_pending_states.items()):
        if now - issued_at > STATE_TTL_SECONDS:
            del _pending_states[state]
    # Oldest first; dicts keep insertion order.
    while len(_pending_states) >= MAX_PENDING_STATES:
        del _pending_states[next(iter(_pending_states))]


def remember_state(state: str) -> None:
    """Record an issued state, dropping expired and surplus ones."""
    now = time.monotonic()
    _prune_states(now)
    _pending_states[state] = now


def consume_state(state: str) -> bool:
    """Remove ``state`` and report whether it was issued and still fresh."""
    issued_at = _pending_states.pop(state, None)
    if issued_at is None:
        return False
    return time.monotonic() - issued_at <= STATE_TTL_SECONDS


class OAuthInitResponse(BaseModel):
    """OAuth2 initialization response."""

    authorization_url: str
    state: str


class CallbackResponse(BaseModel):
    """Result of a completed authorization."""

    connected: bool
    realm_id: str
    access_token_expires_at: datetime
    refresh_token_expires_at: Optional[datetime] = None


@router.get("/authorize", response_model=OAuthInitResponse)
async def initiate_oauth():
    """
    Initiate OAuth2 flow with QuickBooks.
    Returns authorization URL for user to visit.
    """
    auth_url, state = services.get_qbo_client().get_authorization_url()
    remember_state(state)

    logger.info("oauth_initiated")

    return OAuthInitResponse(authorization_url=auth_url, state=state)


@router.get("/callback", response_model=CallbackResponse)
async def oauth_callback(
    code: str = Query(..., description="Authorization code from Intuit"),
    state: str = Query(..., description="State parameter for CSRF protection"),
    realmId: str = Query(..., description="QuickBooks company ID"),
):
    """
    OAuth2 callback endpoint.
    Exchanges the authorization code and stores the connection.
    """
    if not consume_state(state):
        logger.warning("oauth_state_unknown", realm_id=realmId)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown or expired OAuth state",
        )

    connection = await services.get_qbo_client().exchange_code(code, realmId)

    logger.info("oauth_callback_completed", realm_id=realmId)

    return CallbackResponse(
        connected=True,
        realm_id=connection.realm_id,
        access_token_expires_at=connection.access_token_expires_at,
        refresh_token_expires_at=connection.refresh_token_expires_at,
    )
