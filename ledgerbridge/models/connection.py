"""
QuickBooks connection (OAuth2 credential pair) model.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class Connection(BaseModel):
    """
    OAuth2 credentials for a single QuickBooks company (realm).

    At most one connection is authoritative at a time: lookups without a
    realm return the most recently updated record.

    Attributes:
        realm_id: QuickBooks company ID
        access_token: Bearer token for API calls
        refresh_token: Token used to mint new access tokens
        access_token_expires_at: Naive UTC expiry of the access token
        refresh_token_expires_at: Naive UTC expiry of the refresh token, if known
        updated_at: Last time the credential pair was written
    """

    realm_id: str = Field(description="QuickBooks company ID")
    access_token: str = Field(description="OAuth2 access token")
    refresh_token: str = Field(description="OAuth2 refresh token")
    access_token_expires_at: datetime = Field(description="Access token expiry (UTC)")
    refresh_token_expires_at: Optional[datetime] = Field(
        default=None, description="Refresh token expiry (UTC)"
    )
    updated_at: Optional[datetime] = Field(default=None, description="Last write time")

    @field_validator("realm_id")
    @classmethod
    def validate_realm_id_not_empty(cls, v: str) -> str:
        """Ensure realm ID is not empty."""
        if not v or not v.strip():
            raise ValueError("realm_id cannot be empty")
        return v.strip()

    def expires_within(self, seconds: int, now: Optional[datetime] = None) -> bool:
        """Return True when the access token expires within ``seconds``."""
        now = now or datetime.utcnow()
        return now + timedelta(seconds=seconds) >= self.access_token_expires_at

    def refresh_token_expired(self, now: Optional[datetime] = None) -> bool:
        if self.refresh_token_expires_at is None:
            return False
        return (now or datetime.utcnow()) >= self.refresh_token_expires_at

    @classmethod
    def from_token_response(
        cls,
        realm_id: str,
        token_data: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> "Connection":
        """Build a connection from an Intuit token endpoint response."""
        now = now or datetime.utcnow()
        refresh_expires_in = token_data.get("x_refresh_token_expires_in")
        return cls(
            realm_id=realm_id,
            access_token=token_data["access_token"],
            refresh_token=token_data["refresh_token"],
            access_token_expires_at=now + timedelta(seconds=int(token_data.get("expires_in", 3600))),
            refresh_token_expires_at=(
                now + timedelta(seconds=int(refresh_expires_in)) if refresh_expires_in else None
            ),
            updated_at=now,
        )
