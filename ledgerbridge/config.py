"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CATEGORIES = (
    "Income,COGS,Payroll,Rent,Utilities,Marketing,Travel,Software,"
    "Insurance,Repairs,Bank Fees,Taxes,Other"
)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # QuickBooks OAuth2
    intuit_client_id: str = Field(default="", description="Intuit OAuth2 client ID")
    intuit_client_secret: str = Field(default="", description="Intuit OAuth2 client secret")
    intuit_redirect_uri: str = Field(
        default="http://localhost:8000/api/v1/auth/callback",
        description="OAuth2 redirect URI",
    )
    intuit_env: str = Field(default="sandbox", description="Intuit environment (sandbox|production)")
    intuit_scopes: str = Field(
        default="com.intuit.quickbooks.accounting",
        description="OAuth2 scopes (comma-separated)",
    )

    # QuickBooks API behaviour
    qbo_minor_version: str = Field(default="70", description="QuickBooks API minor version")
    qbo_max_retries: int = Field(default=3, ge=1, description="Attempts for transient API failures")
    query_page_size: int = Field(default=1000, ge=1, le=1000, description="Query page size")
    token_refresh_skew_seconds: int = Field(
        default=120, ge=0, description="Refresh access token when expiring within this window"
    )

    # Ingestion window
    data_start_date: str = Field(default="2023-01-01", description="First day to ingest (YYYY-MM-DD)")
    data_end_date: str = Field(default="2026-01-31", description="Last day to ingest (YYYY-MM-DD)")
    report_chunk_months: int = Field(default=6, ge=1, description="Months per report window")

    # Chat-completion model (OpenAI-compatible)
    llm_api_key: str = Field(default="", description="Chat-completion API key")
    llm_base_url: str = Field(default="https://api.cerebras.ai/v1", description="Chat-completion base URL")
    llm_model: str = Field(default="zai-glm-4.7", description="Chat-completion model ID")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    llm_timeout_seconds: float = Field(default=60.0, gt=0, description="Chat-completion timeout")

    # Categorization
    transaction_categories: str = Field(
        default=DEFAULT_CATEGORIES, description="Allowed categories (comma-separated)"
    )
    categorize_batch_size: int = Field(default=30, ge=1, description="Rows per model request")
    categorize_default_limit: int = Field(default=200, ge=1)
    categorize_max_limit: int = Field(default=500, ge=1)

    # Push-back sync
    sync_default_limit: int = Field(default=50, ge=1)
    sync_max_limit: int = Field(default=200, ge=1)
    sync_error_max_length: int = Field(default=500, ge=20, description="Persisted error truncation")
    sync_apply_class: bool = Field(
        default=False, description="Also attach a ClassRef named after the category"
    )

    # Database
    db_path: str = Field(default="./data/ledgerbridge.duckdb", description="DuckDB file path")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @property
    def category_list(self) -> List[str]:
        """Allowed transaction categories."""
        return _split_csv(self.transaction_categories)

    @property
    def scope_list(self) -> List[str]:
        return _split_csv(self.intuit_scopes)

    @property
    def cors_origin_list(self) -> List[str]:
        return _split_csv(self.cors_origins)

    @property
    def intuit_auth_url(self) -> str:
        """Intuit authorization URL (same host for sandbox and production)."""
        return "https://appcenter.intuit.com/connect/oauth2"

    @property
    def intuit_token_url(self) -> str:
        """Construct Intuit token URL."""
        return "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

    @property
    def intuit_api_base_url(self) -> str:
        """Construct QuickBooks API base URL."""
        if self.intuit_env == "production":
            return "https://quickbooks.api.intuit.com"
        return "https://sandbox-quickbooks.api.intuit.com"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
