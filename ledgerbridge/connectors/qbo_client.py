"""
QuickBooks Online API client with OAuth2 token management.

This module provides the async client used by ingestion and push-back sync:
- OAuth2 authorization flow (3-legged OAuth) persisted to the credential store
- Automatic token refresh when the access token is about to expire
- Structured queries with start-position pagination
- Report, entity read and sparse-update endpoints
- Rate limiting and retry logic for transient failures
"""

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog

from ledgerbridge.config import Settings, get_settings
from ledgerbridge.models.connection import Connection
from ledgerbridge.storage.base import StorageBackend

logger = structlog.get_logger(__name__)


class QBOAuthError(Exception):
    """Raised when there is no usable QuickBooks connection or OAuth2 fails."""

    pass


class QBOAPIError(Exception):
    """
    Raised when a QuickBooks API request fails.

    Attributes:
        status_code: HTTP status of the failed response, if one was received
        body: Response body text, if one was received
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class QBOClient:
    """
    QuickBooks Online API client bound to the stored connection.

    Credentials are never held in memory between calls: each request reads
    the authoritative connection from the credential store, refreshes it
    when it expires within the configured skew window and persists the new
    pair before proceeding.

    Attributes:
        storage: Credential store (and local store) backend
        settings: Application settings
        realm_id: Optional company ID; defaults to the latest connection
    """

    # Rate limiting: QuickBooks allows 500 requests per minute
    RATE_LIMIT_REQUESTS = 500
    RATE_LIMIT_WINDOW = 60  # seconds

    def __init__(
        self,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        realm_id: Optional[str] = None,
        retry_backoff: float = 1.0,
    ):
        """
        Initialize QuickBooks Online API client.

        Args:
            storage: Credential store backend
            settings: Settings instance (defaults to cached settings)
            http_client: Optional pre-built httpx client (tests inject a mock transport)
            realm_id: QuickBooks company ID (optional)
            retry_backoff: Base seconds for exponential backoff between retries
        """
        self.storage = storage
        self.settings = settings or get_settings()
        self.realm_id = realm_id
        self.retry_backoff = retry_backoff

        self._http_client = http_client
        self._request_times: list[datetime] = []

        logger.info(
            "qbo_client_initialized",
            environment=self.settings.intuit_env,
            realm_id=realm_id,
            has_credentials=bool(self.settings.intuit_client_id and self.settings.intuit_client_secret),
        )

    async def __aenter__(self):
        """Async context manager entry."""
        if not self._http_client:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if not self._http_client:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    # =========================================================================
    # OAuth2
    # =========================================================================

    def get_authorization_url(self, state: Optional[str] = None) -> tuple[str, str]:
        """
        Generate OAuth2 authorization URL for user consent.

        Args:
            state: CSRF state; a random one is generated when omitted

        Returns:
            Tuple of (authorization URL, state)
        """
        state = state or secrets.token_hex(16)

        params = {
            "client_id": self.settings.intuit_client_id,
            "response_type": "code",
            "scope": " ".join(self.settings.scope_list),
            "redirect_uri": self.settings.intuit_redirect_uri,
            "state": state,
        }

        auth_url = f"{self.settings.intuit_auth_url}?{urlencode(params)}"

        logger.info(
            "authorization_url_generated",
            redirect_uri=self.settings.intuit_redirect_uri,
            scopes=self.settings.scope_list,
        )

        return auth_url, state

    async def _token_request(self, data: dict[str, str], event: str) -> dict[str, Any]:
        headers = {"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"}

        try:
            response = await self._client().post(
                self.settings.intuit_token_url,
                data=data,
                headers=headers,
                auth=(self.settings.intuit_client_id, self.settings.intuit_client_secret),
            )
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                f"{event}_failed",
                status_code=e.response.status_code,
                error=e.response.text,
            )
            raise QBOAuthError(
                f"Token exchange failed ({e.response.status_code}): {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{event}_error", error=str(e))
            raise QBOAuthError(f"Unexpected error during token exchange: {e}") from e

    async def exchange_code(self, auth_code: str, realm_id: str) -> Connection:
        """
        Exchange an authorization code for tokens and persist the connection.

        Args:
            auth_code: Authorization code from callback
            realm_id: Company ID from callback

        Returns:
            The stored connection

        Raises:
            QBOAuthError: If code exchange fails
        """
        token_data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": auth_code,
                "redirect_uri": self.settings.intuit_redirect_uri,
            },
            "oauth_code_exchange",
        )

        connection = Connection.from_token_response(realm_id, token_data)
        self.storage.save_connection(connection)

        logger.info(
            "oauth_code_exchanged",
            realm_id=realm_id,
            token_type=token_data.get("token_type"),
            expires_in=token_data.get("expires_in"),
        )

        return connection

    async def refresh_tokens(self, connection: Connection) -> Connection:
        """
        Refresh the access token and persist the new credential pair.

        Refresh failures are not retried.

        Raises:
            QBOAuthError: If the refresh token expired or the exchange fails
        """
        if connection.refresh_token_expired():
            logger.error(
                "refresh_token_expired",
                realm_id=connection.realm_id,
                expiry=connection.refresh_token_expires_at,
            )
            raise QBOAuthError("Refresh token expired - user re-authentication required")

        token_data = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": connection.refresh_token},
            "token_refresh",
        )

        refreshed = Connection.from_token_response(connection.realm_id, token_data)
        if refreshed.refresh_token_expires_at is None:
            refreshed.refresh_token_expires_at = connection.refresh_token_expires_at
        self.storage.save_connection(refreshed)

        logger.info(
            "tokens_refreshed",
            realm_id=connection.realm_id,
            expires_in=token_data.get("expires_in"),
        )

        return refreshed

    async def get_valid_connection(self, realm_id: Optional[str] = None) -> Connection:
        """
        Get a connection whose access token is usable right now.

        Raises:
            QBOAuthError: If no connection is stored or refresh fails
        """
        connection = self.storage.get_connection(realm_id or self.realm_id)
        if connection is None:
            raise QBOAuthError("QuickBooks connection not found. Connect your account first.")

        if connection.expires_within(self.settings.token_refresh_skew_seconds):
            logger.info(
                "access_token_expiring",
                realm_id=connection.realm_id,
                expiry=connection.access_token_expires_at.isoformat(),
            )
            connection = await self.refresh_tokens(connection)

        return connection

    def disconnect(self, realm_id: Optional[str] = None) -> bool:
        """Delete the stored connection. Returns True when one was removed."""
        connection = self.storage.get_connection(realm_id or self.realm_id)
        if connection is None:
            return False
        return self.storage.delete_connection(connection.realm_id)

    # =========================================================================
    # Requests
    # =========================================================================

    async def _rate_limit_wait(self) -> None:
        """
        Delay execution when the per-minute request budget is exhausted.
        """
        now = datetime.utcnow()

        cutoff = now - timedelta(seconds=self.RATE_LIMIT_WINDOW)
        self._request_times = [t for t in self._request_times if t > cutoff]

        if len(self._request_times) >= self.RATE_LIMIT_REQUESTS:
            sleep_time = (self._request_times[0] - cutoff).total_seconds()
            if sleep_time > 0:
                logger.warning("rate_limit_throttling", sleep_seconds=sleep_time)
                await asyncio.sleep(sleep_time)
                cutoff = datetime.utcnow() - timedelta(seconds=self.RATE_LIMIT_WINDOW)
                self._request_times = [t for t in self._request_times if t > cutoff]

        self._request_times.append(now)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> dict[str, Any]:
        """
        Make authenticated API request with retry logic.

        Client errors (4xx) are raised immediately; server errors and
        transport failures are retried with exponential backoff.

        Args:
            method: HTTP method (GET, POST)
            endpoint: Path below ``/v3/company/{realm_id}/``
            params: Query parameters (``minorversion`` is always added)
            data: JSON request body

        Returns:
            JSON response from API

        Raises:
            QBOAPIError: If request fails after retries
            QBOAuthError: If no usable connection is available
        """
        connection = await self.get_valid_connection()
        await self._rate_limit_wait()

        url = f"{self.settings.intuit_api_base_url}/v3/company/{connection.realm_id}/{endpoint}"
        query_params = {"minorversion": self.settings.qbo_minor_version, **(params or {})}

        headers = {
            "Authorization": f"Bearer {connection.access_token}",
            "Accept": "application/json",
        }
        if data is not None:
            headers["Content-Type"] = "application/json"

        retry_count = self.settings.qbo_max_retries

        for attempt in range(retry_count):
            try:
                response = await self._client().request(
                    method,
                    url,
                    params=query_params,
                    json=data,
                    headers=headers,
                )

                response.raise_for_status()

                logger.debug(
                    "qbo_api_request_success",
                    method=method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )

                return response.json()

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                body = e.response.text
                logger.error(
                    "qbo_api_request_failed",
                    method=method,
                    endpoint=endpoint,
                    status_code=status_code,
                    error=body,
                    attempt=attempt + 1,
                )

                if 400 <= status_code < 500:
                    raise QBOAPIError(
                        f"QuickBooks API error ({status_code}): {body}",
                        status_code=status_code,
                        body=body,
                    ) from e

                if attempt < retry_count - 1:
                    wait_time = self.retry_backoff * (2 ** attempt)
                    logger.info("retrying_request", wait_seconds=wait_time)
                    await asyncio.sleep(wait_time)
                else:
                    raise QBOAPIError(
                        f"QuickBooks API error ({status_code}) after {retry_count} attempts: {body}",
                        status_code=status_code,
                        body=body,
                    ) from e

            except httpx.TransportError as e:
                logger.error(
                    "qbo_api_request_error",
                    method=method,
                    endpoint=endpoint,
                    error=str(e),
                    attempt=attempt + 1,
                )

                if attempt < retry_count - 1:
                    await asyncio.sleep(self.retry_backoff * (2 ** attempt))
                else:
                    raise QBOAPIError(f"QuickBooks API unreachable: {e}") from e

            except ValueError as e:
                raise QBOAPIError(f"QuickBooks API returned invalid JSON: {e}") from e

        raise QBOAPIError("QuickBooks API request was not attempted")

    async def query(self, query: str) -> dict[str, Any]:
        """Run a QuickBooks query language statement."""
        return await self._make_request("GET", "query", params={"query": query})

    async def fetch_all(
        self,
        entity_type: str,
        where_clause: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Retrieve all entities matching a filter with automatic pagination.

        The 1-indexed start position advances by the number of rows actually
        received. Paging stops on an empty page or on a page shorter than
        the configured page size.

        Args:
            entity_type: Type of entity to retrieve (e.g. "Customer")
            where_clause: Optional SQL-like filter without the WHERE keyword

        Returns:
            Complete list of all matching entities

        Raises:
            QBOAPIError: If any page request fails
        """
        page_size = self.settings.query_page_size
        all_entities: list[dict[str, Any]] = []
        start_position = 1

        while True:
            query_parts = [f"SELECT * FROM {entity_type}"]
            if where_clause:
                query_parts.append(f"WHERE {where_clause}")
            query_parts.append(f"STARTPOSITION {start_position}")
            query_parts.append(f"MAXRESULTS {page_size}")

            response = await self.query(" ".join(query_parts))
            entities = response.get("QueryResponse", {}).get(entity_type) or []

            if not entities:
                break

            all_entities.extend(entities)

            logger.info(
                "entity_batch_retrieved",
                entity_type=entity_type,
                batch_size=len(entities),
                total=len(all_entities),
                start_position=start_position,
            )

            start_position += len(entities)
            if len(entities) < page_size:
                break

        logger.info(
            "all_entities_retrieved",
            entity_type=entity_type,
            total_count=len(all_entities),
        )

        return all_entities

    async def get_report(self, report_name: str, params: dict[str, str]) -> dict[str, Any]:
        """Fetch a tabular report (e.g. ``TransactionList``)."""
        return await self._make_request("GET", f"reports/{report_name}", params=params)

    async def get_entity(self, endpoint: str, entity_id: str) -> dict[str, Any]:
        """
        Retrieve a single entity by ID.

        Returns:
            The full response, keyed by entity name (e.g. ``{"Bill": {...}}``)
        """
        response = await self._make_request("GET", f"{endpoint}/{entity_id}")
        logger.debug("entity_retrieved", endpoint=endpoint, entity_id=entity_id)
        return response

    async def post_entity(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create an entity, or sparse-update it when ``payload`` carries Id/SyncToken."""
        return await self._make_request("POST", endpoint, data=payload)

    async def ensure_class(self, name: str) -> str:
        """
        Look up a Class by name, creating it when missing.

        Returns:
            The QuickBooks Class Id
        """
        escaped = name.replace("'", "''")
        response = await self.query(f"SELECT * FROM Class WHERE Name = '{escaped}'")
        existing = response.get("QueryResponse", {}).get("Class") or []
        if existing and existing[0].get("Id"):
            return str(existing[0]["Id"])

        created = await self.post_entity("class", {"Name": name, "Active": True})
        class_id = created.get("Class", {}).get("Id")
        if not class_id:
            raise QBOAPIError(f"Class creation returned no Id for {name!r}")

        logger.info("qbo_class_created", name=name, class_id=class_id)
        return str(class_id)

    async def get_company_info(self) -> dict[str, Any]:
        connection = await self.get_valid_connection()
        response = await self._make_request("GET", f"companyinfo/{connection.realm_id}")
        return response.get("CompanyInfo", {})
