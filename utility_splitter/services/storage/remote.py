"""
Remote Key-Value Store Client

Talks to the household key-value API:

    GET /api/kv/{key}   -> 200 JSON value | 404 absent
    PUT /api/kv/{key}   -> 200 {"success": true}

Every request carries HTTP basic auth (or a bearer token when the
session has one) and the tenant in the X-Tenant-ID header.

Failure handling:
- 404 on GET is "absent", not an error
- Transport errors, timeouts and 5xx raise RemoteUnavailableError and are
  retried with exponential backoff
- 401 refreshes the session credential ONCE and retries; a second 401 or
  a failed refresh surfaces as RemoteUnavailableError
"""

import json
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from utility_splitter.config import RemoteStoreSettings, get_settings
from utility_splitter.services.storage.interface import (
    AuthExpiredError,
    KeyValueStoreInterface,
    RemoteUnavailableError,
    StorageError,
    validate_tenant_id,
)

if TYPE_CHECKING:
    from utility_splitter.persistence.session import SessionContext


logger = structlog.get_logger(__name__)


class HttpKeyValueStore(KeyValueStoreInterface):
    """Tenant-scoped JSON key-value storage over authenticated HTTP."""

    name = "remote"

    def __init__(
        self,
        session: "SessionContext",
        settings: Optional[RemoteStoreSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._session = session
        self._settings = settings or get_settings().remote_store
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured and self._session.tenant_id is not None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.base_url or "",
                timeout=self._settings.timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        tenant_id = self._session.tenant_id
        if tenant_id is None:
            raise StorageError("No tenant id configured for the remote store")
        headers = {
            "Content-Type": "application/json",
            "X-Tenant-ID": validate_tenant_id(tenant_id),
        }
        if self._session.access_token:
            headers["Authorization"] = f"Bearer {self._session.access_token}"
        return headers

    def _auth(self) -> Optional[httpx.BasicAuth]:
        if self._session.access_token:
            return None
        if self._settings.api_user and self._settings.api_pass:
            return httpx.BasicAuth(self._settings.api_user, self._settings.api_pass)
        return None

    async def _send(self, method: str, key: str, value: Any = None) -> httpx.Response:
        """One HTTP round trip, mapped onto the storage error types."""
        url = f"/api/kv/{quote(key, safe='')}"
        try:
            response = await self._get_client().request(
                method,
                url,
                headers=self._headers(),
                auth=self._auth(),
                content=json.dumps(value) if method == "PUT" else None,
            )
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"{method} {key} failed: {e}") from e

        if response.status_code == 401:
            raise AuthExpiredError(f"{method} {key}: credentials rejected")
        if response.status_code >= 500:
            raise RemoteUnavailableError(f"{method} {key}: HTTP {response.status_code}")
        return response

    async def _send_with_retry(self, method: str, key: str, value: Any = None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self._settings.retry_min_wait,
                max=self._settings.retry_max_wait,
            ),
            retry=retry_if_exception_type(RemoteUnavailableError),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, key, value)

    async def _request(self, method: str, key: str, value: Any = None) -> httpx.Response:
        """Send, refreshing the credential once on 401."""
        try:
            return await self._send_with_retry(method, key, value)
        except AuthExpiredError as first:
            if not self._session.can_refresh:
                raise RemoteUnavailableError(str(first)) from first
            logger.info("remote_auth_refresh", key=key, method=method)

        try:
            await self._session.refresh_access_token()
            return await self._send_with_retry(method, key, value)
        except AuthExpiredError as e:
            raise RemoteUnavailableError(f"Authentication failed after refresh: {e}") from e

    async def get(self, key: str) -> Optional[Any]:
        response = await self._request("GET", key)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise StorageError(f"GET {key}: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise StorageError(f"GET {key}: response is not JSON") from e

    async def put(self, key: str, value: Any) -> None:
        response = await self._request("PUT", key, value)
        if response.status_code >= 400:
            raise StorageError(f"PUT {key}: HTTP {response.status_code}")

    async def delete(self, key: str) -> bool:
        # The API has no delete; an explicit null marks the key as cleared
        await self.put(key, None)
        return True

    async def keys(self) -> list[str]:
        raise StorageError("The remote store cannot list keys")
