"""
Session Context

Holds the per-user secrets and identifiers for one session: the ledger
encryption key, the remote tenant id and the remote access token.

DESIGN DECISION: there are no module-level token or key caches. One
SessionContext is created per process/request and handed to every
component that needs it, so two sessions never see each other's keys.
"""

from collections.abc import Awaitable, Callable
from typing import Optional

from utility_splitter.services.storage.interface import (
    AuthExpiredError,
    validate_tenant_id,
)


TokenRefresher = Callable[[], Awaitable[str]]


class SessionContext:
    """
    Secrets and identity for one ledger session.

    The encryption key is the user's password. It never leaves the
    session object; stores only ever see encrypted packages.
    """

    def __init__(
        self,
        encryption_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        access_token: Optional[str] = None,
        token_refresher: Optional[TokenRefresher] = None,
    ):
        self._encryption_key = encryption_key or None
        self._tenant_id = validate_tenant_id(tenant_id) if tenant_id else None
        self._access_token = access_token
        self._token_refresher = token_refresher

    # Encryption key

    @property
    def encryption_key(self) -> Optional[str]:
        return self._encryption_key

    @property
    def has_encryption_key(self) -> bool:
        return self._encryption_key is not None

    def set_encryption_key(self, password: str) -> None:
        if not password:
            raise ValueError("Password must not be empty")
        self._encryption_key = password

    def clear_encryption_key(self) -> None:
        self._encryption_key = None

    # Tenant

    @property
    def tenant_id(self) -> Optional[str]:
        return self._tenant_id

    def set_tenant_id(self, tenant_id: str) -> None:
        self._tenant_id = validate_tenant_id(tenant_id)

    # Remote credential

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def can_refresh(self) -> bool:
        return self._token_refresher is not None

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    async def refresh_access_token(self) -> str:
        """
        Obtain a new access token from the refresher.

        Raises:
            AuthExpiredError: if there is no refresher or it fails
        """
        if self._token_refresher is None:
            raise AuthExpiredError("Access token expired and no refresher is configured")
        try:
            token = await self._token_refresher()
        except Exception as e:
            self._access_token = None
            raise AuthExpiredError(f"Token refresh failed: {e}") from e
        self._access_token = token
        return token

    def logout(self) -> None:
        """Forget the remote credential (the encryption key is kept)."""
        self._access_token = None
