"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for storage operations.
This allows us to:
1. Keep the same ledger on local disk, a remote key-value API or a sheet
2. Use in-memory storage for testing
3. Encrypt transparently above the store (stores only see opaque JSON)
4. Keep ledger logic decoupled from storage implementation

Two shapes are supported:
- KeyValueStoreInterface: whole JSON documents under string keys (meta
  record, one bill array per year). Used by the persistence adapter.
- LedgerStoreInterface: row-oriented bill storage (spreadsheets).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from utility_splitter.config import TENANT_ID_PATTERN
from utility_splitter.models.audit import AuditEvent
from utility_splitter.models.ledger import Bill, LedgerMeta


class KeyValueStoreInterface(ABC):
    """
    Abstract interface for JSON document storage.

    Values are arbitrary JSON-compatible data (dicts, lists, scalars).
    """

    name: str = "store"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Read the document stored under `key`.

        Returns:
            The stored value, or None if the key is absent

        Raises:
            StorageError: If the read fails (absent is NOT a failure)
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """
        Store `value` under `key`, replacing any previous value.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove `key`.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """List stored keys."""
        pass


class LedgerStoreInterface(ABC):
    """
    Abstract interface for row-oriented ledger storage.

    Any spreadsheet-like backend must implement these methods.
    """

    @abstractmethod
    async def load_meta(self) -> Optional[LedgerMeta]:
        """
        Read the metadata record.

        Returns:
            The metadata, or None if none has been written yet
        """
        pass

    @abstractmethod
    async def save_meta(self, meta: LedgerMeta) -> None:
        """Replace the metadata record."""
        pass

    @abstractmethod
    async def list_bills(self, year: Optional[str] = None) -> list[Bill]:
        """
        List bills, optionally only those dated in `year`.

        Returns:
            Bills, newest first
        """
        pass

    @abstractmethod
    async def save_bill(self, bill: Bill) -> None:
        """
        Append a new bill.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_bill(self, bill: Bill) -> None:
        """
        Replace an existing bill.

        Raises:
            NotFoundError: If bill doesn't exist
        """
        pass

    @abstractmethod
    async def delete_bill(self, bill_id: str) -> bool:
        """
        Delete a bill by ID.

        Returns:
            True if deleted, False if it did not exist
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class RemoteUnavailableError(StorageError):
    """Transient network/API failure. Retry with backoff or use the local copy."""
    pass


class AuthExpiredError(StorageError):
    """Credentials were rejected. Refresh once, then give up."""
    pass


class InvalidTenantIdError(StorageError):
    """Tenant ids are alphanumeric plus dashes."""
    pass


def validate_tenant_id(tenant_id: str) -> str:
    if not TENANT_ID_PATTERN.match(tenant_id or ""):
        raise InvalidTenantIdError(f"Invalid tenant id: {tenant_id!r}")
    return tenant_id


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def recent_events(self, limit: int = 50) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass
