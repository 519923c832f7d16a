"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger persists whole JSON documents to local disk and (optionally) a
remote key-value API; Google Sheets is the row-oriented backend used for
spreadsheet sync.
"""

from utility_splitter.services.storage.interface import (
    AuditStorageInterface,
    AuthExpiredError,
    InvalidTenantIdError,
    KeyValueStoreInterface,
    LedgerStoreInterface,
    NotFoundError,
    RemoteUnavailableError,
    StorageError,
    validate_tenant_id,
)
from utility_splitter.services.storage.local import (
    InMemoryKeyValueStore,
    LocalFileStore,
)
from utility_splitter.services.storage.remote import HttpKeyValueStore
from utility_splitter.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStoreInterface",
    "LedgerStoreInterface",
    # Exceptions
    "AuthExpiredError",
    "InvalidTenantIdError",
    "NotFoundError",
    "RemoteUnavailableError",
    "StorageError",
    "validate_tenant_id",
    # Key-value stores
    "HttpKeyValueStore",
    "InMemoryKeyValueStore",
    "LocalFileStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
