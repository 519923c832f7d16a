"""Services package."""

from utility_splitter.services.storage import (
    AuditStorageInterface,
    AuthExpiredError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    HttpKeyValueStore,
    InMemoryKeyValueStore,
    InvalidTenantIdError,
    KeyValueStoreInterface,
    LedgerStoreInterface,
    LocalFileStore,
    NotFoundError,
    RemoteUnavailableError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "AuthExpiredError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "HttpKeyValueStore",
    "InMemoryKeyValueStore",
    "InvalidTenantIdError",
    "KeyValueStoreInterface",
    "LedgerStoreInterface",
    "LocalFileStore",
    "NotFoundError",
    "RemoteUnavailableError",
    "StorageError",
]
