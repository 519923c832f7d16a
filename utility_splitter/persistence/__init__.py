"""Persistence package: session secrets and the encrypting storage adapter."""

from utility_splitter.persistence.adapter import (
    BILLS_KEY_PREFIX,
    META_KEY,
    Absent,
    DecryptionError,
    Loaded,
    LoadResult,
    Locked,
    PendingWrite,
    PersistenceAdapter,
    PersistenceLockedError,
    bills_key,
    year_from_key,
)
from utility_splitter.persistence.session import SessionContext, TokenRefresher

__all__ = [
    "BILLS_KEY_PREFIX",
    "META_KEY",
    "Absent",
    "DecryptionError",
    "LoadResult",
    "Loaded",
    "Locked",
    "PendingWrite",
    "PersistenceAdapter",
    "PersistenceLockedError",
    "SessionContext",
    "TokenRefresher",
    "bills_key",
    "year_from_key",
]
