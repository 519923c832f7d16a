"""
Persistence Adapter

Encrypt-then-store and load-then-decrypt for every ledger document.

Keys:
    utility-splitter-meta           LedgerMeta
    utility-splitter-bills-<YYYY>   list of Bills dated in that year

Write path:
1. Serialize to JSON
2. Encrypt when the session holds a password (the package is stored as a
   JSON object, never re-stringified)
3. Write to local storage (durable before save() returns)
4. Queue the remote write; a background drain pushes it with backoff

Read path:
1. Remote first, local when remote is absent or unavailable
2. Encrypted value and no password -> Locked
3. Decrypt failure -> DecryptionError, never Absent

CRITICAL: once a load comes back Locked or DecryptionError the adapter
refuses to save until it is unlocked, so unreadable data is never
overwritten with a fresh empty ledger.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from utility_splitter.audit.logger import AuditLogger
from utility_splitter.crypto.service import (
    DecryptionFailed,
    PasswordCipher,
    looks_encrypted,
)
from utility_splitter.persistence.session import SessionContext
from utility_splitter.services.storage.interface import (
    KeyValueStoreInterface,
    RemoteUnavailableError,
    StorageError,
)


logger = structlog.get_logger(__name__)

META_KEY = "utility-splitter-meta"
BILLS_KEY_PREFIX = "utility-splitter-bills-"


def bills_key(year: Union[str, int]) -> str:
    """Persistence key for one calendar year of bills."""
    return f"{BILLS_KEY_PREFIX}{year}"


def year_from_key(key: str) -> Optional[str]:
    if key.startswith(BILLS_KEY_PREFIX):
        return key[len(BILLS_KEY_PREFIX):]
    return None


# =============================================================================
# Load results
# =============================================================================

class Loaded(BaseModel):
    """The key held a readable value."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["loaded"] = "loaded"
    value: Any
    source: str = "local"


class Locked(BaseModel):
    """The value is encrypted and the session has no password."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["locked"] = "locked"


class DecryptionError(BaseModel):
    """The value is encrypted and the session password does not open it."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["decryption_error"] = "decryption_error"
    message: str


class Absent(BaseModel):
    """Nothing stored under the key."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["absent"] = "absent"


LoadResult = Union[Loaded, Locked, DecryptionError, Absent]


class PersistenceLockedError(StorageError):
    """Save attempted while stored data is locked or unreadable."""
    pass


class PendingWrite(BaseModel):
    """A remote write waiting in the outbox."""

    key: str
    value: Any
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0


# =============================================================================
# Adapter
# =============================================================================

class PersistenceAdapter:
    """
    Stores ledger documents locally and (optionally) remotely.

    Usage:
        adapter = PersistenceAdapter(session, LocalFileStore(), remote)
        adapter.start()
        await adapter.save(META_KEY, meta.to_wire())
        result = await adapter.load(META_KEY)
        await adapter.stop()
    """

    def __init__(
        self,
        session: SessionContext,
        local: KeyValueStoreInterface,
        remote: Optional[KeyValueStoreInterface] = None,
        cipher: Optional[PasswordCipher] = None,
        retry_attempts: int = 5,
        retry_min_wait: float = 2.0,
        retry_max_wait: float = 30.0,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._session = session
        self._local = local
        self._remote = remote
        self._cipher = cipher or PasswordCipher()
        self._audit_logger = audit_logger

        self._retry_attempts = retry_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait

        self._locks: dict[str, asyncio.Lock] = {}

        # Stale-load tracking: per key, last issued and last completed seq
        self._load_seq: dict[str, int] = {}
        self._completed: dict[str, tuple[int, LoadResult]] = {}

        self._outbox: dict[str, PendingWrite] = {}
        self._outbox_event: Optional[asyncio.Event] = None
        self._drain_task: Optional[asyncio.Task] = None

        self._blocked_reason: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def session(self) -> SessionContext:
        return self._session

    @property
    def is_blocked(self) -> bool:
        """True after a Locked or DecryptionError load, until unblocked."""
        return self._blocked_reason is not None

    @property
    def pending_writes(self) -> list[PendingWrite]:
        return list(self._outbox.values())

    def unblock(self) -> None:
        """Allow saves again (after a successful unlock)."""
        self._blocked_reason = None

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    async def _encode(self, value: Any) -> Any:
        password = self._session.encryption_key
        if password is None:
            # Round trip so the stored value is plain JSON data
            return json.loads(json.dumps(value))
        package = await self._cipher.encrypt(json.dumps(value), password)
        return package.to_wire()

    async def _decode(self, stored: Any, source: str) -> LoadResult:
        if not looks_encrypted(stored):
            return Loaded(value=stored, source=source)

        password = self._session.encryption_key
        if password is None:
            return Locked()
        try:
            plaintext = await self._cipher.decrypt(stored, password)
        except DecryptionFailed as e:
            return DecryptionError(message=str(e))
        try:
            return Loaded(value=json.loads(plaintext), source=source)
        except json.JSONDecodeError:
            return DecryptionError(message="Decrypted data is not valid JSON")

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def _read(self, key: str) -> tuple[Any, str]:
        if self._remote is not None:
            try:
                value = await self._remote.get(key)
                if value is not None:
                    return value, self._remote.name
            except RemoteUnavailableError as e:
                logger.warning("remote_unavailable", key=key, error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_remote_unavailable(self._remote.name, str(e))
            except StorageError as e:
                logger.warning("remote_read_failed", key=key, error=str(e))
        return await self._local.get(key), self._local.name

    async def load(self, key: str) -> LoadResult:
        """
        Load and decrypt the value stored under `key`.

        If a newer load for the same key finished while this one was in
        flight, this load's result is discarded and the newer one returned.
        """
        seq = self._load_seq.get(key, 0) + 1
        self._load_seq[key] = seq

        stored, source = await self._read(key)
        if stored is None:
            result: LoadResult = Absent()
        else:
            result = await self._decode(stored, source)

        latest = self._completed.get(key)
        if latest is not None and latest[0] > seq:
            logger.debug("stale_load_discarded", key=key, seq=seq, newer=latest[0])
            return latest[1]
        self._completed[key] = (seq, result)

        if isinstance(result, (Locked, DecryptionError)):
            self._blocked_reason = result.kind
            logger.warning("load_blocked", key=key, reason=result.kind)
        return result

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def _write(self, key: str, value: Any) -> None:
        if self.is_blocked:
            raise PersistenceLockedError(
                f"Refusing to write {key}: stored data is {self._blocked_reason}"
            )
        encoded = await self._encode(value)
        await self._local.put(key, encoded)
        self._completed.pop(key, None)
        if self._remote is not None:
            self._enqueue(key, encoded)

    async def save(self, key: str, value: Any) -> None:
        """
        Write `value` under `key` locally and queue the remote write.

        Raises:
            PersistenceLockedError: data is locked or failed to decrypt
            StorageError: the local write failed
        """
        async with self.lock_for(key):
            await self._write(key, value)

    async def update(self, key: str, fn: Callable[[Any], Union[Any, Awaitable[Any]]]) -> Any:
        """
        Read-modify-write under the key's lock.

        `fn` receives the current value (None if absent) and returns the
        new value; it may be a coroutine function.

        Raises:
            PersistenceLockedError: the current value cannot be read
        """
        async with self.lock_for(key):
            result = await self.load(key)
            if isinstance(result, (Locked, DecryptionError)):
                raise PersistenceLockedError(f"Cannot update {key}: {result.kind}")
            current = result.value if isinstance(result, Loaded) else None
            new_value = fn(current)
            if asyncio.iscoroutine(new_value):
                new_value = await new_value
            await self._write(key, new_value)
            return new_value

    async def delete(self, key: str) -> None:
        async with self.lock_for(key):
            await self._local.delete(key)
            self._completed.pop(key, None)
            if self._remote is not None:
                self._enqueue(key, None)

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def _enqueue(self, key: str, value: Any) -> None:
        # Latest write per key wins
        self._outbox[key] = PendingWrite(key=key, value=value)
        if self._outbox_event is not None:
            self._outbox_event.set()

    async def _push(self, pending: PendingWrite) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self._retry_min_wait,
                max=self._retry_max_wait,
            ),
            retry=retry_if_exception_type(RemoteUnavailableError),
            reraise=True,
        ):
            with attempt:
                pending.attempts += 1
                await self._remote.put(pending.key, pending.value)

    async def flush(self) -> int:
        """
        Push every queued write to the remote store.

        Writes that still fail stay queued (unless a newer write for the
        same key replaced them).

        Returns:
            Number of writes pushed
        """
        if self._remote is None:
            return 0

        pushed = 0
        for key in list(self._outbox):
            pending = self._outbox.get(key)
            if pending is None:
                continue
            try:
                await self._push(pending)
            except StorageError as e:
                logger.warning(
                    "remote_write_failed",
                    key=key,
                    attempts=pending.attempts,
                    error=str(e),
                )
                if self._audit_logger:
                    await self._audit_logger.log_save_failed(
                        key, self._remote.name, pending.attempts, str(e)
                    )
                continue
            if self._outbox.get(key) is pending:
                del self._outbox[key]
            pushed += 1
        return pushed

    async def _drain(self) -> None:
        delay = self._retry_min_wait
        while True:
            await self._outbox_event.wait()
            self._outbox_event.clear()
            await self.flush()
            if not self._outbox:
                delay = self._retry_min_wait
                continue

            # Writes are still queued: try again after a pause, or sooner
            # when a new save arrives
            try:
                await asyncio.wait_for(self._outbox_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                self._outbox_event.set()
            delay = min(max(delay * 2, self._retry_min_wait), self._retry_max_wait)

    def start(self) -> None:
        """Start the background outbox drain on the running loop."""
        if self._remote is None or self._drain_task is not None:
            return
        self._outbox_event = asyncio.Event()
        if self._outbox:
            self._outbox_event.set()
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def stop(self, flush: bool = True) -> None:
        """Stop the drain task, pushing anything still queued first."""
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
            self._outbox_event = None
        if flush:
            await self.flush()
