"""
Main Orchestrator for Utility Splitter

This module ties together all the components and defines the end-to-end
flows for:
1. Startup (load meta → load current year → ready / locked / error / setup)
2. Password (set or change → re-encrypt every stored document)
3. Ledger edits (validate → mutate → recompute balances → persist → audit)
4. Export / Import of the whole ledger
5. Google Sheets sync

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written while stored data is locked or unreadable
- A bill only reaches storage after the validator found no errors
- Every change is audited

Each bill mutation rewrites exactly two documents: the bill array of the
affected year (two years when a bill moves) and the metadata record that
carries the balance cache.
"""

import asyncio
import json
from collections.abc import Callable, Mapping, Sequence
from datetime import date
from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError

from utility_splitter.audit import AuditLogger
from utility_splitter.config import get_settings
from utility_splitter.ledger import (
    HouseholdLedger,
    LedgerError,
    SplitDraft,
    settlement_bills,
    shares_from_previous_bill,
)
from utility_splitter.models.audit import AuditEvent, AuditEventType
from utility_splitter.models.ledger import (
    OTHER_CATEGORY_ID,
    Bill,
    BillCategory,
    ExportDocument,
    Housemate,
    LedgerMeta,
    SettlementTransaction,
    SplitMethod,
)
from utility_splitter.models.validation import ValidationResult
from utility_splitter.persistence import (
    META_KEY,
    Absent,
    DecryptionError,
    Loaded,
    Locked,
    PersistenceAdapter,
    PersistenceLockedError,
    SessionContext,
    bills_key,
)
from utility_splitter.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    HttpKeyValueStore,
    LedgerStoreInterface,
    LocalFileStore,
    StorageError,
)
from utility_splitter.validation import BillValidator


logger = structlog.get_logger(__name__)


class LedgerStatus(str, Enum):
    """Where the service is after `initialize()`."""
    NOT_LOADED = "not_loaded"
    READY = "ready"
    LOCKED = "locked"
    ERROR = "error"
    SETUP_REQUIRED = "setup_required"


class BillRejectedError(LedgerError):
    """The validator found errors in a bill; nothing was saved."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(issue.message for issue in result.errors)
        super().__init__(f"Bill rejected: {messages}")


class CorruptLedgerError(LedgerError):
    """A stored document decrypted fine but does not match the schema."""
    pass


class LedgerService:
    """
    Orchestrates every ledger operation.

    Usage:
        service = LedgerService(adapter, audit_logger=AuditLogger())
        status = await service.initialize()
        if status == LedgerStatus.LOCKED:
            status = await service.unlock(password)
        await service.add_bill("Electricity", 90.0, payer_id, date.today())
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[BillValidator] = None,
        clock: Callable[[], date] = date.today,
    ):
        self._adapter = adapter
        self._audit_logger = audit_logger
        self._validator = validator or BillValidator()
        self._clock = clock

        self._status = LedgerStatus.NOT_LOADED
        self._ledger = HouseholdLedger(LedgerMeta.initial(clock()))
        self._current_year = str(clock().year)
        self._mutation_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> LedgerStatus:
        return self._status

    @property
    def ledger(self) -> HouseholdLedger:
        return self._ledger

    @property
    def session(self) -> SessionContext:
        return self._adapter.session

    @property
    def current_year(self) -> str:
        return self._current_year

    def current_bills(self) -> list[Bill]:
        return self._ledger.bills(self._current_year)

    def _require_ready(self) -> None:
        if self._status != LedgerStatus.READY:
            raise PersistenceLockedError(
                f"Ledger is {self._status.value}; unlock or set it up first"
            )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _blocked(self, key: str, result) -> LedgerStatus:
        if isinstance(result, Locked):
            if self._audit_logger:
                await self._audit_logger.log_data_locked(key)
            return LedgerStatus.LOCKED
        if self._audit_logger:
            await self._audit_logger.log_decryption_failed(key)
        return LedgerStatus.ERROR

    def _parse_bills(self, key: str, value) -> list[Bill]:
        if not isinstance(value, list):
            raise CorruptLedgerError(f"{key} does not hold a bill list")
        try:
            return [Bill.model_validate(item) for item in value]
        except ValidationError as e:
            raise CorruptLedgerError(f"{key} holds an invalid bill: {e}") from e

    async def _read_year(self, year: str) -> list[Bill]:
        """
        Bills stored for `year`; empty when nothing is stored.

        Raises:
            PersistenceLockedError: stored bills cannot be decrypted
        """
        key = bills_key(year)
        result = await self._adapter.load(key)
        if isinstance(result, Absent):
            return []
        if isinstance(result, Loaded):
            return self._parse_bills(key, result.value)
        self._status = await self._blocked(key, result)
        raise PersistenceLockedError(f"Cannot read {key}: {result.kind}")

    async def initialize(self) -> LedgerStatus:
        """
        Load the metadata record and the current year's bills.

        Returns:
            READY, or LOCKED / ERROR when stored data cannot be read, or
            SETUP_REQUIRED when there is no ledger and no password yet
        """
        today = self._clock()
        self._current_year = str(today.year)

        result = await self._adapter.load(META_KEY)
        if isinstance(result, (Locked, DecryptionError)):
            self._status = await self._blocked(META_KEY, result)
            return self._status

        if isinstance(result, Absent):
            if not self.session.has_encryption_key:
                self._status = LedgerStatus.SETUP_REQUIRED
                return self._status
            meta = LedgerMeta.initial(today)
        else:
            try:
                meta = LedgerMeta.model_validate(result.value)
            except ValidationError as e:
                raise CorruptLedgerError(f"{META_KEY} is invalid: {e}") from e

        try:
            bills = await self._read_year(self._current_year)
        except PersistenceLockedError:
            return self._status

        self._ledger = HouseholdLedger(meta, {self._current_year: bills})
        self._status = LedgerStatus.READY
        logger.info(
            "ledger_ready",
            year=self._current_year,
            bills=len(bills),
            housemates=len(meta.housemates),
        )
        return self._status

    async def unlock(self, password: str) -> LedgerStatus:
        """Retry loading with `password`."""
        self.session.set_encryption_key(password)
        self._adapter.unblock()
        status = await self.initialize()
        if status == LedgerStatus.READY and self._audit_logger:
            await self._audit_logger.log(_data_unlocked_event())
        return status

    async def load_year(self, year: str) -> list[Bill]:
        """Load one year's bills into memory and make it the current year."""
        self._require_ready()
        bills = await self._read_year(year)
        self._ledger.load_year(year, bills)
        self._current_year = year
        return bills

    async def _ensure_year(self, year: str) -> None:
        if year in self._ledger.loaded_years:
            return
        self._ledger.load_year(year, await self._read_year(year))

    async def load_all_years(self) -> None:
        """Bring every available year into memory (balances become exact)."""
        for year in list(self._ledger.meta.available_years):
            await self._ensure_year(year)
        self._ledger.recompute()

    # ------------------------------------------------------------------
    # Persisting
    # ------------------------------------------------------------------

    async def _save_meta(self) -> None:
        await self._adapter.save(META_KEY, self._ledger.meta.to_wire())

    async def _save_year(self, year: str) -> None:
        await self._adapter.save(
            bills_key(year),
            [bill.to_wire() for bill in self._ledger.bills(year)],
        )

    async def _save_all(self) -> int:
        await self._save_meta()
        for year in self._ledger.loaded_years:
            await self._save_year(year)
        return 1 + len(self._ledger.loaded_years)

    async def set_password(self, password: str, tenant_id: Optional[str] = None) -> LedgerStatus:
        """
        Set (or change) the ledger password and re-encrypt everything.

        From READY every available year is read with the old password
        first, then meta and every year are written under the new one.
        From SETUP_REQUIRED a fresh ledger is written. From LOCKED or
        ERROR this is an unlock attempt with the new password.
        """
        if tenant_id:
            self.session.set_tenant_id(tenant_id)

        async with self._mutation_lock:
            if self._status in (LedgerStatus.LOCKED, LedgerStatus.ERROR, LedgerStatus.NOT_LOADED):
                return await self.unlock(password)

            if self._status == LedgerStatus.SETUP_REQUIRED:
                self._ledger = HouseholdLedger(
                    LedgerMeta.initial(self._clock()),
                    {self._current_year: []},
                )
            else:
                await self.load_all_years()

            self.session.set_encryption_key(password)
            self._adapter.unblock()
            written = await self._save_all()
            self._status = LedgerStatus.READY

        if self._audit_logger:
            await self._audit_logger.log_password_set(written)
        return self._status

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def draft_split(
        self,
        total_amount: float,
        method: SplitMethod = SplitMethod.EQUAL,
        category_id: Optional[str] = None,
        participants: Optional[Sequence[str]] = None,
    ) -> SplitDraft:
        """
        Start a split for a new bill.

        Percentage and share entries are prefilled from the latest loaded
        bill with the same category and method.
        """
        participants = list(participants) if participants is not None else self._ledger.participant_ids
        raw_shares = None
        if category_id is not None:
            raw_shares = shares_from_previous_bill(
                self._ledger.bills(), category_id, method, participants
            )
        return SplitDraft(participants, method, total_amount, raw_shares)

    def validate_bill(self, bill: Bill) -> ValidationResult:
        return self._validator.validate(
            bill,
            self._ledger.housemates,
            self._ledger.categories,
        )

    def _check(self, bill: Bill) -> None:
        result = self.validate_bill(bill)
        if not result.is_valid:
            raise BillRejectedError(result)
        for warning in result.warnings:
            logger.warning("bill_warning", bill_id=bill.id, warning=warning)

    async def save_new_bill(self, bill: Bill) -> Bill:
        """Validate, add and persist a fully built bill."""
        self._require_ready()
        self._check(bill)
        async with self._mutation_lock:
            await self._ensure_year(bill.year)
            self._ledger.add_bill(bill)
            await self._save_year(bill.year)
            await self._save_meta()

        if self._audit_logger:
            if bill.is_settlement:
                await self._audit_logger.log_settlement(
                    bill.id, bill.payer_id, bill.splits[0].housemate_id, bill.amount
                )
            else:
                await self._audit_logger.log_bill_added(
                    bill.id, bill.title, bill.amount, bill.payer_id
                )
        return bill

    async def add_bill(
        self,
        title: str,
        amount: float,
        payer_id: str,
        bill_date: date,
        split_method: SplitMethod = SplitMethod.EQUAL,
        raw_shares: Optional[Mapping[str, float]] = None,
        participants: Optional[Sequence[str]] = None,
        category_id: str = OTHER_CATEGORY_ID,
    ) -> Bill:
        """
        Create a bill, split it and persist it.

        Raises:
            BillRejectedError: validation found errors (nothing saved)
            PersistenceLockedError: the ledger is not ready
        """
        bill = self._ledger.new_bill(
            title=title,
            amount=amount,
            payer_id=payer_id,
            bill_date=bill_date,
            split_method=split_method,
            raw_shares=raw_shares,
            participants=participants,
            category_id=category_id,
        )
        return await self.save_new_bill(bill)

    async def update_bill(self, bill: Bill) -> Bill:
        """Replace a stored bill (it may move to another year)."""
        self._require_ready()
        self._check(bill)
        async with self._mutation_lock:
            filed_year, _ = self._ledger.find_bill(bill.id)
            await self._ensure_year(bill.year)
            self._ledger.update_bill(bill)
            for year in {filed_year, bill.year}:
                await self._save_year(year)
            await self._save_meta()

        if self._audit_logger:
            await self._audit_logger.log_bill_updated(bill.id, bill.title, bill.amount)
        return bill

    async def delete_bill(self, bill_id: str) -> Bill:
        self._require_ready()
        async with self._mutation_lock:
            filed_year, _ = self._ledger.find_bill(bill_id)
            old = self._ledger.delete_bill(bill_id)
            await self._save_year(filed_year)
            await self._save_meta()

        if self._audit_logger:
            await self._audit_logger.log_bill_deleted(old.id, old.title)
        return old

    async def record_settlement(
        self,
        from_id: str,
        to_id: str,
        amount: float,
        on_date: Optional[date] = None,
    ) -> Bill:
        """Record a direct payment from one housemate to another."""
        bill = settlement_bills(
            [SettlementTransaction(from_id=from_id, to_id=to_id, amount=amount)],
            on_date or self._clock(),
        )[0]
        return await self.save_new_bill(bill)

    async def settle_up(self, on_date: Optional[date] = None) -> list[Bill]:
        """Record every payment of the current settlement plan."""
        self._require_ready()
        threshold = get_settings().app.settle_threshold
        plan = self._ledger.settlement_plan(threshold)
        bills = settlement_bills(plan, on_date or self._clock())
        return [await self.save_new_bill(bill) for bill in bills]

    # ------------------------------------------------------------------
    # Housemates and categories
    # ------------------------------------------------------------------

    async def _save_roster(self, event_type: AuditEventType, entity_type: str, entity_id: str, name: Optional[str]) -> None:
        await self._save_meta()
        if self._audit_logger:
            await self._audit_logger.log_roster_change(event_type, entity_type, entity_id, name)

    async def add_housemate(self, name: str, avatar: Optional[str] = None) -> Housemate:
        self._require_ready()
        async with self._mutation_lock:
            housemate = self._ledger.add_housemate(Housemate(name=name, avatar=avatar))
            await self._save_roster(AuditEventType.HOUSEMATE_ADDED, "housemate", housemate.id, name)
        return housemate

    async def rename_housemate(self, housemate_id: str, name: str) -> Housemate:
        self._require_ready()
        async with self._mutation_lock:
            housemate = self._ledger.rename_housemate(housemate_id, name)
            await self._save_roster(AuditEventType.HOUSEMATE_UPDATED, "housemate", housemate_id, name)
        return housemate

    async def remove_housemate(self, housemate_id: str) -> None:
        """Drop a housemate from the roster. Their bills are kept as they are."""
        self._require_ready()
        async with self._mutation_lock:
            self._ledger.remove_housemate(housemate_id)
            await self._save_roster(AuditEventType.HOUSEMATE_REMOVED, "housemate", housemate_id, None)

    async def add_category(self, name: str) -> BillCategory:
        self._require_ready()
        async with self._mutation_lock:
            category = self._ledger.add_category(BillCategory(name=name))
            await self._save_roster(AuditEventType.CATEGORY_ADDED, "category", category.id, name)
        return category

    async def rename_category(self, category_id: str, name: str) -> BillCategory:
        self._require_ready()
        async with self._mutation_lock:
            category = self._ledger.rename_category(category_id, name)
            await self._save_roster(AuditEventType.CATEGORY_UPDATED, "category", category_id, name)
        return category

    async def remove_category(self, category_id: str) -> None:
        self._require_ready()
        async with self._mutation_lock:
            self._ledger.remove_category(category_id)
            await self._save_roster(AuditEventType.CATEGORY_REMOVED, "category", category_id, None)

    # ------------------------------------------------------------------
    # Export / Import
    # ------------------------------------------------------------------

    async def export_data(self) -> str:
        """
        The whole ledger as a JSON document: {"meta": ..., "bills": {year: [...]}}.

        Raises:
            PersistenceLockedError: some year cannot be decrypted
        """
        self._require_ready()
        bills: dict[str, list[Bill]] = {}
        for year in self._ledger.meta.available_years:
            if year in self._ledger.loaded_years:
                bills[year] = self._ledger.bills(year)
            else:
                bills[year] = await self._read_year(year)

        document = ExportDocument(meta=self._ledger.meta, bills=bills)
        if self._audit_logger:
            await self._audit_logger.log_exported(
                sorted(bills), sum(len(b) for b in bills.values())
            )
        return json.dumps(document.to_wire(), indent=2)

    async def import_data(self, json_string: str) -> bool:
        """
        Replace the whole ledger with an exported document.

        Returns False (and changes nothing) when the document is not JSON,
        lacks `meta` or `bills`, or fails schema validation.
        """
        try:
            raw = json.loads(json_string)
            if not isinstance(raw, dict) or not raw.get("meta") or raw.get("bills") is None:
                raise ValueError("Invalid format: expected 'meta' and 'bills'")
            document = ExportDocument.model_validate(raw)
        except ValueError as e:
            logger.warning("import_rejected", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_import_rejected(str(e))
            return False

        async with self._mutation_lock:
            old_years = set(self._ledger.meta.available_years)
            ledger = HouseholdLedger(document.meta, document.bills)
            ledger.recompute()

            self._adapter.unblock()
            previous, self._ledger = self._ledger, ledger
            try:
                for year in sorted(old_years - set(ledger.loaded_years)):
                    await self._adapter.delete(bills_key(year))
                await self._save_all()
            except StorageError as e:
                self._ledger = previous
                logger.error("import_write_failed", error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_error("import_write_failed", str(e))
                return False

            self._status = LedgerStatus.READY
            self._current_year = str(self._clock().year)
            if self._current_year not in ledger.loaded_years:
                ledger.load_year(self._current_year, [])

        if self._audit_logger:
            await self._audit_logger.log_imported(
                ledger.loaded_years, len(ledger.bills())
            )
        return True

    # ------------------------------------------------------------------
    # Google Sheets
    # ------------------------------------------------------------------

    async def sync_from_sheets(self, store: LedgerStoreInterface) -> int:
        """
        Pull bills from a spreadsheet into the ledger.

        Bills already in the ledger (same id) are skipped. A ledger with no
        housemates takes its roster from the sheet.

        Returns:
            Number of bills added
        """
        self._require_ready()
        await self.load_all_years()

        async with self._mutation_lock:
            if not self._ledger.housemates:
                await self._adopt_roster(store)

            known = {bill.id for bill in self._ledger.bills()}
            added = [bill for bill in await store.list_bills() if bill.id not in known]
            for bill in added:
                self._ledger.add_bill(bill)

            for year in sorted({bill.year for bill in added}):
                await self._save_year(year)
            self._ledger.recompute()
            await self._save_meta()

        logger.info("sheets_synced", direction="pull", bills=len(added))
        if self._audit_logger:
            await self._audit_logger.log(_sheets_synced_event("pull", len(added)))
        return len(added)

    async def _adopt_roster(self, store: LedgerStoreInterface) -> None:
        meta = await store.load_meta()
        if meta is not None and meta.housemates:
            housemates, categories = meta.housemates, meta.bill_categories
        elif isinstance(store, GoogleSheetsLedgerStore):
            housemates, categories = await store.discover_roster()
        else:
            return
        for housemate in housemates:
            self._ledger.add_housemate(housemate)
        known = {c.id for c in self._ledger.categories}
        for category in categories:
            if category.id not in known:
                self._ledger.add_category(category)

    async def push_to_sheets(self, store: LedgerStoreInterface) -> int:
        """
        Write the metadata and any bills the spreadsheet does not have yet.

        Returns:
            Number of bills appended
        """
        self._require_ready()
        await self.load_all_years()

        on_sheet = {bill.id for bill in await store.list_bills()}
        missing = [bill for bill in self._ledger.bills() if bill.id not in on_sheet]
        await store.save_meta(self._ledger.meta)
        for bill in missing:
            await store.save_bill(bill)

        logger.info("sheets_synced", direction="push", bills=len(missing))
        if self._audit_logger:
            await self._audit_logger.log(_sheets_synced_event("push", len(missing)))
        return len(missing)


def _data_unlocked_event() -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventType.DATA_UNLOCKED,
        entity_type="ledger",
        description="Ledger unlocked",
        is_user_action=True,
    )


def _sheets_synced_event(direction: str, count: int) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventType.SHEETS_SYNCED,
        entity_type="ledger",
        description=f"Google Sheets sync ({direction}): {count} bills",
        details={"direction": direction, "bill_count": count},
    )


def create_app_components(
    session: Optional[SessionContext] = None,
    use_remote: bool = True,
    use_sheets_audit: bool = False,
) -> tuple[LedgerService, PersistenceAdapter]:
    """
    Factory function to create all application components.

    Args:
        session: Secrets for this session. Defaults to the configured tenant
                 and no password.
        use_remote: Attach the remote key-value store when it is configured.
        use_sheets_audit: Also write audit events to Google Sheets.

    Returns:
        (ledger_service, persistence_adapter)
    """
    settings = get_settings()
    if session is None:
        session = SessionContext(tenant_id=settings.app.tenant_id)

    remote = None
    if use_remote:
        candidate = HttpKeyValueStore(session, settings.remote_store)
        if candidate.is_configured:
            remote = candidate
        else:
            logger.info("remote_store_disabled", reason="not configured")

    audit_logger = AuditLogger()
    if use_sheets_audit:
        try:
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(GoogleSheetsClient()))
        except ValidationError as e:
            # Sheets not configured - continue with local-only audit logging
            logger.warning("sheets_audit_disabled", error=str(e))

    adapter = PersistenceAdapter(
        session,
        LocalFileStore(settings=settings.local_storage),
        remote,
        retry_attempts=settings.remote_store.retry_attempts,
        retry_min_wait=settings.remote_store.retry_min_wait,
        retry_max_wait=settings.remote_store.retry_max_wait,
        audit_logger=audit_logger,
    )
    service = LedgerService(adapter, audit_logger=audit_logger)
    return service, adapter
