"""
Integration tests for the ledger service.

Everything runs against in-memory stores; no network, no files.
"""

import asyncio
import json
from datetime import date

import pytest

from utility_splitter.audit import AuditLogger
from utility_splitter.config import CryptoSettings
from utility_splitter.crypto import PasswordCipher, looks_encrypted
from utility_splitter.models.ledger import Bill, Housemate, LedgerMeta, Split, SplitMethod
from utility_splitter.orchestrator import BillRejectedError, LedgerService, LedgerStatus
from utility_splitter.persistence import (
    META_KEY,
    PersistenceAdapter,
    PersistenceLockedError,
    SessionContext,
    bills_key,
)
from utility_splitter.services.storage import InMemoryKeyValueStore
from utility_splitter.services.storage.interface import (
    AuditStorageInterface,
    LedgerStoreInterface,
    NotFoundError,
)
from utility_splitter.validation import BillValidator


TODAY = date(2024, 5, 1)


class MemoryAuditStorage(AuditStorageInterface):
    def __init__(self):
        self.events = []

    async def append_event(self, event):
        self.events.append(event)
        return True

    async def recent_events(self, limit=50):
        return list(reversed(self.events))[:limit]

    def types(self):
        return [event.event_type.value for event in self.events]


class MemoryLedgerStore(LedgerStoreInterface):
    def __init__(self, meta=None, bills=None):
        self.meta = meta
        self.bills = list(bills or [])

    async def load_meta(self):
        return self.meta

    async def save_meta(self, meta):
        self.meta = meta

    async def list_bills(self, year=None):
        return [b for b in self.bills if year is None or b.year == year]

    async def save_bill(self, bill):
        self.bills.append(bill)

    async def update_bill(self, bill):
        for index, existing in enumerate(self.bills):
            if existing.id == bill.id:
                self.bills[index] = bill
                return
        raise NotFoundError(bill.id)

    async def delete_bill(self, bill_id):
        before = len(self.bills)
        self.bills = [b for b in self.bills if b.id != bill_id]
        return len(self.bills) != before


_CIPHER = PasswordCipher(CryptoSettings())


def build(local=None, password=None):
    """A service over `local`, plus its audit sink."""
    audit = MemoryAuditStorage()
    adapter = PersistenceAdapter(
        SessionContext(encryption_key=password),
        local if local is not None else InMemoryKeyValueStore(),
        cipher=_CIPHER,
    )
    service = LedgerService(
        adapter,
        audit_logger=AuditLogger(audit),
        validator=BillValidator(tolerance=0.01),
        clock=lambda: TODAY,
    )
    return service, audit


async def ready_household(local=None, password="pw"):
    """A READY ledger with Alice and Bob."""
    service, audit = build(local, password=None)
    assert await service.initialize() == LedgerStatus.SETUP_REQUIRED
    assert await service.set_password(password) == LedgerStatus.READY
    alice = await service.add_housemate("Alice")
    bob = await service.add_housemate("Bob")
    return service, audit, alice, bob


class TestStartup:
    """Tests for initialize, set_password and unlock."""

    def test_setup_required_without_data_or_password(self):
        async def scenario():
            service, _ = build()
            assert await service.initialize() == LedgerStatus.SETUP_REQUIRED
            with pytest.raises(PersistenceLockedError):
                await service.add_housemate("Alice")

        asyncio.run(scenario())

    def test_fresh_ledger_with_password_is_ready_without_writing(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, _ = build(local, password="pw")
            assert await service.initialize() == LedgerStatus.READY
            assert service.ledger.meta.available_years == ["2024"]
            assert await local.keys() == []

        asyncio.run(scenario())

    def test_set_password_encrypts_everything(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, audit, _, _ = await ready_household(local)
            assert sorted(await local.keys()) == [bills_key(2024), META_KEY]
            for key in await local.keys():
                assert looks_encrypted(await local.get(key))
            assert "password_set" in audit.types()

        asyncio.run(scenario())

    def test_locked_then_unlock(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            await ready_household(local)

            service, audit = build(local)
            assert await service.initialize() == LedgerStatus.LOCKED
            assert "data_locked" in audit.types()
            with pytest.raises(PersistenceLockedError):
                await service.add_housemate("Mallory")

            assert await service.unlock("wrong") == LedgerStatus.ERROR
            assert "decryption_failed" in audit.types()

            assert await service.unlock("pw") == LedgerStatus.READY
            assert [h.name for h in service.ledger.housemates] == ["Alice", "Bob"]
            assert "data_unlocked" in audit.types()

        asyncio.run(scenario())

    def test_change_password_rewrites_all_years(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, _, alice, bob = await ready_household(local)
            await service.add_bill("Gas", 40, bob.id, date(2023, 11, 1))

            assert await service.set_password("new-pw") == LedgerStatus.READY

            reopened, _ = build(local, password="new-pw")
            assert await reopened.initialize() == LedgerStatus.READY
            await reopened.load_all_years()
            assert [b.title for b in reopened.ledger.bills("2023")] == ["Gas"]

        asyncio.run(scenario())


class TestBills:
    """Tests for bill operations."""

    def test_add_bill_persists_and_balances(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, audit, alice, bob = await ready_household(local)
            await service.add_bill("Power", 100, alice.id, TODAY)

            assert service.ledger.balances == {alice.id: 50.0, bob.id: -50.0}
            assert "bill_added" in audit.types()

            reopened, _ = build(local, password="pw")
            await reopened.initialize()
            assert [b.title for b in reopened.current_bills()] == ["Power"]
            assert reopened.ledger.balances == {alice.id: 50.0, bob.id: -50.0}

        asyncio.run(scenario())

    def test_uneven_percentages_are_saved_with_a_warning(self):
        async def scenario():
            service, _, alice, bob = await ready_household()
            bill = await service.add_bill(
                "Power", 100, alice.id, TODAY,
                split_method=SplitMethod.PERCENTAGE,
                raw_shares={alice.id: 60, bob.id: 30},
            )
            assert [b.id for b in service.current_bills()] == [bill.id]
            assert service.ledger.balances == {alice.id: 40.0, bob.id: -30.0}

            result = service.validate_bill(bill)
            assert result.is_valid
            assert {issue.issue_type for issue in result.issues} == {
                "split_mismatch", "percentage_total",
            }

        asyncio.run(scenario())

    def test_structurally_invalid_bill_is_not_saved(self):
        async def scenario():
            service, _, alice, _ = await ready_household()
            with pytest.raises(BillRejectedError) as exc:
                await service.add_bill("Rent", 100, alice.id, TODAY, participants=[])
            assert exc.value.result.errors[0].issue_type == "missing"
            assert service.current_bills() == []

        asyncio.run(scenario())

    def test_update_moves_bill_between_years(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, _, alice, _ = await ready_household(local, password="pw")
            bill = await service.add_bill("Water", 30, alice.id, TODAY)

            await service.update_bill(bill.model_copy(update={"bill_date": date(2023, 12, 1)}))
            assert service.current_bills() == []
            assert service.ledger.meta.available_years == ["2023", "2024"]

            reopened, _ = build(local, password="pw")
            await reopened.initialize()
            assert [b.id for b in await reopened.load_year("2023")] == [bill.id]

        asyncio.run(scenario())

    def test_delete_bill(self):
        async def scenario():
            service, audit, alice, bob = await ready_household()
            bill = await service.add_bill("Water", 30, alice.id, TODAY)
            await service.delete_bill(bill.id)
            assert service.ledger.balances == {alice.id: 0.0, bob.id: 0.0}
            assert "bill_deleted" in audit.types()

        asyncio.run(scenario())

    def test_settlements(self):
        async def scenario():
            service, audit, alice, bob = await ready_household()
            await service.add_bill("Power", 100, alice.id, TODAY)
            await service.record_settlement(bob.id, alice.id, 20)
            assert service.ledger.balances == {alice.id: 30.0, bob.id: -30.0}

            plan = service.ledger.settlement_plan()
            assert [(tx.from_id, tx.to_id, tx.amount) for tx in plan] == [(bob.id, alice.id, 30.0)]

            paid = await service.settle_up()
            assert len(paid) == 1
            assert all(abs(v) < 0.01 for v in service.ledger.balances.values())
            assert audit.types().count("settlement_recorded") == 2

        asyncio.run(scenario())

    def test_draft_split_prefills_shares(self):
        async def scenario():
            service, _, alice, bob = await ready_household()
            await service.add_bill(
                "Internet", 60, alice.id, TODAY,
                split_method=SplitMethod.SHARES,
                raw_shares={alice.id: 2, bob.id: 1},
                category_id="3",
            )
            draft = service.draft_split(90, SplitMethod.SHARES, category_id="3")
            assert draft.raw_shares == {alice.id: 2, bob.id: 1}
            assert [s.amount for s in draft.splits] == [pytest.approx(60), pytest.approx(30)]

        asyncio.run(scenario())


class TestRoster:
    """Tests for housemate and category changes."""

    def test_roster_changes_are_saved_and_audited(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, audit, alice, bob = await ready_household(local)
            await service.add_bill("Power", 100, alice.id, TODAY)

            await service.rename_housemate(bob.id, "Robert")
            await service.remove_housemate(bob.id)
            category = await service.add_category("Pets")
            await service.rename_category(category.id, "Pet food")
            await service.remove_category("4")

            reopened, _ = build(local, password="pw")
            await reopened.initialize()
            assert [h.name for h in reopened.ledger.housemates] == ["Alice"]
            assert reopened.ledger.balances[bob.id] == -50.0
            assert "Pet food" in [c.name for c in reopened.ledger.categories]
            assert "4" not in [c.id for c in reopened.ledger.categories]
            for event_type in ("housemate_updated", "housemate_removed", "category_added",
                               "category_updated", "category_removed"):
                assert event_type in audit.types()

        asyncio.run(scenario())


class TestExportImport:
    """Tests for whole-ledger export and import."""

    def test_round_trip_into_new_ledger(self):
        async def scenario():
            service, _, alice, bob = await ready_household()
            await service.add_bill("Power", 100, alice.id, TODAY)
            await service.add_bill("Gas", 40, bob.id, date(2023, 1, 10))
            exported = await service.export_data()

            document = json.loads(exported)
            assert set(document) == {"meta", "bills"}
            assert sorted(document["bills"]) == ["2023", "2024"]

            other, audit = build()
            assert await other.import_data(exported) is True
            assert other.status == LedgerStatus.READY
            assert other.ledger.balances == service.ledger.balances
            assert "ledger_imported" in audit.types()

        asyncio.run(scenario())

    def test_import_removes_years_not_in_document(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, _, alice, bob = await ready_household(local)
            await service.add_bill("Gas", 40, bob.id, date(2023, 1, 10))
            await service.add_bill("Power", 100, alice.id, TODAY)

            document = json.loads(await service.export_data())
            del document["bills"]["2023"]
            document["meta"]["availableYears"] = ["2024"]

            assert await service.import_data(json.dumps(document)) is True
            assert bills_key(2023) not in await local.keys()
            assert service.ledger.balances == {alice.id: 50.0, bob.id: -50.0}

        asyncio.run(scenario())

    def test_edit_and_delete_bill_filed_under_another_year(self):
        async def scenario():
            local = InMemoryKeyValueStore()
            service, _, alice, bob = await ready_household(local)
            bill = await service.add_bill("Heating", 30, alice.id, TODAY)

            document = json.loads(await service.export_data())
            document["bills"]["2024"][0]["date"] = "2023-12-31"
            assert await service.import_data(json.dumps(document)) is True

            imported = service.ledger.get_bill(bill.id)
            await service.update_bill(imported.model_copy(update={"title": "Heating oil"}))
            assert service.current_bills() == []
            assert [b.title for b in service.ledger.bills("2023")] == ["Heating oil"]
            assert await local.get(bills_key(2023)) is not None

            await service.delete_bill(bill.id)
            assert service.ledger.bills() == []
            assert service.ledger.balances == {alice.id: 0.0, bob.id: 0.0}

        asyncio.run(scenario())

    @pytest.mark.parametrize("payload", [
        "not json",
        "[]",
        '{"meta": {}, "bills": {}}',
        '{"meta": {"housemates": []}}',
        '{"meta": {"housemates": []}, "bills": {"2024": [{"title": "x"}]}}',
    ])
    def test_rejected_imports_change_nothing(self, payload):
        async def scenario():
            service, audit, alice, _ = await ready_household()
            await service.add_bill("Power", 100, alice.id, TODAY)
            before = service.ledger

            assert await service.import_data(payload) is False
            assert service.ledger is before
            assert len(service.current_bills()) == 1
            assert "import_rejected" in audit.types()

        asyncio.run(scenario())


class TestSheetsSync:
    """Tests for pulling from and pushing to a spreadsheet store."""

    def test_pull_adopts_roster_and_skips_known_bills(self):
        async def scenario():
            service, _ = build(password="pw")
            await service.initialize()

            sheet_bill = Bill(
                id="s1",
                title="Power",
                amount=60,
                payer_id="h1",
                bill_date=date(2024, 2, 1),
                splits=[Split(housemate_id="h1", amount=30), Split(housemate_id="h2", amount=30)],
            )
            store = MemoryLedgerStore(
                meta=LedgerMeta(housemates=[Housemate(id="h1", name="A"), Housemate(id="h2", name="B")]),
                bills=[sheet_bill],
            )

            assert await service.sync_from_sheets(store) == 1
            assert service.ledger.participant_ids == ["h1", "h2"]
            assert service.ledger.balances == {"h1": 30.0, "h2": -30.0}
            assert await service.sync_from_sheets(store) == 0

        asyncio.run(scenario())

    def test_push_appends_missing_bills(self):
        async def scenario():
            service, audit, alice, _ = await ready_household()
            bill = await service.add_bill("Power", 100, alice.id, TODAY)
            store = MemoryLedgerStore()

            assert await service.push_to_sheets(store) == 1
            assert [b.id for b in store.bills] == [bill.id]
            assert store.meta.housemate_ids() == service.ledger.participant_ids
            assert await service.push_to_sheets(store) == 0
            assert "sheets_synced" in audit.types()

        asyncio.run(scenario())
