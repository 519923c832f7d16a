"""Tests for the in-memory household ledger and dashboard summary."""

from datetime import date

import pytest

from utility_splitter.ledger import HouseholdLedger, LedgerError, UnknownBillError
from utility_splitter.models.ledger import (
    Bill,
    BillCategory,
    Housemate,
    LedgerMeta,
    Split,
    SplitMethod,
    default_categories,
)


@pytest.fixture
def ledger():
    meta = LedgerMeta(
        housemates=[Housemate(id="alice", name="Alice"), Housemate(id="bob", name="Bob")],
        available_years=["2024"],
    )
    return HouseholdLedger(meta, {"2024": []})


class TestHouseholdLedger:
    """Tests for bill and roster mutations."""

    def test_add_bill_updates_balances(self, ledger):
        bill = ledger.new_bill("Power", 100, "alice", date(2024, 2, 1))
        ledger.add_bill(bill)
        assert ledger.balances == {"alice": 50.0, "bob": -50.0}
        assert ledger.bills("2024") == [bill]

    def test_newest_bill_first(self, ledger):
        first = ledger.add_bill(ledger.new_bill("A", 10, "alice", date(2024, 1, 1)))
        second = ledger.add_bill(ledger.new_bill("B", 10, "alice", date(2024, 1, 2)))
        assert ledger.bills("2024") == [second, first]

    def test_new_year_is_registered(self, ledger):
        ledger.add_bill(ledger.new_bill("Gas", 40, "bob", date(2025, 1, 3)))
        assert ledger.meta.available_years == ["2024", "2025"]
        assert ledger.loaded_years == ["2024", "2025"]

    def test_update_bill_moves_year(self, ledger):
        bill = ledger.add_bill(ledger.new_bill("Gas", 40, "bob", date(2024, 12, 30)))
        moved = bill.model_copy(update={"bill_date": date(2025, 1, 2)})
        ledger.update_bill(moved)
        assert ledger.bills("2024") == []
        assert ledger.bills("2025")[0].id == bill.id

    def test_update_bill_reverses_old_effect(self, ledger):
        bill = ledger.add_bill(ledger.new_bill("Gas", 40, "bob", date(2024, 3, 1)))
        ledger.update_bill(bill.model_copy(update={"payer_id": "alice"}))
        assert ledger.balances == {"alice": 20.0, "bob": -20.0}

    def test_delete_bill(self, ledger):
        bill = ledger.add_bill(ledger.new_bill("Gas", 40, "bob", date(2024, 3, 1)))
        ledger.delete_bill(bill.id)
        assert ledger.balances == {"alice": 0.0, "bob": 0.0}
        with pytest.raises(UnknownBillError):
            ledger.get_bill(bill.id)

    @pytest.mark.parametrize("loaded", [{}, {"2023": []}])
    def test_bill_filed_under_another_year(self, loaded):
        meta = LedgerMeta(
            housemates=[Housemate(id="alice", name="Alice"), Housemate(id="bob", name="Bob")],
            available_years=["2024"],
        )
        bill = Bill(
            title="Heating",
            amount=30,
            payer_id="alice",
            bill_date=date(2023, 12, 31),
            splits=[Split(housemate_id="alice", amount=15), Split(housemate_id="bob", amount=15)],
        )
        ledger = HouseholdLedger(meta, {**loaded, "2024": [bill]})
        assert ledger.find_bill(bill.id) == ("2024", bill)

        edited = ledger.update_bill(bill.model_copy(update={"amount": 40.0, "splits": [
            Split(housemate_id="alice", amount=20), Split(housemate_id="bob", amount=20),
        ]}))
        assert ledger.bills("2024") == []
        assert ledger.bills("2023") == [edited]
        assert ledger.balances == {"alice": 20.0, "bob": -20.0}

        ledger.delete_bill(bill.id)
        assert ledger.bills() == []
        assert ledger.balances == {"alice": 0.0, "bob": 0.0}

    def test_record_settlement(self, ledger):
        ledger.add_bill(ledger.new_bill("Power", 60, "alice", date(2024, 2, 1)))
        settlement = ledger.record_settlement("bob", "alice", 30, date(2024, 2, 2))
        assert settlement.is_settlement
        assert ledger.balances == {"alice": 0.0, "bob": 0.0}
        assert ledger.settlement_plan() == []

    def test_settle_all(self, ledger):
        ledger.add_housemate(Housemate(id="cara", name="Cara"))
        ledger.add_bill(ledger.new_bill("Rent", 900, "alice", date(2024, 4, 1)))
        paid = ledger.settle_all(date(2024, 4, 2))
        assert len(paid) == 2
        assert all(abs(v) < 0.01 for v in ledger.balances.values())

    def test_incremental_balances_when_years_missing(self):
        """Test the cache is adjusted in place when not every year is loaded."""
        meta = LedgerMeta(
            housemates=[Housemate(id="a", name="A"), Housemate(id="b", name="B")],
            balances={"a": 10.0, "b": -10.0},
            available_years=["2023", "2024"],
        )
        ledger = HouseholdLedger(meta, {"2024": []})
        assert not ledger.is_complete

        ledger.add_bill(ledger.new_bill("Power", 20, "a", date(2024, 1, 1)))
        assert ledger.balances == {"a": 20.0, "b": -20.0}

    def test_complete_ledger_recomputes(self):
        """Test a stale cache is replaced once every year is loaded."""
        meta = LedgerMeta(
            housemates=[Housemate(id="a", name="A")],
            balances={"a": 999.0},
            available_years=["2024"],
        )
        ledger = HouseholdLedger(meta, {"2024": []})
        assert ledger.balances == {"a": 0.0}

    def test_removed_housemate_keeps_balance(self, ledger):
        ledger.add_bill(ledger.new_bill("Power", 100, "alice", date(2024, 2, 1)))
        ledger.remove_housemate("bob")
        assert ledger.participant_ids == ["alice"]
        ledger.recompute()
        assert ledger.balances["bob"] == -50.0

    def test_duplicate_housemate(self, ledger):
        with pytest.raises(LedgerError):
            ledger.add_housemate(Housemate(id="alice", name="Again"))

    def test_rename(self, ledger):
        assert ledger.rename_housemate("bob", "Robert").name == "Robert"
        assert ledger.rename_category("1", "Power").name == "Power"
        with pytest.raises(LedgerError):
            ledger.rename_housemate("nobody", "X")
        with pytest.raises(LedgerError):
            ledger.rename_category("nope", "X")

    def test_categories(self, ledger):
        ledger.add_category(BillCategory(id="pets", name="Pets"))
        with pytest.raises(LedgerError):
            ledger.add_category(BillCategory(id="pets", name="Pets"))
        ledger.remove_category("pets")
        assert [c.id for c in ledger.categories] == ["1", "2", "3", "4", "5"]

    def test_new_bill_with_shares(self, ledger):
        bill = ledger.new_bill(
            "Internet", 60, "bob", date(2024, 5, 1),
            split_method=SplitMethod.SHARES,
            raw_shares={"alice": 2, "bob": 1},
            category_id="3",
        )
        assert [s.amount for s in bill.splits] == [pytest.approx(40), pytest.approx(20)]


class TestSummary:
    """Tests for the dashboard figures."""

    def test_rent_and_settlements(self, ledger):
        ledger.add_bill(ledger.new_bill("Rent", 1000, "alice", date(2024, 1, 1), category_id="2"))
        ledger.add_bill(ledger.new_bill("Power", 80, "bob", date(2024, 1, 5), category_id="1"))
        ledger.record_settlement("bob", "alice", 460, date(2024, 1, 6))

        summary = ledger.summary("2024")
        assert summary.total_expenses == 1080
        assert summary.total_expenses_excluding_rent == 80
        assert summary.total_payable == {"alice": 540.0, "bob": 540.0}
        assert summary.category_stats["2"].count == 1
        assert summary.category_stats["1"].total == 80
        assert summary.category_breakdown["alice"]["2"] == 1000
        assert summary.category_breakdown["bob"]["1"] == 80

    def test_rent_matched_by_title(self):
        meta = LedgerMeta(
            housemates=[Housemate(id="a", name="A")],
            bill_categories=[c for c in default_categories() if c.name != "Rent"],
            available_years=["2024"],
        )
        ledger = HouseholdLedger(meta, {"2024": []})
        ledger.add_bill(ledger.new_bill("Rent", 500, "a", date(2024, 1, 1), category_id="4"))
        assert ledger.summary("2024").total_expenses_excluding_rent == 0

    def test_removed_housemates_not_shown(self, ledger):
        ledger.add_bill(ledger.new_bill("Power", 90, "alice", date(2024, 1, 1)))
        ledger.remove_housemate("bob")
        assert ledger.summary("2024").total_payable == {"alice": 45.0}
