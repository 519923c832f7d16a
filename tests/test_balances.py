"""Tests for the balance engine and settlement planning."""

import random
from datetime import date

import pytest

from utility_splitter.ledger import (
    apply_bill,
    compute_splits,
    plan_settlement,
    recompute_balances,
    settlement_bills,
)
from utility_splitter.models.ledger import Bill, BillType, Split, SplitMethod


def bill(amount, payer, participants, method=SplitMethod.EQUAL, shares=None):
    return Bill(
        title="bill",
        amount=amount,
        payer_id=payer,
        bill_date=date(2024, 5, 1),
        split_method=method,
        splits=compute_splits(amount, method, participants, shares),
    )


def settlement(from_id, to_id, amount):
    return Bill(
        title="Settlement",
        amount=amount,
        payer_id=from_id,
        bill_date=date(2024, 5, 2),
        split_method=SplitMethod.EXACT,
        splits=[Split(housemate_id=to_id, amount=amount)],
        bill_type=BillType.SETTLEMENT,
    )


def random_ledger(seed, people=5, count=30):
    rng = random.Random(seed)
    ids = [f"p{i}" for i in range(people)]
    bills = []
    for _ in range(count):
        participants = rng.sample(ids, rng.randint(1, people))
        method = rng.choice([SplitMethod.EQUAL, SplitMethod.SHARES])
        shares = {p: rng.randint(1, 4) for p in participants}
        bills.append(bill(round(rng.uniform(1, 500), 2), rng.choice(ids), participants, method, shares))
    return ids, bills


class TestRecomputeBalances:
    """Tests for folding bills into balances."""

    def test_worked_example(self):
        """Test Alice pays 100 split equally with Bob."""
        balances = recompute_balances([bill(100, "alice", ["alice", "bob"])], ["alice", "bob"])
        assert balances == {"alice": 50.0, "bob": -50.0}

    def test_every_participant_appears(self):
        assert recompute_balances([], ["a", "b"]) == {"a": 0.0, "b": 0.0}

    def test_dangling_ids_still_count(self):
        """Test a removed housemate's bills still move balances."""
        balances = recompute_balances([bill(90, "gone", ["a", "gone", "b"])], ["a", "b"])
        assert balances["gone"] == pytest.approx(60)
        assert balances["a"] == pytest.approx(-30)

    def test_settlement_is_just_a_bill(self):
        balances = recompute_balances(
            [bill(100, "alice", ["alice", "bob"]), settlement("bob", "alice", 50)],
            ["alice", "bob"],
        )
        assert balances == {"alice": 0.0, "bob": 0.0}

    @pytest.mark.parametrize("seed", range(5))
    def test_zero_sum(self, seed):
        ids, bills = random_ledger(seed)
        balances = recompute_balances(bills, ids)
        assert sum(balances.values()) == pytest.approx(0, abs=0.01)

    def test_idempotent(self):
        ids, bills = random_ledger(42)
        assert recompute_balances(bills, ids) == recompute_balances(bills, ids)

    def test_apply_and_reverse(self):
        """Test incremental apply/reverse matches a full recompute."""
        ids, bills = random_ledger(7)
        balances = recompute_balances(bills, ids)
        apply_bill(balances, bills[3], sign=-1)
        expected = recompute_balances(bills[:3] + bills[4:], ids)
        for pid in ids:
            assert balances[pid] == pytest.approx(expected[pid])


class TestPlanSettlement:
    """Tests for the greedy settlement plan."""

    def test_worked_example(self):
        plan = plan_settlement({"alice": 30, "bob": -30})
        assert [tx.to_wire() for tx in plan] == [{"from": "bob", "to": "alice", "amount": 30.0}]

    def test_already_settled(self):
        assert plan_settlement({"a": 0.004, "b": -0.004}) == []

    def test_largest_pairs_first(self):
        plan = plan_settlement({"a": 70, "b": 30, "c": -60, "d": -40})
        assert [(tx.from_id, tx.to_id, tx.amount) for tx in plan] == [
            ("c", "a", 60),
            ("d", "a", 10),
            ("d", "b", 30),
        ]

    def test_ties_keep_input_order(self):
        plan = plan_settlement({"x": -10, "y": -10, "z": 20})
        assert [tx.from_id for tx in plan] == ["x", "y"]

    @pytest.mark.parametrize("seed", range(8))
    def test_plan_settles_everyone(self, seed):
        """Test applying the plan leaves every balance within 0.01 of zero."""
        ids, bills = random_ledger(seed, people=6)
        balances = recompute_balances(bills, ids)
        plan = plan_settlement(balances)

        for tx in plan:
            balances[tx.from_id] += tx.amount
            balances[tx.to_id] -= tx.amount
        assert all(abs(v) < 0.01 for v in balances.values())

    @pytest.mark.parametrize("seed", range(8))
    def test_plan_is_small(self, seed):
        """Test at most (debtors + creditors - 1) transactions."""
        ids, bills = random_ledger(seed, people=6)
        balances = recompute_balances(bills, ids)
        debtors = sum(1 for v in balances.values() if v < -0.01)
        creditors = sum(1 for v in balances.values() if v > 0.01)
        plan = plan_settlement(balances)
        if debtors and creditors:
            assert len(plan) <= debtors + creditors - 1

    def test_settlement_bills_zero_the_ledger(self):
        ids, bills = random_ledger(3)
        balances = recompute_balances(bills, ids)
        paid = settlement_bills(plan_settlement(balances), date(2024, 6, 1))
        assert all(b.is_settlement and len(b.splits) == 1 for b in paid)
        after = recompute_balances(bills + paid, ids)
        assert all(abs(v) < 0.01 for v in after.values())
