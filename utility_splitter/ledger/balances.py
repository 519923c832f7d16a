"""
Balance Engine

Folds bills into per-person net balances and plans the payments that
settle them.

Sign convention: positive = is owed money, negative = owes money.

DESIGN DECISION: balances are ALWAYS derivable from the bill list. A
settlement is just another bill (payer +amount, recipient -amount), so
one fold handles everything and recomputing at any time gives the same
answer as any incremental update.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Optional

from utility_splitter.models.ledger import (
    Bill,
    BillType,
    SettlementTransaction,
    Split,
    SplitMethod,
)


SETTLE_THRESHOLD = 0.01


def apply_bill(balances: dict[str, float], bill: Bill, sign: int = 1) -> dict[str, float]:
    """
    Add one bill's effect to `balances` in place.

    Pass sign=-1 to reverse a bill (delete, or the old side of an edit).
    """
    balances[bill.payer_id] = balances.get(bill.payer_id, 0.0) + sign * bill.amount
    for split in bill.splits:
        balances[split.housemate_id] = balances.get(split.housemate_id, 0.0) - sign * split.amount
    return balances


def recompute_balances(
    bills: Iterable[Bill],
    participants: Iterable[str] = (),
) -> dict[str, float]:
    """
    Net balance per housemate from the full bill list.

    Every participant appears, even with no bills. Ids that are no longer
    on the roster (removed housemates) still appear if a bill names them.
    """
    balances = {pid: 0.0 for pid in participants}
    for bill in bills:
        apply_bill(balances, bill)
    return balances


def plan_settlement(
    balances: Mapping[str, float],
    threshold: float = SETTLE_THRESHOLD,
) -> list[SettlementTransaction]:
    """
    Greedy minimum-transaction settlement.

    Debtors and creditors are each sorted by amount, largest first (stable,
    so ties keep their input order). The largest remaining debtor pays the
    largest remaining creditor the smaller of the two remainders; anyone
    whose remainder drops below `threshold` is done.

    Produces at most (debtors + creditors - 1) transactions.
    """
    debtors = [[pid, -amount] for pid, amount in balances.items() if amount < -threshold]
    creditors = [[pid, amount] for pid, amount in balances.items() if amount > threshold]
    debtors.sort(key=lambda entry: entry[1], reverse=True)
    creditors.sort(key=lambda entry: entry[1], reverse=True)

    plan: list[SettlementTransaction] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])

        plan.append(SettlementTransaction(
            from_id=debtor[0],
            to_id=creditor[0],
            amount=amount,
        ))

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] < threshold:
            i += 1
        if creditor[1] < threshold:
            j += 1

    return plan


def settlement_bills(
    plan: Iterable[SettlementTransaction],
    on_date: Optional[date] = None,
    category_id: str = "5",
) -> list[Bill]:
    """Record each planned payment as a settlement bill."""
    on_date = on_date or date.today()
    return [
        Bill(
            title="Settlement",
            amount=tx.amount,
            payer_id=tx.from_id,
            bill_date=on_date,
            split_method=SplitMethod.EXACT,
            splits=[Split(housemate_id=tx.to_id, amount=tx.amount)],
            category_id=category_id,
            bill_type=BillType.SETTLEMENT,
        )
        for tx in plan
    ]
