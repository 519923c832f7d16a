"""
Split Calculator

Turns a bill total, a split method and the raw per-person inputs into
per-person amounts.

IMPORTANT: the calculator never corrects its inputs.
- Equal splits are not rounded and the remainder is not redistributed.
- Percentages are not normalised; if they do not add up to 100 the splits
  do not add up to the total, and the validator reports it.
- Share counts that add up to zero give zero amounts instead of failing.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Optional

from utility_splitter.models.ledger import Bill, Split, SplitMethod


def compute_splits(
    total_amount: float,
    method: SplitMethod,
    participants: Sequence[str],
    raw_shares: Optional[Mapping[str, float]] = None,
) -> list[Split]:
    """
    Compute each participant's amount.

    Args:
        total_amount: Bill total
        method: How to divide it
        participants: Housemate ids, in display order
        raw_shares: Per-person input. Percentage points for PERCENTAGE,
            share counts for SHARES, literal amounts for EXACT. Ignored
            for EQUAL. Missing entries count as 0.

    Returns:
        One Split per participant, in the order given
    """
    raw_shares = raw_shares or {}
    method = SplitMethod(method)

    if method == SplitMethod.EQUAL:
        if not participants:
            return []
        each = total_amount / len(participants)
        return [Split(housemate_id=pid, amount=each, share=1) for pid in participants]

    shares = {pid: float(raw_shares.get(pid, 0) or 0) for pid in participants}

    if method == SplitMethod.PERCENTAGE:
        return [
            Split(housemate_id=pid, amount=total_amount * shares[pid] / 100, share=shares[pid])
            for pid in participants
        ]

    if method == SplitMethod.SHARES:
        total_shares = sum(shares.values())
        if total_shares == 0:
            return [Split(housemate_id=pid, amount=0.0, share=shares[pid]) for pid in participants]
        return [
            Split(
                housemate_id=pid,
                amount=total_amount * shares[pid] / total_shares,
                share=shares[pid],
            )
            for pid in participants
        ]

    # EXACT: literal amounts pass straight through
    return [Split(housemate_id=pid, amount=shares[pid]) for pid in participants]


def shares_from_previous_bill(
    bills: Iterable[Bill],
    category_id: str,
    method: SplitMethod,
    participants: Sequence[str],
) -> dict[str, float]:
    """
    Prefill raw shares from the latest bill of the same category and method.

    Equal splits have nothing to prefill. Participants that were not on the
    previous bill start at 0.
    """
    method = SplitMethod(method)
    if method == SplitMethod.EQUAL:
        return {}

    candidates = [
        bill for bill in bills
        if bill.category_id == category_id and bill.split_method == method
    ]
    if not candidates:
        return {}

    latest = max(candidates, key=lambda b: b.created_at)
    previous = {split.housemate_id: split.share or 0 for split in latest.splits}
    return {pid: previous.get(pid, 0) for pid in participants}


class SplitDraft:
    """
    Split state for a bill being entered or edited.

    Mirrors the bill entry form: the total, the roster or any single share
    can change, and amounts are recomputed after each change. User-entered
    shares survive total and roster changes; changing one share never
    resets another.
    """

    def __init__(
        self,
        participants: Sequence[str],
        method: SplitMethod = SplitMethod.EQUAL,
        total_amount: float = 0.0,
        raw_shares: Optional[Mapping[str, float]] = None,
    ):
        self._participants = list(participants)
        self._method = SplitMethod(method)
        self._total = float(total_amount)
        self._shares: dict[str, float] = {pid: 0.0 for pid in self._participants}
        if raw_shares:
            for pid, value in raw_shares.items():
                if pid in self._shares:
                    self._shares[pid] = float(value)
        self._splits = self._recompute()

    @classmethod
    def from_bill(cls, bill: Bill, participants: Sequence[str]) -> "SplitDraft":
        """Start an edit from a stored bill, keeping its raw shares."""
        if bill.split_method == SplitMethod.EXACT:
            raw = {split.housemate_id: split.amount for split in bill.splits}
        else:
            raw = {split.housemate_id: split.share or 0 for split in bill.splits}
        return cls(participants, bill.split_method, bill.amount, raw)

    def _recompute(self) -> list[Split]:
        return compute_splits(self._total, self._method, self._participants, self._shares)

    @property
    def splits(self) -> list[Split]:
        return list(self._splits)

    @property
    def method(self) -> SplitMethod:
        return self._method

    @property
    def total_amount(self) -> float:
        return self._total

    @property
    def raw_shares(self) -> dict[str, float]:
        return dict(self._shares)

    def set_total(self, total_amount: float) -> list[Split]:
        self._total = float(total_amount)
        self._splits = self._recompute()
        return self.splits

    def set_share(self, housemate_id: str, value: float) -> list[Split]:
        if housemate_id not in self._shares:
            raise KeyError(f"{housemate_id} is not a participant")
        self._shares[housemate_id] = float(value)
        self._splits = self._recompute()
        return self.splits

    def set_method(self, method: SplitMethod) -> list[Split]:
        self._method = SplitMethod(method)
        self._splits = self._recompute()
        return self.splits

    def set_participants(self, participants: Sequence[str]) -> list[Split]:
        """New participants start at 0; removed ones are dropped."""
        self._participants = list(participants)
        self._shares = {pid: self._shares.get(pid, 0.0) for pid in self._participants}
        self._splits = self._recompute()
        return self.splits
