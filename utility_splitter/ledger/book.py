"""
Household Ledger

In-memory ledger: roster, categories, the bills of every loaded year and
the balance cache.

DESIGN DECISION: the bill list is the single source of truth for balances.
`meta.balances` is a cache kept for years that are not loaded. It is
updated on every bill mutation, and replaced by a full recompute whenever
every available year is in memory.

Removing a housemate never touches their bills. Those bills keep the id
and it stays in the balances.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Optional

from utility_splitter.ledger.balances import (
    SETTLE_THRESHOLD,
    apply_bill,
    plan_settlement,
    recompute_balances,
    settlement_bills,
)
from utility_splitter.ledger.splits import compute_splits
from utility_splitter.ledger.summary import LedgerSummary, summarize
from utility_splitter.models.ledger import (
    OTHER_CATEGORY_ID,
    Bill,
    BillCategory,
    BillType,
    Housemate,
    LedgerMeta,
    SettlementTransaction,
    Split,
    SplitMethod,
)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class UnknownBillError(LedgerError):
    """No loaded bill has the given id."""
    pass


class HouseholdLedger:
    """
    Ledger state plus the operations that keep it consistent.

    Bills are grouped by calendar year. Newest bills come first within a
    year, the order they are shown in.
    """

    def __init__(
        self,
        meta: Optional[LedgerMeta] = None,
        bills_by_year: Optional[Mapping[str, Sequence[Bill]]] = None,
    ):
        self.meta = meta or LedgerMeta.initial()
        self._bills: dict[str, list[Bill]] = {
            year: list(bills) for year, bills in (bills_by_year or {}).items()
        }
        for year in self._bills:
            self._add_year(year)
        if self.is_complete:
            self.recompute()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def housemates(self) -> list[Housemate]:
        return list(self.meta.housemates)

    @property
    def categories(self) -> list[BillCategory]:
        return list(self.meta.bill_categories)

    @property
    def participant_ids(self) -> list[str]:
        return self.meta.housemate_ids()

    @property
    def loaded_years(self) -> list[str]:
        return sorted(self._bills)

    @property
    def is_complete(self) -> bool:
        """True when every year with bills is loaded."""
        return set(self.meta.available_years) <= set(self._bills)

    @property
    def balances(self) -> dict[str, float]:
        return dict(self.meta.balances)

    def bills(self, year: Optional[str] = None) -> list[Bill]:
        if year is not None:
            return list(self._bills.get(year, []))
        return [bill for y in sorted(self._bills) for bill in self._bills[y]]

    def bills_by_year(self) -> dict[str, list[Bill]]:
        return {year: list(bills) for year, bills in self._bills.items()}

    def find_bill(self, bill_id: str) -> tuple[str, Bill]:
        """Return the year a bill is filed under, with the bill.

        The year key is not always the year of the bill's date: imported
        documents may file an edited bill under the year it was entered.
        """
        for year, bills in self._bills.items():
            for bill in bills:
                if bill.id == bill_id:
                    return year, bill
        raise UnknownBillError(f"Bill not found: {bill_id}")

    def get_bill(self, bill_id: str) -> Bill:
        return self.find_bill(bill_id)[1]

    def summary(self, year: str) -> LedgerSummary:
        return summarize(self.bills(year), self.meta.housemates, self.meta.bill_categories)

    # ------------------------------------------------------------------
    # Years
    # ------------------------------------------------------------------

    def _add_year(self, year: str) -> None:
        if year not in self.meta.available_years:
            self.meta.available_years = sorted({*self.meta.available_years, year})

    def load_year(self, year: str, bills: Iterable[Bill]) -> None:
        """Put a year's bills in memory (replacing any loaded copy)."""
        self._bills[year] = list(bills)
        self._add_year(year)
        if self.is_complete:
            self.recompute()

    def unload_year(self, year: str) -> None:
        self._bills.pop(year, None)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def recompute(self) -> dict[str, float]:
        """Rebuild the balance cache from the loaded bills."""
        self.meta.balances = recompute_balances(self.bills(), self.participant_ids)
        return self.balances

    def _after_mutation(self, old: Optional[Bill], new: Optional[Bill]) -> None:
        if self.is_complete:
            self.recompute()
            return
        balances = dict(self.meta.balances)
        if old is not None:
            apply_bill(balances, old, sign=-1)
        if new is not None:
            apply_bill(balances, new)
        self.meta.balances = balances

    def settlement_plan(self, threshold: float = SETTLE_THRESHOLD) -> list[SettlementTransaction]:
        return plan_settlement(self.meta.balances, threshold)

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def add_housemate(self, housemate: Housemate) -> Housemate:
        if housemate.id in self.participant_ids:
            raise LedgerError(f"Housemate already exists: {housemate.id}")
        self.meta.housemates = [*self.meta.housemates, housemate]
        self.meta.balances = {housemate.id: 0.0, **self.meta.balances}
        return housemate

    def remove_housemate(self, housemate_id: str) -> None:
        self.meta.housemates = [h for h in self.meta.housemates if h.id != housemate_id]

    def rename_housemate(self, housemate_id: str, name: str) -> Housemate:
        for index, housemate in enumerate(self.meta.housemates):
            if housemate.id == housemate_id:
                renamed = housemate.model_copy(update={"name": name})
                self.meta.housemates[index] = renamed
                return renamed
        raise LedgerError(f"Housemate not found: {housemate_id}")

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def add_category(self, category: BillCategory) -> BillCategory:
        if any(c.id == category.id for c in self.meta.bill_categories):
            raise LedgerError(f"Category already exists: {category.id}")
        self.meta.bill_categories = [*self.meta.bill_categories, category]
        return category

    def remove_category(self, category_id: str) -> None:
        self.meta.bill_categories = [
            c for c in self.meta.bill_categories if c.id != category_id
        ]

    def rename_category(self, category_id: str, name: str) -> BillCategory:
        for index, category in enumerate(self.meta.bill_categories):
            if category.id == category_id:
                renamed = category.model_copy(update={"name": name})
                self.meta.bill_categories[index] = renamed
                return renamed
        raise LedgerError(f"Category not found: {category_id}")

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def new_bill(
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
        """Build (not add) a bill, computing its splits over the roster."""
        participants = list(participants) if participants is not None else self.participant_ids
        return Bill(
            title=title,
            amount=amount,
            payer_id=payer_id,
            bill_date=bill_date,
            split_method=split_method,
            splits=compute_splits(amount, split_method, participants, raw_shares),
            category_id=category_id,
        )

    def add_bill(self, bill: Bill) -> Bill:
        year = bill.year
        self._bills.setdefault(year, [])
        self._add_year(year)
        self._bills[year].insert(0, bill)
        self._after_mutation(None, bill)
        return bill

    def update_bill(self, bill: Bill) -> Bill:
        filed_year, old = self.find_bill(bill.id)
        old_bills = self._bills[filed_year]
        index = old_bills.index(old)

        if filed_year == bill.year:
            old_bills[index] = bill
        else:
            del old_bills[index]
            self._bills.setdefault(bill.year, []).insert(0, bill)
            self._add_year(bill.year)

        self._after_mutation(old, bill)
        return bill

    def delete_bill(self, bill_id: str) -> Bill:
        filed_year, old = self.find_bill(bill_id)
        self._bills[filed_year].remove(old)
        self._after_mutation(old, None)
        return old

    def record_settlement(
        self,
        from_id: str,
        to_id: str,
        amount: float,
        on_date: Optional[date] = None,
    ) -> Bill:
        """Record a direct payment from `from_id` to `to_id`."""
        bill = Bill(
            title="Settlement",
            amount=amount,
            payer_id=from_id,
            bill_date=on_date or date.today(),
            split_method=SplitMethod.EXACT,
            splits=[Split(housemate_id=to_id, amount=amount)],
            bill_type=BillType.SETTLEMENT,
        )
        return self.add_bill(bill)

    def settle_all(self, on_date: Optional[date] = None) -> list[Bill]:
        """Record every payment of the current settlement plan."""
        return [self.add_bill(bill) for bill in settlement_bills(self.settlement_plan(), on_date)]
