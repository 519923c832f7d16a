"""Ledger package: split calculation, balances, summaries and the in-memory book."""

from utility_splitter.ledger.balances import (
    SETTLE_THRESHOLD,
    apply_bill,
    plan_settlement,
    recompute_balances,
    settlement_bills,
)
from utility_splitter.ledger.book import (
    HouseholdLedger,
    LedgerError,
    UnknownBillError,
)
from utility_splitter.ledger.splits import (
    SplitDraft,
    compute_splits,
    shares_from_previous_bill,
)
from utility_splitter.ledger.summary import (
    CategoryStat,
    LedgerSummary,
    summarize,
)

__all__ = [
    "SETTLE_THRESHOLD",
    "CategoryStat",
    "HouseholdLedger",
    "LedgerError",
    "LedgerSummary",
    "SplitDraft",
    "UnknownBillError",
    "apply_bill",
    "compute_splits",
    "plan_settlement",
    "recompute_balances",
    "settlement_bills",
    "shares_from_previous_bill",
    "summarize",
]
