"""
Dashboard Summary

Read-only aggregates over one year's bills. Settlements move money
between housemates and are not expenses, so they are left out of every
figure here.
"""

from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from utility_splitter.models.ledger import (
    OTHER_CATEGORY_ID,
    Bill,
    BillCategory,
    Housemate,
)


class CategoryStat(BaseModel):
    total: float = 0.0
    count: int = 0


class LedgerSummary(BaseModel):
    """Figures shown on the dashboard for the loaded year."""

    total_expenses: float = 0.0
    total_expenses_excluding_rent: float = 0.0
    total_payable: dict[str, float] = Field(default_factory=dict)
    category_stats: dict[str, CategoryStat] = Field(default_factory=dict)
    category_breakdown: dict[str, dict[str, float]] = Field(
        default_factory=dict,
        description="payer id -> category id -> amount paid",
    )


def _rent_category_ids(categories: Iterable[BillCategory]) -> set[str]:
    return {cat.id for cat in categories if cat.name.strip().lower() == "rent"}


def _is_rent(bill: Bill, rent_ids: set[str]) -> bool:
    return (
        bill.category_id in rent_ids
        or bill.category_id.lower() == "rent"
        or bill.title.lower() == "rent"
    )


def summarize(
    bills: Iterable[Bill],
    housemates: Sequence[Housemate],
    categories: Sequence[BillCategory],
) -> LedgerSummary:
    """Build the dashboard figures for `bills`."""
    rent_ids = _rent_category_ids(categories)
    summary = LedgerSummary(
        total_payable={h.id: 0.0 for h in housemates},
        category_stats={cat.id: CategoryStat() for cat in categories},
        category_breakdown={
            h.id: {cat.id: 0.0 for cat in categories} for h in housemates
        },
    )
    summary.category_stats.setdefault(OTHER_CATEGORY_ID, CategoryStat())

    for bill in bills:
        if bill.is_settlement:
            continue

        summary.total_expenses += bill.amount
        if not _is_rent(bill, rent_ids):
            summary.total_expenses_excluding_rent += bill.amount

        for split in bill.splits:
            # Removed housemates are not shown
            if split.housemate_id in summary.total_payable:
                summary.total_payable[split.housemate_id] += split.amount

        category_id = bill.category_id or OTHER_CATEGORY_ID
        stat = summary.category_stats.setdefault(category_id, CategoryStat())
        stat.total += bill.amount
        stat.count += 1

        breakdown = summary.category_breakdown.get(bill.payer_id)
        if breakdown is not None:
            breakdown[category_id] = breakdown.get(category_id, 0.0) + bill.amount

    return summary
