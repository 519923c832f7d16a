"""
Core Ledger Models for Utility Splitter

These models define the schemas for everything the ledger stores:
housemates, bill categories, bills with their splits, and the metadata
record that ties them together.

DESIGN DECISION: Field names are snake_case in Python but serialize to the
camelCase wire names (payerId, splitMethod, billingMonth...) so exported
documents and stored records stay readable by every existing client.
Always dump with `by_alias=True` when writing to storage.

Amounts are floats with 2-decimal semantics. Split conservation is a
property checked with a tolerance, not an equality.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerModel(BaseModel):
    """Shared config: camelCase aliases, accept either spelling on input."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# ENUMS
# =============================================================================

class SplitMethod(str, Enum):
    """
    How a bill total is divided between participants.

    EXACT is used by settlements and by imported rows that already carry
    literal per-person amounts.
    """
    EQUAL = "equal"
    PERCENTAGE = "percentage"
    SHARES = "shares"
    EXACT = "exact"


class BillType(str, Enum):
    """A regular shared expense, or a direct payment between two people."""
    BILL = "bill"
    SETTLEMENT = "settlement"


# =============================================================================
# ROSTER
# =============================================================================

class Housemate(LedgerModel):
    """A participant in the household ledger."""

    id: str = Field(default_factory=_new_id, min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    avatar: Optional[str] = None


class BillCategory(LedgerModel):
    """
    User-editable bill category.

    Bills reference categories by id. Deleting a category does not touch
    the bills that used it.
    """

    id: str = Field(default_factory=_new_id, min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    is_default: bool = False


DEFAULT_CATEGORIES = (
    ("1", "Utilities"),
    ("2", "Rent"),
    ("3", "Internet"),
    ("4", "Groceries"),
    ("5", "Other"),
)

OTHER_CATEGORY_ID = "5"


def default_categories() -> list[BillCategory]:
    """Categories every new ledger starts with."""
    return [
        BillCategory(id=cat_id, name=name, is_default=True)
        for cat_id, name in DEFAULT_CATEGORIES
    ]


# =============================================================================
# BILLS
# =============================================================================

class Split(LedgerModel):
    """
    One participant's part of a bill.

    `share` is the raw user input (percentage points or share count) and is
    kept so that editing a bill does not lose what the user typed.
    """

    housemate_id: str = Field(..., min_length=1)
    amount: float = 0.0
    share: Optional[float] = None


class Bill(LedgerModel):
    """
    A recorded expense or settlement.

    A settlement is a bill with type=settlement and exactly one split: the
    payer handed `amount` directly to the split's housemate.
    """

    id: str = Field(default_factory=_new_id, min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., gt=0)
    payer_id: str = Field(..., min_length=1)
    bill_date: date = Field(..., alias="date")
    split_method: SplitMethod = SplitMethod.EQUAL
    splits: list[Split] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    billing_month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}$",
        description="YYYY-MM grouping key; derived from the date when omitted",
    )
    category_id: str = Field(default=OTHER_CATEGORY_ID, min_length=1)
    bill_type: BillType = Field(default=BillType.BILL, alias="type")

    @field_validator("bill_date", mode="before")
    @classmethod
    def strip_time_component(cls, v: Any) -> Any:
        """Accept full ISO timestamps as dates (older records stored those)."""
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10 and v[4] == "-":
            return v[:10]
        return v

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are treated as UTC so bills always sort."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def validate_bill(self) -> "Bill":
        """Fill the billing month and check settlement shape."""
        if self.billing_month is None:
            self.billing_month = self.bill_date.strftime("%Y-%m")

        if self.bill_type == BillType.SETTLEMENT and len(self.splits) != 1:
            raise ValueError("A settlement must have exactly one split")

        return self

    @property
    def is_settlement(self) -> bool:
        return self.bill_type == BillType.SETTLEMENT

    @property
    def year(self) -> str:
        """Calendar year bucket used for per-year persistence keys."""
        return str(self.bill_date.year)

    @property
    def split_total(self) -> float:
        return sum(split.amount for split in self.splits)


class SettlementTransaction(LedgerModel):
    """One payment in a settlement plan: `from_id` pays `to_id`."""

    from_id: str = Field(..., alias="from")
    to_id: str = Field(..., alias="to")
    amount: float = Field(..., gt=0)


# =============================================================================
# STORED DOCUMENTS
# =============================================================================

class LedgerMeta(LedgerModel):
    """
    The metadata record stored under the meta key.

    `balances` is a cache. The authoritative balances are always the fold
    of every bill; this copy is rewritten on each bill mutation so a reader
    can show totals before loading every year.
    """

    housemates: list[Housemate] = Field(default_factory=list)
    bill_categories: list[BillCategory] = Field(default_factory=default_categories)
    balances: dict[str, float] = Field(default_factory=dict)
    available_years: list[str] = Field(default_factory=list)

    @field_validator("available_years")
    @classmethod
    def sort_years(cls, v: list[str]) -> list[str]:
        return sorted(set(v))

    @classmethod
    def initial(cls, today: Optional[date] = None) -> "LedgerMeta":
        """Metadata for a brand new ledger."""
        today = today or date.today()
        return cls(available_years=[str(today.year)])

    def housemate_ids(self) -> list[str]:
        return [h.id for h in self.housemates]


class ExportDocument(LedgerModel):
    """Full ledger export: metadata plus every year's bill array."""

    meta: LedgerMeta
    bills: dict[str, list[Bill]] = Field(default_factory=dict)

    def all_bills(self) -> list[Bill]:
        return [bill for year in sorted(self.bills) for bill in self.bills[year]]
