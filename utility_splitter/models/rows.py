"""
Spreadsheet Row Schema

Rows read from the household spreadsheet come in three shapes:

- NativeBillRow: one bill per row, written by this package
  [id, title, amount, payerId, date, splitMethod, splitsJson, createdAt,
   billingMonth, categoryId, type]
- HistoryBillRow: imported bill history
  [timestamp, month, category, description, amount, _, status, id]
- ManualGridRow: the old hand-maintained grid, one vendor per row and one
  amount column per housemate [month, vendor, amount, amount, ...]

DESIGN DECISION: every row is parsed into a tagged variant or rejected
with a RowParseError that names the sheet, row and reason. Nothing is
coerced on a best-effort basis; a row we cannot read is reported, not
guessed.
"""

import json
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from utility_splitter.models.ledger import (
    Bill,
    BillType,
    Split,
    SplitMethod,
)


SYSTEM_PAYER_ID = "SYSTEM"

NATIVE_COLUMNS = [
    "id",
    "title",
    "amount",
    "payerId",
    "date",
    "splitMethod",
    "splits",
    "createdAt",
    "billingMonth",
    "categoryId",
    "type",
]


class RowParseError(ValueError):
    """A spreadsheet row could not be turned into a typed record."""

    def __init__(self, sheet: str, row_number: int, reason: str):
        self.sheet = sheet
        self.row_number = row_number
        self.reason = reason
        super().__init__(f"{sheet} row {row_number}: {reason}")


# =============================================================================
# DATE HANDLING
# =============================================================================

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%B %Y",
    "%b %Y",
    "%Y-%m",
)


def parse_sheet_date(raw: str) -> date:
    """
    Parse the date spellings found in the sheets.

    Month-only values ("October 2023", "2023-10") resolve to the first of
    the month. Raises ValueError for anything else.
    """
    value = (raw or "").strip()
    if not value:
        raise ValueError("empty date")

    # ISO timestamps with fractional seconds or a zone suffix
    if len(value) > 10 and value[4] == "-" and value[10] in "T ":
        return date.fromisoformat(value[:10])

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"unrecognised date {value!r}")


def _parse_amount(raw: str) -> float:
    cleaned = str(raw).replace(",", "").replace("$", "").strip()
    return float(cleaned)


# =============================================================================
# ROW VARIANTS
# =============================================================================

class _SheetRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    sheet: str
    row_number: int = Field(..., ge=1)


class NativeBillRow(_SheetRow):
    """A bill row in the package's own column layout."""

    kind: Literal["native"] = "native"
    bill: Bill

    def to_bills(self) -> list[Bill]:
        return [self.bill]


class HistoryBillRow(_SheetRow):
    """Imported history entry. Paid by the household account, no splits."""

    kind: Literal["history"] = "history"
    bill_id: str
    timestamp: date
    billing_month: date
    category: str = Field(..., min_length=1)
    description: str
    amount: float = Field(..., gt=0)
    status: Optional[str] = None

    def to_bills(self) -> list[Bill]:
        return [Bill(
            id=self.bill_id,
            title=self.category,
            amount=self.amount,
            payer_id=SYSTEM_PAYER_ID,
            bill_date=self.timestamp,
            split_method=SplitMethod.EQUAL,
            splits=[],
            created_at=datetime.combine(self.timestamp, datetime.min.time()),
            billing_month=self.billing_month.strftime("%Y-%m"),
            category_id=self.category,
            bill_type=BillType.BILL,
        )]


class ManualGridRow(_SheetRow):
    """One vendor/month line of the hand-kept grid: payer -> amount paid."""

    kind: Literal["manual"] = "manual"
    month: date
    vendor: str = Field(..., min_length=1)
    amounts: dict[str, float]

    def to_bills(self) -> list[Bill]:
        bills = []
        for column, (payer, amount) in enumerate(self.amounts.items()):
            bills.append(Bill(
                id=f"manual-{self.row_number}-{column}",
                title=self.vendor,
                amount=amount,
                payer_id=payer,
                bill_date=self.month,
                split_method=SplitMethod.EQUAL,
                splits=[],
                created_at=datetime.combine(self.month, datetime.min.time()),
                category_id=self.vendor,
            ))
        return bills


SheetRow = Annotated[
    Union[NativeBillRow, HistoryBillRow, ManualGridRow],
    Field(discriminator="kind"),
]


# =============================================================================
# PARSERS
# =============================================================================

def _cell(row: list, index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index]).strip()
    return ""


def parse_native_row(sheet: str, row_number: int, row: list) -> NativeBillRow:
    """Parse one row written by `bill_to_native_row`."""
    if len(row) < 10:
        raise RowParseError(sheet, row_number, f"expected 10+ columns, got {len(row)}")

    try:
        splits_raw = json.loads(_cell(row, 6) or "[]")
    except json.JSONDecodeError as e:
        raise RowParseError(sheet, row_number, f"splits column is not JSON: {e}")
    if not isinstance(splits_raw, list):
        raise RowParseError(sheet, row_number, "splits column must be a JSON list")

    try:
        bill = Bill(
            id=_cell(row, 0),
            title=_cell(row, 1),
            amount=_parse_amount(_cell(row, 2)),
            payer_id=_cell(row, 3),
            bill_date=_cell(row, 4),
            split_method=_cell(row, 5) or SplitMethod.EQUAL,
            splits=[Split.model_validate(s) for s in splits_raw],
            created_at=_cell(row, 7) or _cell(row, 4),
            billing_month=_cell(row, 8) or None,
            category_id=_cell(row, 9),
            bill_type=_cell(row, 10) or BillType.BILL,
        )
    except (ValidationError, ValueError) as e:
        raise RowParseError(sheet, row_number, str(e))

    return NativeBillRow(sheet=sheet, row_number=row_number, bill=bill)


def parse_history_row(sheet: str, row_number: int, row: list) -> HistoryBillRow:
    """Parse one imported history row."""
    bill_id = _cell(row, 7)
    if not bill_id:
        raise RowParseError(sheet, row_number, "missing bill id")

    try:
        amount = _parse_amount(_cell(row, 4))
    except ValueError:
        raise RowParseError(sheet, row_number, f"invalid amount {_cell(row, 4)!r}")

    try:
        return HistoryBillRow(
            sheet=sheet,
            row_number=row_number,
            bill_id=bill_id,
            timestamp=parse_sheet_date(_cell(row, 0)),
            billing_month=parse_sheet_date(_cell(row, 1)),
            category=_cell(row, 2),
            description=_cell(row, 3),
            amount=amount,
            status=_cell(row, 6) or None,
        )
    except (ValidationError, ValueError) as e:
        raise RowParseError(sheet, row_number, str(e))


def parse_manual_row(
    sheet: str,
    row_number: int,
    row: list,
    housemate_columns: list[str],
) -> ManualGridRow:
    """
    Parse one grid row. Blank and zero cells mean "did not pay".

    A non-numeric or negative cell is an error, not a skipped value.
    """
    try:
        month = parse_sheet_date(_cell(row, 0))
    except ValueError as e:
        raise RowParseError(sheet, row_number, str(e))

    amounts: dict[str, float] = {}
    for offset, name in enumerate(housemate_columns):
        raw = _cell(row, offset + 2)
        if not name or not raw:
            continue
        try:
            amount = _parse_amount(raw)
        except ValueError:
            raise RowParseError(sheet, row_number, f"invalid amount {raw!r} for {name}")
        if amount < 0:
            raise RowParseError(sheet, row_number, f"negative amount for {name}")
        if amount > 0:
            amounts[name] = amount

    try:
        return ManualGridRow(
            sheet=sheet,
            row_number=row_number,
            month=month,
            vendor=_cell(row, 1),
            amounts=amounts,
        )
    except ValidationError as e:
        raise RowParseError(sheet, row_number, str(e))


def bill_to_native_row(bill: Bill) -> list:
    """Inverse of `parse_native_row`."""
    wire = bill.to_wire()
    return [
        bill.id,
        bill.title,
        bill.amount,
        bill.payer_id,
        wire["date"],
        bill.split_method.value,
        json.dumps(wire["splits"]),
        wire["createdAt"],
        bill.billing_month,
        bill.category_id,
        bill.bill_type.value,
    ]


class ParsedSheet(BaseModel):
    """Rows that parsed, and the errors for the ones that did not."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    rows: list[SheetRow] = Field(default_factory=list)
    errors: list[RowParseError] = Field(default_factory=list)

    def bills(self) -> list[Bill]:
        return [bill for row in self.rows for bill in row.to_bills()]


def parse_native_sheet(sheet: str, values: list[list]) -> ParsedSheet:
    """Parse a bills sheet; a header row (first cell "id") is skipped."""
    result = ParsedSheet()
    for index, row in enumerate(values, start=1):
        if not row or not any(_cell(row, i) for i in range(len(row))):
            continue
        if index == 1 and _cell(row, 0).lower() == "id":
            continue
        try:
            result.rows.append(parse_native_row(sheet, index, row))
        except RowParseError as e:
            result.errors.append(e)
    return result


def parse_history_sheet(sheet: str, values: list[list]) -> ParsedSheet:
    """Parse a history sheet; rows whose amount column is a label are headers."""
    result = ParsedSheet()
    for index, row in enumerate(values, start=1):
        if not row:
            continue
        if index == 1 and _cell(row, 4).lower() == "amount":
            continue
        try:
            result.rows.append(parse_history_row(sheet, index, row))
        except RowParseError as e:
            result.errors.append(e)
    return result


def parse_manual_sheet(sheet: str, values: list[list]) -> tuple[ParsedSheet, list[str]]:
    """
    Parse the manual grid.

    Returns the parsed rows and the housemate names taken from the header
    (columns 3 onwards).
    """
    result = ParsedSheet()
    if len(values) < 2:
        return result, []

    housemate_columns = [str(name).strip() for name in values[0][2:]]
    for index, row in enumerate(values[1:], start=2):
        if not row or not _cell(row, 0):
            continue
        try:
            result.rows.append(parse_manual_row(sheet, index, row, housemate_columns))
        except RowParseError as e:
            result.errors.append(e)
    return result, [name for name in housemate_columns if name]
