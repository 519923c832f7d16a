"""
Data Models Package

This package contains all Pydantic models used in Utility Splitter.
All data flowing through the system must conform to these schemas.
"""

from utility_splitter.models.ledger import (
    DEFAULT_CATEGORIES,
    OTHER_CATEGORY_ID,
    Bill,
    BillCategory,
    BillType,
    ExportDocument,
    Housemate,
    LedgerMeta,
    SettlementTransaction,
    Split,
    SplitMethod,
    default_categories,
)
from utility_splitter.models.rows import (
    HistoryBillRow,
    ManualGridRow,
    NativeBillRow,
    ParsedSheet,
    RowParseError,
    SheetRow,
)
from utility_splitter.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from utility_splitter.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "DEFAULT_CATEGORIES",
    "OTHER_CATEGORY_ID",
    "Bill",
    "BillCategory",
    "BillType",
    "ExportDocument",
    "Housemate",
    "LedgerMeta",
    "SettlementTransaction",
    "Split",
    "SplitMethod",
    "default_categories",
    # Spreadsheet rows
    "HistoryBillRow",
    "ManualGridRow",
    "NativeBillRow",
    "ParsedSheet",
    "RowParseError",
    "SheetRow",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
