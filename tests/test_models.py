"""
Tests for Utility Splitter

Test strategy:
1. Unit tests for individual components (models, calculators, validators)
2. Integration tests for flows (with in-memory stores and mock transports)
3. No real API calls in tests (use mocks)
"""

import json
from datetime import date, datetime, timezone

import pytest

from utility_splitter.models.ledger import (
    Bill,
    BillType,
    ExportDocument,
    Housemate,
    LedgerMeta,
    SettlementTransaction,
    Split,
    SplitMethod,
    default_categories,
)
from utility_splitter.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from utility_splitter.models.validation import ValidationIssue, ValidationResult


def make_bill(**overrides) -> Bill:
    data = dict(
        title="Electricity",
        amount=100.0,
        payer_id="alice",
        bill_date=date(2024, 3, 15),
        split_method=SplitMethod.EQUAL,
        splits=[
            Split(housemate_id="alice", amount=50.0, share=1),
            Split(housemate_id="bob", amount=50.0, share=1),
        ],
    )
    data.update(overrides)
    return Bill(**data)


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_housemate_gets_generated_id(self):
        """Test Housemate creation assigns an id."""
        h = Housemate(name="  Alice  ")
        assert h.name == "Alice"
        assert h.id

    def test_default_categories(self):
        """Test the five default categories."""
        names = [c.name for c in default_categories()]
        assert names == ["Utilities", "Rent", "Internet", "Groceries", "Other"]
        assert all(c.is_default for c in default_categories())

    def test_bill_derives_billing_month_and_year(self):
        """Test billing month and year come from the date."""
        bill = make_bill()
        assert bill.billing_month == "2024-03"
        assert bill.year == "2024"
        assert bill.bill_type == BillType.BILL

    def test_bill_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        with pytest.raises(ValueError):
            make_bill(amount=0)
        with pytest.raises(ValueError):
            make_bill(amount=-5)

    def test_bill_rejects_bad_billing_month(self):
        with pytest.raises(ValueError):
            make_bill(billing_month="March 2024")

    def test_bill_accepts_iso_timestamp_as_date(self):
        """Test older records that stored a full timestamp in the date field."""
        bill = Bill.model_validate({
            "title": "Water",
            "amount": 30,
            "payerId": "bob",
            "date": "2023-11-02T10:15:00.000Z",
            "splits": [],
        })
        assert bill.bill_date == date(2023, 11, 2)

    def test_naive_created_at_is_utc(self):
        bill = make_bill(created_at=datetime(2024, 1, 1, 12, 0))
        assert bill.created_at.tzinfo == timezone.utc

    def test_settlement_requires_one_split(self):
        """Test a settlement must name exactly one recipient."""
        with pytest.raises(ValueError):
            make_bill(bill_type=BillType.SETTLEMENT)

        settlement = make_bill(
            bill_type=BillType.SETTLEMENT,
            split_method=SplitMethod.EXACT,
            splits=[Split(housemate_id="bob", amount=100.0)],
        )
        assert settlement.is_settlement

    def test_split_total(self):
        assert make_bill().split_total == pytest.approx(100.0)

    def test_wire_format_uses_camel_case(self):
        """Test stored records use the camelCase names."""
        wire = make_bill().to_wire()
        assert wire["payerId"] == "alice"
        assert wire["splitMethod"] == "equal"
        assert wire["billingMonth"] == "2024-03"
        assert wire["categoryId"] == "5"
        assert wire["date"] == "2024-03-15"
        assert wire["type"] == "bill"
        assert wire["splits"][0]["housemateId"] == "alice"
        assert "createdAt" in wire

    def test_wire_format_round_trips(self):
        bill = make_bill()
        restored = Bill.model_validate(json.loads(json.dumps(bill.to_wire())))
        assert restored.to_wire() == bill.to_wire()
        assert restored.created_at == bill.created_at

    def test_settlement_transaction_aliases(self):
        tx = SettlementTransaction(from_id="bob", to_id="alice", amount=30)
        assert tx.to_wire() == {"from": "bob", "to": "alice", "amount": 30.0}

    def test_meta_initial_and_sorted_years(self):
        """Test a fresh ledger starts with the current year and default categories."""
        meta = LedgerMeta.initial(date(2025, 6, 1))
        assert meta.available_years == ["2025"]
        assert len(meta.bill_categories) == 5

        meta = LedgerMeta(available_years=["2025", "2023", "2025"])
        assert meta.available_years == ["2023", "2025"]

    def test_meta_wire_names(self):
        meta = LedgerMeta(housemates=[Housemate(id="a", name="Alice")])
        wire = meta.to_wire()
        assert set(wire) == {"housemates", "billCategories", "balances", "availableYears"}
        assert wire["billCategories"][0]["isDefault"] is True

    def test_export_document_all_bills(self):
        doc = ExportDocument(
            meta=LedgerMeta(),
            bills={
                "2024": [make_bill(title="B")],
                "2023": [make_bill(title="A", bill_date=date(2023, 1, 1))],
            },
        )
        assert [b.title for b in doc.all_bills()] == ["A", "B"]


class TestValidationModels:
    """Tests for validation report models."""

    def test_validation_issue_severity_pattern(self):
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")

    def test_result_errors_and_warnings(self):
        result = ValidationResult(
            bill_id="b1",
            is_valid=False,
            issues=[
                ValidationIssue(field="splits", issue_type="a", message="bad", severity="error"),
                ValidationIssue(field="payer_id", issue_type="b", message="hmm", severity="warning"),
            ],
        )
        assert [i.message for i in result.errors] == ["bad"]
        assert result.warnings == ["hmm"]


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.BILL_ADDED,
            description="Bill added",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO
        assert event.timestamp.tzinfo is not None

    def test_to_log_dict(self):
        event = AuditEventBuilder.bill_added("b1", "Electricity", 90.0, "alice")
        log = event.to_log_dict()
        assert log["event_type"] == "bill_added"
        assert log["entity_id"] == "b1"
        assert log["details"]["payer_id"] == "alice"
        assert log["is_user_action"] is True

    def test_to_sheets_row(self):
        event = AuditEventBuilder.decryption_failed("utility-splitter-meta")
        row = event.to_sheets_row()
        assert len(row) == 10
        assert row[2] == "decryption_failed"
        assert row[3] == "warning"
        assert row[8] == "Invalid password or corrupted data"

    def test_roster_changed_description(self):
        event = AuditEventBuilder.roster_changed(
            AuditEventType.HOUSEMATE_ADDED, "housemate", "h1", "Alice"
        )
        assert event.description == "Housemate added: Alice"

    def test_import_rejected_truncates_reason(self):
        event = AuditEventBuilder.import_rejected("x" * 900)
        assert len(event.error_message) == 500
