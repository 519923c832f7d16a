"""
Audit Models for Utility Splitter

Every change to the shared ledger is recorded as an audit event, so
housemates can see who added, edited or settled what, and failures while
unlocking or syncing leave a trace.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Events never carry the password, PIN or decrypted payloads.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Bills
    BILL_ADDED = "bill_added"
    BILL_UPDATED = "bill_updated"
    BILL_DELETED = "bill_deleted"
    SETTLEMENT_RECORDED = "settlement_recorded"

    # Roster and categories
    HOUSEMATE_ADDED = "housemate_added"
    HOUSEMATE_UPDATED = "housemate_updated"
    HOUSEMATE_REMOVED = "housemate_removed"
    CATEGORY_ADDED = "category_added"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_REMOVED = "category_removed"

    # Security
    PASSWORD_SET = "password_set"
    DATA_UNLOCKED = "data_unlocked"
    DATA_LOCKED = "data_locked"
    DECRYPTION_FAILED = "decryption_failed"

    # Data movement
    LEDGER_EXPORTED = "ledger_exported"
    LEDGER_IMPORTED = "ledger_imported"
    IMPORT_REJECTED = "import_rejected"
    SHEETS_SYNCED = "sheets_synced"

    # System events
    SAVE_FAILED = "save_failed"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'bill', 'housemate', 'ledger')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for an audit worksheet.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.bill_added(bill_id, title, amount, payer_id)
        event = AuditEventBuilder.decryption_failed(key)
    """

    @staticmethod
    def bill_added(bill_id: str, title: str, amount: float, payer_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_ADDED,
            entity_type="bill",
            entity_id=bill_id,
            description=f"Bill added: {title} - {amount:.2f}",
            details={"title": title, "amount": amount, "payer_id": payer_id},
            is_user_action=True,
        )

    @staticmethod
    def bill_updated(bill_id: str, title: str, amount: float) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_UPDATED,
            entity_type="bill",
            entity_id=bill_id,
            description=f"Bill updated: {title} - {amount:.2f}",
            details={"title": title, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def bill_deleted(bill_id: str, title: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_DELETED,
            entity_type="bill",
            entity_id=bill_id,
            description=f"Bill deleted: {title}",
            details={"title": title},
            is_user_action=True,
        )

    @staticmethod
    def settlement_recorded(bill_id: str, from_id: str, to_id: str, amount: float) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_RECORDED,
            entity_type="bill",
            entity_id=bill_id,
            description=f"Settlement recorded: {from_id} paid {to_id} {amount:.2f}",
            details={"from": from_id, "to": to_id, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def roster_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        name: Optional[str] = None,
    ) -> AuditEvent:
        """Housemate and category add/update/remove events."""
        action = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} {action}: {name or entity_id}",
            details={"name": name} if name else {},
            is_user_action=True,
        )

    @staticmethod
    def password_set(keys_rewritten: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSWORD_SET,
            entity_type="ledger",
            description="Ledger password set; stored data re-encrypted",
            details={"keys_rewritten": keys_rewritten},
            is_user_action=True,
        )

    @staticmethod
    def data_locked(key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_LOCKED,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            entity_id=key,
            description="Stored data is encrypted and no password was given",
        )

    @staticmethod
    def decryption_failed(key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DECRYPTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            entity_id=key,
            description="Stored data could not be decrypted",
            error_message="Invalid password or corrupted data",
        )

    @staticmethod
    def ledger_exported(years: list[str], bill_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_EXPORTED,
            entity_type="ledger",
            description=f"Ledger exported: {bill_count} bills across {len(years)} years",
            details={"years": years, "bill_count": bill_count},
            is_user_action=True,
        )

    @staticmethod
    def ledger_imported(years: list[str], bill_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_IMPORTED,
            entity_type="ledger",
            description=f"Ledger imported: {bill_count} bills across {len(years)} years",
            details={"years": years, "bill_count": bill_count},
            is_user_action=True,
        )

    @staticmethod
    def import_rejected(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            description="Import rejected",
            error_message=reason[:500],
            is_user_action=True,
        )

    @staticmethod
    def remote_unavailable(store: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_UNAVAILABLE,
            severity=AuditSeverity.WARNING,
            description=f"Remote store unavailable: {store}",
            error_message=error_message,
            details={"store": store},
        )

    @staticmethod
    def save_failed(key: str, store: str, attempts: int, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="ledger",
            entity_id=key,
            description=f"Write to {store} failed after {attempts} attempts; still queued",
            error_message=error_message,
            details={"store": store, "attempts": attempts},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
