"""
Audit Logger

DESIGN DECISION: Every change to the shared ledger is logged.
This provides:
1. Complete traceability of who changed which bill
2. Debugging capability when a sync or unlock fails
3. Housemates can see the history of the ledger

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Never receives passwords, PINs or decrypted payloads
"""

from typing import Optional

import structlog

from utility_splitter.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from utility_splitter.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit sink such as a Google Sheets worksheet (optional)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("utility_splitter.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Audit sink failures never break the ledger operation
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_bill_added(self, bill_id: str, title: str, amount: float, payer_id: str) -> None:
        await self.log(AuditEventBuilder.bill_added(bill_id, title, amount, payer_id))

    async def log_bill_updated(self, bill_id: str, title: str, amount: float) -> None:
        await self.log(AuditEventBuilder.bill_updated(bill_id, title, amount))

    async def log_bill_deleted(self, bill_id: str, title: str) -> None:
        await self.log(AuditEventBuilder.bill_deleted(bill_id, title))

    async def log_settlement(self, bill_id: str, from_id: str, to_id: str, amount: float) -> None:
        await self.log(AuditEventBuilder.settlement_recorded(bill_id, from_id, to_id, amount))

    async def log_roster_change(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        name: Optional[str] = None,
    ) -> None:
        """Log a housemate or category change."""
        await self.log(AuditEventBuilder.roster_changed(event_type, entity_type, entity_id, name))

    async def log_password_set(self, keys_rewritten: int) -> None:
        await self.log(AuditEventBuilder.password_set(keys_rewritten))

    async def log_data_locked(self, key: str) -> None:
        await self.log(AuditEventBuilder.data_locked(key))

    async def log_decryption_failed(self, key: str) -> None:
        await self.log(AuditEventBuilder.decryption_failed(key))

    async def log_exported(self, years: list[str], bill_count: int) -> None:
        await self.log(AuditEventBuilder.ledger_exported(years, bill_count))

    async def log_imported(self, years: list[str], bill_count: int) -> None:
        await self.log(AuditEventBuilder.ledger_imported(years, bill_count))

    async def log_import_rejected(self, reason: str) -> None:
        await self.log(AuditEventBuilder.import_rejected(reason))

    async def log_remote_unavailable(self, store: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.remote_unavailable(store, error_message))

    async def log_save_failed(self, key: str, store: str, attempts: int, error_message: str) -> None:
        await self.log(AuditEventBuilder.save_failed(key, store, attempts, error_message))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        ))
