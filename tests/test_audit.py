"""Tests for the audit logger."""

import asyncio

from utility_splitter.audit import AuditLogger
from utility_splitter.models.audit import AuditEventBuilder, AuditEventType
from utility_splitter.services.storage.interface import AuditStorageInterface


class RecordingStorage(AuditStorageInterface):
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    async def append_event(self, event):
        if self.fail:
            raise ConnectionError("sheet unavailable")
        self.events.append(event)
        return True

    async def recent_events(self, limit=50):
        return self.events[-limit:]


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_local_only(self):
        assert asyncio.run(AuditLogger().log_error("boom", "it broke")) is None

    def test_events_reach_storage(self):
        storage = RecordingStorage()
        logger = AuditLogger(storage)

        async def scenario():
            await logger.log_bill_added("b1", "Power", 90.0, "alice")
            await logger.log_roster_change(AuditEventType.CATEGORY_REMOVED, "category", "4")
            await logger.log_decryption_failed("utility-splitter-meta")

        asyncio.run(scenario())
        assert [e.event_type for e in storage.events] == [
            AuditEventType.BILL_ADDED,
            AuditEventType.CATEGORY_REMOVED,
            AuditEventType.DECRYPTION_FAILED,
        ]
        assert storage.events[1].description == "Category removed: 4"

    def test_storage_failure_is_contained(self):
        logger = AuditLogger(RecordingStorage(fail=True))
        event_logged = asyncio.run(logger.log(AuditEventBuilder.password_set(3)))
        assert event_logged is False
