"""Tests for the audit logger."""

from cashbook.audit import AuditLogger, create_correlation_id
from cashbook.models.audit import AuditEventBuilder, AuditEventType
from cashbook.services.storage.interface import AuditStorageInterface

from tests.conftest import run


class RecordingStorage(AuditStorageInterface):
    def __init__(self, error=None):
        self.events = []
        self.error = error

    async def append_event(self, event):
        if self.error:
            raise self.error
        self.events.append(event)
        return True

    async def get_recent_events(self, limit=100):
        return list(reversed(self.events))[:limit]


class TestAuditLogger:
    """Tests for local and stored audit events."""

    def test_local_only(self):
        logger = AuditLogger()
        assert run(logger.log(AuditEventBuilder.sync_pushed("AE_sheet"))) is True
        assert logger.recent_events[0].entity_id == "AE_sheet"

    def test_recent_events_newest_first(self):
        logger = AuditLogger()
        run(logger.log(AuditEventBuilder.sync_pushed("first")))
        run(logger.log_rate_fetched("binance-p2p", 26000, 25900))
        assert [e.event_type for e in logger.recent_events] == [
            AuditEventType.RATE_FETCHED,
            AuditEventType.SYNC_PUSHED,
        ]

    def test_persisted(self):
        storage = RecordingStorage()
        correlation_id = create_correlation_id()
        logger = AuditLogger(storage)
        run(logger.log_cell_edited("AE_sheet", 0, "money", {"money": "1000"}, correlation_id))
        assert storage.events[0].correlation_id == correlation_id

    def test_storage_failure_swallowed(self):
        logger = AuditLogger(RecordingStorage(error=RuntimeError("quota")))
        assert run(logger.log(AuditEventBuilder.sync_pushed("AE_sheet"))) is False
        assert len(logger.recent_events) == 1
