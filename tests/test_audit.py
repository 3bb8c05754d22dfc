"""
Tests for the audit logger: local logging, buffering and flushing.
"""

import asyncio

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.models.audit import AuditEventBuilder, AuditEventType
from budget_ledger.services.storage import InMemoryAuditStorage


class FlakyAuditStorage(InMemoryAuditStorage):
    """Fails the first `failures` writes, raising or returning False."""

    def __init__(self, failures: int, raise_error: bool = False):
        super().__init__()
        self.failures = failures
        self.raise_error = raise_error

    async def append_event(self, event):
        if self.failures > 0:
            self.failures -= 1
            if self.raise_error:
                raise RuntimeError("sheet unavailable")
            return False
        return await super().append_event(event)


def _event():
    return AuditEventBuilder.month_closed("2025-01", 3, 300.0, merged=False)


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_local_only_logger_buffers_nothing(self):
        logger = AuditLogger()
        logger.log(_event())
        assert logger.pending == []
        assert asyncio.run(logger.flush()) == 0

    def test_events_written_on_flush(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        logger.log(_event())
        logger.log(_event())

        assert len(logger.pending) == 2
        assert storage.events == []
        assert asyncio.run(logger.flush()) == 2
        assert logger.pending == []
        assert len(storage.events) == 2

    def test_correlation_id_applied(self):
        storage = InMemoryAuditStorage()
        correlation_id = create_correlation_id()
        logger = AuditLogger(storage, correlation_id=correlation_id)
        logger.log(_event())
        assert logger.pending[0].correlation_id == correlation_id

    def test_failed_writes_stay_queued(self):
        storage = FlakyAuditStorage(failures=1)
        logger = AuditLogger(storage)
        logger.log(_event())
        logger.log(_event())

        assert asyncio.run(logger.flush()) == 1
        assert len(logger.pending) == 1
        assert asyncio.run(logger.flush()) == 1
        assert logger.pending == []

    def test_storage_exception_is_not_raised(self):
        storage = FlakyAuditStorage(failures=5, raise_error=True)
        logger = AuditLogger(storage)
        logger.log(_event())
        assert asyncio.run(logger.flush()) == 0
        assert len(logger.pending) == 1

    def test_error_helpers(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        logger.log_error("recompute", "boom", {"month": "2025-01"})
        logger.log_external_service_error("cloudinary", "timeout")
        types = [e.event_type for e in logger.pending]
        assert types == [AuditEventType.SYSTEM_ERROR, AuditEventType.EXTERNAL_SERVICE_ERROR]
        assert logger.pending[1].details["service"] == "cloudinary"

    def test_event_dropped_after_repeated_failures(self):
        storage = FlakyAuditStorage(failures=10)
        logger = AuditLogger(storage, max_attempts=3)
        logger.log(_event())

        for _ in range(2):
            assert asyncio.run(logger.flush()) == 0
            assert len(logger.pending) == 1
        assert asyncio.run(logger.flush()) == 0
        assert logger.pending == []

    def test_queue_is_bounded(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage, max_pending=2)
        events = [_event() for _ in range(3)]
        for event in events:
            logger.log(event)

        assert [e.event_id for e in logger.pending] == [e.event_id for e in events[1:]]
