"""
Audit Logger

DESIGN DECISION: Every ledger command that changes state is logged.
This provides:
1. Complete traceability of how a month's figures came to be
2. Debugging capability for propagation and merges
3. A history the user can review

The audit logger:
- Records synchronously, because ledger commands are synchronous
- Writes to durable storage only on `flush()`, from async code
- Gracefully handles failures (storage problems never reach the caller)
- Events from one sync session share a correlation id
- Bounds its queue: an event is dropped after MAX_WRITE_ATTEMPTS failed
  writes, and the oldest events go first once MAX_PENDING_EVENTS are queued
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from budget_ledger.services.storage import AuditStorageInterface

MAX_WRITE_ATTEMPTS = 3
MAX_PENDING_EVENTS = 1000


# JSON lines on the stdlib logging backend
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
    Records audit events for the ledger service.

    Logs events both to:
    1. Structured local log (immediately)
    2. An audit storage backend such as Google Sheets (on flush)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        correlation_id: Optional[UUID] = None,
        max_attempts: int = MAX_WRITE_ATTEMPTS,
        max_pending: int = MAX_PENDING_EVENTS,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    Without one, events are only logged.
            correlation_id: Attached to every event that does not carry one.
            max_attempts: Failed writes after which an event is dropped
            max_pending: Queue length after which the oldest events are dropped
        """
        self._storage = storage
        self._correlation_id = correlation_id
        self._max_attempts = max_attempts
        self._max_pending = max_pending
        self._pending: list[AuditEvent] = []
        self._attempts: dict[UUID, int] = {}
        self._logger = structlog.get_logger()

    @property
    def pending(self) -> list[AuditEvent]:
        """Events recorded but not yet written to storage."""
        return list(self._pending)

    def log(self, event: AuditEvent) -> None:
        """
        Record an audit event.

        Always logs locally. Queues the event for storage if available.
        """
        if event.correlation_id is None and self._correlation_id is not None:
            event.correlation_id = self._correlation_id

        log_dict = event.to_log_dict()
        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage is not None:
            self._pending.append(event)
            while len(self._pending) > self._max_pending:
                self._drop(self._pending.pop(0), reason="queue_full")

    async def flush(self) -> int:
        """
        Write queued events to storage.

        Events that fail to write stay queued for the next flush, up to
        `max_attempts` tries each.

        Returns:
            Number of events written
        """
        if self._storage is None or not self._pending:
            return 0

        written = 0
        remaining = []
        for event in self._pending:
            try:
                ok = await self._storage.append_event(event)
            except Exception as e:
                # counts as a failed attempt below
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                ok = False
            if ok:
                written += 1
                self._attempts.pop(event.event_id, None)
                continue

            attempts = self._attempts.get(event.event_id, 0) + 1
            if attempts >= self._max_attempts:
                self._drop(event, reason="write_failed")
            else:
                self._attempts[event.event_id] = attempts
                remaining.append(event)

        self._pending = remaining
        return written

    def _drop(self, event: AuditEvent, reason: str) -> None:
        self._attempts.pop(event.event_id, None)
        self._logger.warning(
            "audit_event_dropped",
            reason=reason,
            event_id=str(event.event_id),
            event_type=event.event_type.value,
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        ))

    def log_external_service_error(self, service: str, error_message: str) -> None:
        """Record a failure reported by Cloudinary or Sheets."""
        self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
        ))


def create_correlation_id() -> UUID:
    """
    New id grouping the events of one session.

    Use this at the start of a ledger session and pass it to the
    AuditLogger so every event of the session can be grouped.
    """
    return uuid4()
