"""
In-Memory Storage

Stores serialized ledger documents in a dict. Used by the tests and for
single-process use without a durable backend.

Saves are serialized and re-read exactly like a remote backend would, so
subscribers never share objects with the writer.
"""

from typing import Optional
from uuid import UUID

from budget_ledger.engine.migration import load_ledger_document
from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import LedgerState
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ErrorCallback,
    PersistenceInterface,
    StorageError,
    Unsubscribe,
    UpdateCallback,
    serialize_state,
)


class InMemoryPersistence(PersistenceInterface):
    """
    Dict-backed ledger persistence.

    Subscribers are notified synchronously from `save`. Setting
    `fail_saves` makes every save raise StorageError.
    """

    def __init__(self):
        self._documents: dict[str, dict] = {}
        self._subscribers: dict[str, list[UpdateCallback]] = {}
        self.save_count = 0
        self.fail_saves = False

    async def load(self, user_key: str) -> Optional[LedgerState]:
        return load_ledger_document(self._documents.get(user_key))

    async def save(self, user_key: str, state: LedgerState) -> bool:
        if self.fail_saves:
            raise StorageError("In-memory save failure")
        self._documents[user_key] = serialize_state(state)
        self.save_count += 1
        self._notify(user_key)
        return True

    def put_remote(self, user_key: str, state: LedgerState) -> None:
        """Store a ledger as if another device had written it."""
        self._documents[user_key] = serialize_state(state)
        self._notify(user_key)

    def put_document(self, user_key: str, document: dict) -> None:
        """Store a raw document, e.g. a legacy-format ledger."""
        self._documents[user_key] = document

    def document(self, user_key: str) -> Optional[dict]:
        return self._documents.get(user_key)

    def subscribe(
        self,
        user_key: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        callbacks = self._subscribers.setdefault(user_key, [])
        callbacks.append(on_update)

        def unsubscribe() -> None:
            if on_update in callbacks:
                callbacks.remove(on_update)

        return unsubscribe

    def _notify(self, user_key: str) -> None:
        for callback in list(self._subscribers.get(user_key, [])):
            callback(load_ledger_document(self._documents[user_key]))


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit storage."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return sorted(
            (e for e in self.events if e.correlation_id == correlation_id),
            key=lambda e: e.timestamp,
        )

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
