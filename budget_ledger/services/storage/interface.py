"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the ledger engine decoupled from storage implementation

The interface is intentionally small. The whole ledger of a user is one
document: it is loaded, saved and watched as a unit.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from uuid import UUID

from budget_ledger.errors import PersistenceError
from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import LedgerState

UpdateCallback = Callable[[LedgerState], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class PersistenceInterface(ABC):
    """
    Abstract interface for ledger persistence.

    Any storage implementation (Google Sheets, a document database, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def load(self, user_key: str) -> Optional[LedgerState]:
        """
        Load the stored ledger of a user.

        Args:
            user_key: Identifies whose ledger to load

        Returns:
            The ledger if one was stored, None otherwise

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def save(self, user_key: str, state: LedgerState) -> bool:
        """
        Replace the stored ledger of a user.

        Implementations strip unset optional fields (see `strip_unset`)
        before writing.

        Returns:
            True if saved successfully

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        user_key: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """
        Watch a user's stored ledger for changes.

        `on_update` receives the full stored ledger every time it changes,
        including changes this process wrote itself.

        Returns:
            A callable that stops the subscription
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one ledger session).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


def strip_unset(value: Any) -> Any:
    """
    Recursively drop None values from dicts.

    Document stores reject explicit nulls for absent optional fields, so
    every serialized ledger passes through here before it is written.
    """
    if isinstance(value, dict):
        return {k: strip_unset(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [strip_unset(v) for v in value]
    return value


def serialize_state(state: LedgerState) -> dict:
    """JSON-ready document for a ledger, unset fields removed."""
    return strip_unset(state.model_dump(mode="json"))


class StorageError(PersistenceError):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
