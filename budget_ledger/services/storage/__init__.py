"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger and
audit storage. Google Sheets is the durable backend; the in-memory
backend serves tests and single-process use.
"""

from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    PersistenceInterface,
    StorageError,
    serialize_state,
    strip_unset,
)
from budget_ledger.services.storage.memory import InMemoryAuditStorage, InMemoryPersistence
from budget_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsPersistence,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "PersistenceInterface",
    "serialize_state",
    "strip_unset",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryPersistence",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsPersistence",
]
