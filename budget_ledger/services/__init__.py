"""Services package."""

from budget_ledger.services.receipts import (
    CloudinaryReceiptStorage,
    InMemoryReceiptStorage,
    InvalidReceiptError,
    ReceiptStorageError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from budget_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsPersistence,
    InMemoryAuditStorage,
    InMemoryPersistence,
    PersistenceInterface,
    StorageError,
)

__all__ = [
    # Receipt services
    "CloudinaryReceiptStorage",
    "InMemoryReceiptStorage",
    "InvalidReceiptError",
    "ReceiptStorageError",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsPersistence",
    "InMemoryAuditStorage",
    "InMemoryPersistence",
    "PersistenceInterface",
    "StorageError",
]
