"""Receipt storage services package."""

from budget_ledger.services.receipts.interface import (
    InvalidReceiptError,
    ReceiptStorageError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from budget_ledger.services.receipts.memory import InMemoryReceiptStorage
from budget_ledger.services.receipts.cloudinary_service import (
    CloudinaryReceiptStorage,
    normalize_receipt_image,
    public_id_from_url,
)

__all__ = [
    "CloudinaryReceiptStorage",
    "InMemoryReceiptStorage",
    "InvalidReceiptError",
    "ReceiptStorageError",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    "normalize_receipt_image",
    "public_id_from_url",
]
