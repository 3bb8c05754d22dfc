"""
Abstract Receipt Storage Interface

Receipt images live outside the ledger. An expense or reimbursement only
holds an opaque reference string handed out by the receipt storage.

Older ledgers stored receipts inline as `data:` image URLs. Those are
still valid references but are not managed by any storage backend, so
they are never deleted remotely.
"""

from abc import ABC, abstractmethod

from budget_ledger.errors import NonFatalCollaboratorError, ValidationError


class ReceiptStorageInterface(ABC):
    """
    Abstract interface for receipt image storage.

    Any storage implementation (Cloudinary, object storage, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def store(self, user_key: str, record_key: str, image_bytes: bytes) -> str:
        """
        Store a receipt image.

        Args:
            user_key: Owner of the receipt
            record_key: Id of the expense or reimbursement it belongs to
            image_bytes: Raw image bytes

        Returns:
            Reference to save on the record

        Raises:
            InvalidReceiptError: If the bytes are not a usable image
            ReceiptUploadError: If the upload fails
        """
        pass

    @abstractmethod
    async def delete(self, reference: str) -> bool:
        """
        Delete a stored receipt.

        Returns:
            True if deleted, False if the reference was not managed here

        Raises:
            ReceiptStorageError: If the backend reported a failure
        """
        pass

    @staticmethod
    def is_managed_reference(value: str) -> bool:
        """Storage URL (managed) as opposed to a legacy inline `data:` image."""
        return value.startswith("https://") or value.startswith("http://")


class ReceiptStorageError(NonFatalCollaboratorError):
    """Base exception for receipt storage errors."""
    pass


class ReceiptUploadError(ReceiptStorageError):
    """Failed to upload a receipt."""
    pass


class InvalidReceiptError(ValidationError):
    """The receipt is not a readable image or is too large."""
    pass
