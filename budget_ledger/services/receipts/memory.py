"""In-memory receipt storage for tests and offline use."""

from budget_ledger.services.receipts.interface import (
    InvalidReceiptError,
    ReceiptStorageError,
    ReceiptStorageInterface,
)


class InMemoryReceiptStorage(ReceiptStorageInterface):
    """Keeps receipt bytes in a dict keyed by a fake storage URL."""

    BASE_URL = "https://receipts.local"

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.fail_deletes = False

    async def store(self, user_key: str, record_key: str, image_bytes: bytes) -> str:
        if not image_bytes:
            raise InvalidReceiptError("Receipt is empty")
        reference = f"{self.BASE_URL}/{user_key}/{record_key}.jpg"
        self.blobs[reference] = image_bytes
        return reference

    async def delete(self, reference: str) -> bool:
        if not self.is_managed_reference(reference):
            return False
        if self.fail_deletes:
            raise ReceiptStorageError(f"Could not delete {reference}")
        return self.blobs.pop(reference, None) is not None
