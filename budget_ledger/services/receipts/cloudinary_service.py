"""
Receipt Storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. Reliable cloud infrastructure
2. Simple upload/destroy API keyed by a public id we choose
3. Free tier sufficient for personal use

This service handles:
1. Receipt normalisation (Pillow): any readable image becomes a JPEG
   whose long side fits the configured bound
2. Upload under `{folder}/{user_key}/{record_key}`
3. Deletion by the public id recovered from the stored URL
"""

import re
from io import BytesIO
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import structlog
from PIL import Image, ImageOps, UnidentifiedImageError
from tenacity import retry, stop_after_attempt, wait_exponential

from budget_ledger.config import CloudinarySettings, LedgerSettings, get_settings
from budget_ledger.models.ledger import ValidationIssue
from budget_ledger.services.receipts.interface import (
    InvalidReceiptError,
    ReceiptStorageError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)

logger = structlog.get_logger(__name__)

# https://res.cloudinary.com/<cloud>/image/upload/[<transformations>/]v<version>/<public_id>.<ext>
_PUBLIC_ID_PATTERN = re.compile(r"/image/upload/(?:[^/]+/)*?v\d+/(.+?)(?:\.[A-Za-z0-9]+)?$")


def public_id_from_url(url: str) -> Optional[str]:
    """Recover the Cloudinary public id from a delivery URL."""
    match = _PUBLIC_ID_PATTERN.search(url.split("?", 1)[0])
    return match.group(1) if match else None


def normalize_receipt_image(
    image_bytes: bytes,
    max_dimension: int,
    quality: int,
    max_size_bytes: Optional[int] = None,
) -> bytes:
    """
    Re-encode a receipt as an RGB JPEG with a bounded long side.

    Raises:
        InvalidReceiptError: If the image is too large or unreadable
    """
    if max_size_bytes is not None and len(image_bytes) > max_size_bytes:
        raise InvalidReceiptError.from_issues([ValidationIssue(
            field="receipt",
            issue_type="too_large",
            message=f"Receipt is larger than {max_size_bytes // (1024 * 1024)} MB",
        )])

    try:
        img = Image.open(BytesIO(image_bytes))
        img = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidReceiptError.from_issues([ValidationIssue(
            field="receipt",
            issue_type="invalid_value",
            message=f"Receipt is not a readable image: {e}",
        )])

    if img.mode != "RGB":
        img = img.convert("RGB")
    img.thumbnail((max_dimension, max_dimension))

    out = BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


class CloudinaryReceiptStorage(ReceiptStorageInterface):
    """
    Receipt storage backed by Cloudinary.

    Flow:
    1. Receive raw image bytes
    2. Normalise to JPEG with Pillow
    3. Upload, overwriting any earlier receipt of the same record
    4. Return the secure delivery URL as the reference
    """

    def __init__(
        self,
        settings: Optional[CloudinarySettings] = None,
        ledger_settings: Optional[LedgerSettings] = None,
    ):
        self._settings = settings or get_settings().cloudinary
        self._ledger_settings = ledger_settings or get_settings().ledger
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _public_id(self, user_key: str, record_key: str) -> str:
        """Format: {folder}/{user_key}/{record_key}"""
        return f"{self._settings.receipts_folder}/{user_key}/{record_key}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload(self, payload: bytes, public_id: str) -> dict:
        return cloudinary.uploader.upload(
            payload,
            public_id=public_id,
            resource_type="image",
            overwrite=True,
            invalidate=True,
        )

    async def store(self, user_key: str, record_key: str, image_bytes: bytes) -> str:
        self._configure()
        payload = normalize_receipt_image(
            image_bytes,
            max_dimension=self._ledger_settings.receipt_max_dimension_px,
            quality=self._ledger_settings.receipt_jpeg_quality,
            max_size_bytes=self._ledger_settings.max_receipt_size_bytes,
        )
        public_id = self._public_id(user_key, record_key)

        try:
            result = self._upload(payload, public_id)
        except cloudinary.exceptions.Error as e:
            raise ReceiptUploadError(f"Cloudinary error: {e}")
        except Exception as e:
            raise ReceiptUploadError(f"Failed to upload receipt: {e}")

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise ReceiptUploadError("No URL returned from Cloudinary")

        logger.info("receipt_stored", public_id=public_id, size_bytes=len(payload))
        return url

    async def delete(self, reference: str) -> bool:
        if not self.is_managed_reference(reference):
            return False

        public_id = public_id_from_url(reference)
        if public_id is None:
            logger.warning("receipt_reference_unrecognised", reference=reference)
            return False

        self._configure()
        try:
            result = cloudinary.uploader.destroy(public_id, resource_type="image")
        except cloudinary.exceptions.Error as e:
            raise ReceiptStorageError(f"Cloudinary error: {e}")

        # "not found" means it is already gone
        status = result.get("result")
        if status not in ("ok", "not found"):
            raise ReceiptStorageError(f"Cloudinary refused deletion of {public_id}: {status}")
        return status == "ok"
