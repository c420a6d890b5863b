"""
Report photo storage.
Photos are evidence: they are written once, hashed, and never overwritten.
Files live under REPORT_STORAGE_DIR, grouped by unit.
"""
import base64
import binascii
import hashlib
import os
from datetime import datetime, timezone
from typing import Optional

from ..core.config import settings


class InvalidImageError(ValueError):
    """Raised when an uploaded photo payload cannot be decoded."""


class ImageTooLargeError(ValueError):
    """Raised when a photo exceeds ``MAX_IMAGE_BYTES``."""


def decode_image_data(image_data: str, max_bytes: Optional[int] = None) -> bytes:
    """Decode a base64 photo payload, accepting ``data:image/...;base64,`` URIs."""
    if not image_data:
        raise InvalidImageError("Missing image payload")
    b64data = image_data.split(",", 1)[1] if image_data.startswith("data:") and "," in image_data else image_data
    try:
        binary = base64.b64decode(b64data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Invalid base64 image payload") from exc
    if not binary:
        raise InvalidImageError("Empty image payload")
    limit = max_bytes if max_bytes is not None else settings.MAX_IMAGE_BYTES
    if len(binary) > limit:
        raise ImageTooLargeError(f"Image exceeds {limit} bytes")
class ImageStorageService:
    """Write-once photo store on the report API host, one directory per unit."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or settings.REPORT_STORAGE_DIR or os.path.join(
            os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
            "uploads",
        )

    def store(self, image_data: bytes, unit_id: str, report_id: str) -> dict:
        """Write the photo and return ``{"image_path": ..., "image_hash": ...}``.

        Raises ``FileExistsError`` rather than replacing an existing photo.
        """
        unit_dir = os.path.join(self.base_dir, unit_id)
        os.makedirs(unit_dir, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        image_path = os.path.join(unit_dir, f"{report_id}_{stamp}.jpg")
        with open(image_path, "xb") as fh:
            fh.write(image_data)
        return {"image_path": image_path, "image_hash": hashlib.sha256(image_data).hexdigest()}


image_storage = ImageStorageService()
