"""
SmartNotes Backend: Upload Storage Service
=============================================

What:  Validates uploaded images, stores them, and removes them again.
How:   Checks size and declared type first, then decodes the image header
       with Pillow to learn the real format, then writes the bytes under a
       generated <uuid><ext> name.
Who:   Called by the notes/upload routes before the pipeline runs, and by
       the pipeline to discard uploads after a failed run or a delete.
When:  Once per upload request.

Validation order (cheapest first):
    1. Empty upload        → ValidationError
    2. Size > MAX_FILE_SIZE → ValidationError (before decoding anything)
    3. Declared content type, when the client sent one
    4. Pillow header decode → real MIME type must be jpeg, png, gif or webp

Storage layout:
    STORAGE_ROOT/
    ├── 3f2b8c1e-....png
    └── a91d07aa-....jpg

    Files are served back at /uploads/<filename>. Generated names contain
    no user input, so a stored filename can never escape STORAGE_ROOT.
"""

import io
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
from PIL import Image, UnidentifiedImageError

from smartnotes.config import settings
from smartnotes.exceptions import FileStorageError, ValidationError
from smartnotes.schemas.pipeline import StoredUpload

logger = logging.getLogger(__name__)

# ── Allowed File Types ────────────────────────────────────────────────────
# MIME type → extension used for the stored file
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

# Some browsers still send the non-standard alias
_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}

UPLOAD_URL_PREFIX = "/uploads"


class FileService:
    """
    Manages the lifecycle of uploaded images on local disk.

    Lifecycle of an uploaded file:
        1. Route reads the multipart body → FileService.validate_and_store()
        2. Bytes are validated and written as STORAGE_ROOT/<uuid><ext>
        3. The StoredUpload descriptor travels through the pipeline
        4. On a failed run or a note delete: cleanup_file() removes it
    """

    def __init__(self, storage_root: Optional[str] = None, max_file_size: Optional[int] = None):
        """
        Args:
            storage_root:  Override settings.storage_root (used in tests).
            max_file_size: Override settings.max_file_size (used in tests).
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.max_file_size = max_file_size or settings.max_file_size
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_size(self, actual_size: int, content_length: Optional[int] = None) -> None:
        """
        Reject empty and oversized uploads.

        content_length comes from the client and may be absent or wrong, so
        the actual byte count is always checked as well.
        """
        max_mb = self.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="No image uploaded. Please select an image file.",
                field="image",
                context={"stage": "upload"},
            )

        if content_length and content_length > self.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="image",
                context={"stage": "upload", "max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > self.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="image",
                context={"stage": "upload", "max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_declared_type(self, content_type: Optional[str]) -> None:
        """Reject uploads whose declared content type is not an allowed image type."""
        if not content_type or content_type == "application/octet-stream":
            return
        declared = _MIME_ALIASES.get(content_type.lower(), content_type.lower())
        if declared not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"File type '{content_type}' is not supported. "
                    "Please upload a JPEG, PNG, GIF or WebP image."
                ),
                field="image",
                context={
                    "stage": "upload",
                    "declared_mime": content_type,
                    "allowed": sorted(ALLOWED_MIME_TYPES),
                },
            )

    def detect_mime_type(self, content: bytes) -> str:
        """
        Determine the real image type from the file header.

        Image.open() only parses the header; pixel data is not decoded.
        Anything Pillow cannot identify, or identifies as a format outside
        the allowed set, is rejected.
        """
        try:
            with Image.open(io.BytesIO(content)) as image:
                image_format = image.format
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ValidationError(
                message="The uploaded file is not a readable image. Please upload a JPEG, PNG, GIF or WebP image.",
                field="image",
                context={"stage": "upload", "decode_error": type(e).__name__},
            )

        mime_type = Image.MIME.get(image_format or "", "application/octet-stream")
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' is not supported. "
                    "Please upload a JPEG, PNG, GIF or WebP image."
                ),
                field="image",
                context={
                    "stage": "upload",
                    "detected_mime": mime_type,
                    "allowed": sorted(ALLOWED_MIME_TYPES),
                },
            )
        return mime_type

    # ── Storage ───────────────────────────────────────────────────────────

    def public_url(self, filename: str) -> str:
        return f"{UPLOAD_URL_PREFIX}/{filename}"

    def resolve(self, filename: str) -> Path:
        """
        Map a public filename back to its path under the storage root.

        Raises ValidationError when the name would escape the storage root.
        """
        candidate = (self.storage_root / filename).resolve()
        if candidate.parent != self.storage_root:
            raise ValidationError(
                message="Invalid file path",
                field="filename",
                context={"filename": filename},
            )
        return candidate

    async def store_file(self, content: bytes, extension: str) -> Path:
        """
        Write validated bytes to STORAGE_ROOT/<uuid><extension>.

        Raises:
            FileStorageError if the write fails (disk full, permissions).
        """
        absolute_path = self.storage_root / f"{uuid.uuid4()}{extension}"
        try:
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"stage": "upload", "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", absolute_path.name, len(content))
        return absolute_path

    async def cleanup_file(self, file_path: Optional[str]) -> bool:
        """
        Remove a stored file, best-effort.

        Returns True when a file was removed. Missing files and OS errors
        are logged and swallowed: a leftover image is never a user-facing
        error.
        """
        if not file_path:
            return False
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
                return True
            logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))
        return False

    async def validate_and_store(
        self,
        filename: Optional[str],
        content: bytes,
        content_type: Optional[str] = None,
        content_length: Optional[int] = None,
    ) -> StoredUpload:
        """
        Complete validation and storage for one upload.

        Returns:
            StoredUpload describing the stored file.
        Raises:
            ValidationError for bad input, FileStorageError for disk failures.
        """
        self.validate_size(len(content), content_length)
        self.validate_declared_type(content_type)
        mime_type = self.detect_mime_type(content)

        absolute_path = await self.store_file(content, ALLOWED_MIME_TYPES[mime_type])

        return StoredUpload(
            filename=absolute_path.name,
            original_name=Path(filename or "").name or absolute_path.name,
            mime_type=mime_type,
            size=len(content),
            path=str(absolute_path),
            url=self.public_url(absolute_path.name),
        )
