"""
SmartNotes Backend: File Service Unit Tests
==============================================

What:  Tests for FileService validation, storage, path resolution and cleanup.
Why:   Upload validation is the first security boundary of the service.
How:   Real Pillow-encoded images written to a temporary storage root.

Test Strategy:
    - Size limits (empty, at limit, over limit, lying Content-Length)
    - Declared type vs. decoded type (PDF, text, spoofed extension)
    - Storage naming (<uuid><ext>, URL prefix)
    - resolve() traversal rejection
    - Best-effort cleanup
"""

from pathlib import Path

import pytest

from smartnotes.exceptions import ValidationError
from smartnotes.services.file_service import ALLOWED_MIME_TYPES, FileService

from conftest import make_image_bytes


class TestSizeValidation:
    """Tests for FileService.validate_size()."""

    def setup_method(self):
        self.service = FileService(storage_root=None, max_file_size=1_048_576)

    def test_within_limit(self):
        self.service.validate_size(1000)

    def test_exactly_at_limit(self):
        """The limit itself is allowed; one byte more is not."""
        self.service.validate_size(1_048_576)

    def test_over_limit(self):
        with pytest.raises(ValidationError, match="exceeds maximum") as exc_info:
            self.service.validate_size(1_048_577)
        assert exc_info.value.field == "image"
        assert exc_info.value.stage == "upload"

    def test_declared_length_over_limit(self):
        """A Content-Length above the limit is rejected even for small bodies."""
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(100, content_length=5_000_000)

    def test_empty_file(self):
        with pytest.raises(ValidationError, match="No image uploaded"):
            self.service.validate_size(0)


class TestTypeValidation:
    """Declared content type and Pillow header sniffing."""

    def setup_method(self):
        self.service = FileService()

    @pytest.mark.parametrize("content_type", ["image/png", "image/jpeg", "image/jpg", "IMAGE/WEBP", None,
                                              "application/octet-stream"])
    def test_declared_type_accepted(self, content_type):
        self.service.validate_declared_type(content_type)

    @pytest.mark.parametrize("content_type", ["application/pdf", "text/plain", "image/bmp"])
    def test_declared_type_rejected(self, content_type):
        with pytest.raises(ValidationError, match="not supported") as exc_info:
            self.service.validate_declared_type(content_type)
        assert exc_info.value.context["allowed"] == sorted(ALLOWED_MIME_TYPES)

    @pytest.mark.parametrize(
        "image_format, expected",
        [("PNG", "image/png"), ("JPEG", "image/jpeg"), ("GIF", "image/gif"), ("WEBP", "image/webp")],
    )
    def test_detects_allowed_formats(self, image_format, expected):
        assert self.service.detect_mime_type(make_image_bytes(image_format)) == expected

    def test_rejects_non_image_bytes(self):
        with pytest.raises(ValidationError, match="not a readable image"):
            self.service.detect_mime_type(b"%PDF-1.4 not really an image")

    def test_rejects_decodable_but_unsupported_format(self):
        """BMP decodes fine but is outside the allowed set."""
        with pytest.raises(ValidationError, match="image/bmp"):
            self.service.detect_mime_type(make_image_bytes("BMP"))


class TestStorage:
    """validate_and_store(), resolve() and cleanup_file() against a real directory."""

    @pytest.mark.asyncio
    async def test_validate_and_store_writes_uuid_named_file(self, file_service, sample_png_bytes):
        upload = await file_service.validate_and_store(
            filename="lecture notes.png",
            content=sample_png_bytes,
            content_type="image/png",
        )

        stored = Path(upload.path)
        assert stored.is_file()
        assert stored.read_bytes() == sample_png_bytes
        assert stored.parent == file_service.storage_root
        assert upload.filename == stored.name
        assert upload.filename.endswith(".png")
        assert upload.filename != "lecture notes.png"
        assert upload.original_name == "lecture notes.png"
        assert upload.url == f"/uploads/{upload.filename}"
        assert upload.mime_type == "image/png"
        assert upload.size == len(sample_png_bytes)

    @pytest.mark.asyncio
    async def test_extension_follows_decoded_type(self, file_service, sample_jpeg_bytes):
        """A JPEG sent as 'scan.png' is stored as .jpg."""
        upload = await file_service.validate_and_store(
            filename="scan.png",
            content=sample_jpeg_bytes,
            content_type="application/octet-stream",
        )
        assert upload.filename.endswith(".jpg")
        assert upload.mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_original_name_drops_directories(self, file_service, sample_png_bytes):
        upload = await file_service.validate_and_store("../../etc/passwd.png", sample_png_bytes)
        assert upload.original_name == "passwd.png"

    @pytest.mark.asyncio
    async def test_rejected_upload_writes_nothing(self, file_service):
        with pytest.raises(ValidationError):
            await file_service.validate_and_store("notes.pdf", b"%PDF-1.4", content_type="application/pdf")
        assert list(file_service.storage_root.iterdir()) == []

    def test_resolve_flat_name(self, file_service):
        path = file_service.resolve("abc.png")
        assert path == file_service.storage_root / "abc.png"

    @pytest.mark.parametrize("filename", ["../secret.txt", "nested/abc.png", "../../etc/passwd"])
    def test_resolve_rejects_escaping_names(self, file_service, filename):
        with pytest.raises(ValidationError, match="Invalid file path"):
            file_service.resolve(filename)

    @pytest.mark.asyncio
    async def test_cleanup_file_removes_file(self, tmp_path):
        test_file = tmp_path / "test.jpg"
        test_file.write_bytes(b"test content")

        service = FileService(storage_root=str(tmp_path))
        assert await service.cleanup_file(str(test_file)) is True
        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_file_nonexistent(self, tmp_path):
        """Missing files are not an error."""
        service = FileService(storage_root=str(tmp_path))
        assert await service.cleanup_file(str(tmp_path / "nonexistent.jpg")) is False
        assert await service.cleanup_file(None) is False
