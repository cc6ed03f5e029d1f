"""
SmartNotes Backend: Pydantic Request/Response Schemas
========================================================

What:  Pydantic models defining the API contract between frontend and backend,
       plus the NoteCreate input accepted by the persistence service.
How:   FastAPI uses these models to validate request bodies, serialize responses,
       and generate OpenAPI documentation.

Wire format:
    Response models inherit from CamelModel, so `ai_notes` is sent as `aiNotes`
    and `note_id` as `noteId`. Python code keeps snake_case names.

Previews:
    List views carry a text preview (at most 100 characters) and a notes
    preview (at most 150 characters, markdown markers removed), both
    ending in "..." when truncated.
"""

import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from smartnotes.models.note import Note, STATUS_COMPLETED

TEXT_PREVIEW_LENGTH = 100
NOTES_PREVIEW_LENGTH = 150

_MARKUP_CHARS = re.compile(r"[#*`_~]")
_WHITESPACE = re.compile(r"\s+")


def truncate_preview(text: Optional[str], limit: int) -> str:
    """Cut text to at most `limit` characters, marking the cut with '...'."""
    if not text:
        return ""
    text = _WHITESPACE.sub(" ", text).strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def strip_markup(text: Optional[str]) -> str:
    """Remove markdown emphasis/heading markers for plain-text previews."""
    if not text:
        return ""
    return _MARKUP_CHARS.sub("", text)


class CamelModel(BaseModel):
    """Base for wire models: camelCase JSON, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ══════════════════════════════════════════════════════════════════════════
# Persistence Input
# ══════════════════════════════════════════════════════════════════════════


class NoteCreate(BaseModel):
    """
    Everything NoteStore.create() needs to build a Note row.

    Fields default to empty values on purpose: NoteStore validates the
    record as a whole and reports every missing field at once.
    """

    original_filename: str = ""
    stored_filename: str = ""
    image_path: str = ""
    image_url: str = ""
    extracted_text: str = ""
    ocr_confidence: Optional[float] = None
    generated_notes: str = ""
    file_size: Optional[int] = None
    mime_type: str = ""
    ocr_metadata: Dict[str, Any] = Field(default_factory=dict)
    ai_metadata: Dict[str, Any] = Field(default_factory=dict)
    processing_options: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    status: str = STATUS_COMPLETED
    failure_message: Optional[str] = None
    failure_stage: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UploadedFileInfo(CamelModel):
    """Descriptor of a stored upload, as returned to clients."""

    filename: str = Field(description="Generated name on the file store")
    original_name: str = Field(description="Filename sent by the client")
    mime_type: str
    size: int = Field(description="Size in bytes")
    url: str = Field(description="URL path to fetch the image: /uploads/<filename>")


class UploadResponse(CamelModel):
    success: bool = True
    message: str = "Image uploaded successfully"
    file: UploadedFileInfo


class OcrSummary(CamelModel):
    text: str
    confidence: float
    words: int
    lines: int
    paragraphs: int


class OcrDetail(OcrSummary):
    """OCR-only responses also expose the engine's raw output."""

    psm: int
    raw: Dict[str, Any] = Field(default_factory=dict)


class ProcessMetadata(CamelModel):
    note_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Id of the stored note; null when persistence failed",
    )
    processing_time_ms: float
    ocr_metadata: Dict[str, Any]
    ai_metadata: Dict[str, Any]
    processing_options: Dict[str, Any]


class ProcessData(CamelModel):
    original_image: UploadedFileInfo
    ocr: OcrSummary
    ai_notes: str
    metadata: ProcessMetadata


class ProcessResponse(CamelModel):
    """Returned by POST /api/notes/process."""

    success: bool = True
    message: str = "Notes generated successfully"
    data: ProcessData


class OcrOnlyData(CamelModel):
    original_image: UploadedFileInfo
    ocr: OcrDetail


class OcrOnlyResponse(CamelModel):
    """Returned by POST /api/notes/ocr-only."""

    success: bool = True
    message: str = "Text extracted successfully"
    data: OcrOnlyData


class NoteMetadata(CamelModel):
    file_size: int
    mime_type: str
    ocr_metadata: Dict[str, Any]
    ai_metadata: Dict[str, Any]
    processing_options: Dict[str, Any]


class NoteFailure(CamelModel):
    message: Optional[str] = None
    stage: Optional[str] = None
    timestamp: Optional[datetime] = None


class NoteDetail(CamelModel):
    """
    Full representation of a stored note.

    The server-side storage path is deliberately absent; clients load the
    image through image_url.
    """

    id: uuid.UUID
    owner_id: str
    original_filename: str
    image_url: str
    ocr_text: str
    ocr_confidence: Optional[float] = None
    ai_notes: str
    metadata: NoteMetadata
    tags: List[str]
    status: str
    failure: Optional[NoteFailure] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_note(cls, note: Note) -> "NoteDetail":
        failure = None
        if note.failure_message or note.failure_stage:
            failure = NoteFailure(
                message=note.failure_message,
                stage=note.failure_stage,
                timestamp=note.failed_at,
            )
        return cls(
            id=note.id,
            owner_id=note.owner_id,
            original_filename=note.original_filename,
            image_url=note.image_url,
            ocr_text=note.extracted_text,
            ocr_confidence=note.ocr_confidence,
            ai_notes=note.generated_notes,
            metadata=NoteMetadata(
                file_size=note.file_size,
                mime_type=note.mime_type,
                ocr_metadata=dict(note.ocr_metadata or {}),
                ai_metadata=dict(note.ai_metadata or {}),
                processing_options=dict(note.processing_options or {}),
            ),
            tags=list(note.tags or []),
            status=note.status,
            failure=failure,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class NoteDetailResponse(CamelModel):
    success: bool = True
    data: NoteDetail


class NotePreview(CamelModel):
    """Compact note representation for list views."""

    id: uuid.UUID
    original_filename: str
    text_preview: str
    notes_preview: str
    created_at: datetime
    ocr_confidence: Optional[float] = None
    file_size: int
    tags: List[str]

    @classmethod
    def from_note(cls, note: Note) -> "NotePreview":
        return cls(
            id=note.id,
            original_filename=note.original_filename,
            text_preview=truncate_preview(note.extracted_text, TEXT_PREVIEW_LENGTH),
            notes_preview=truncate_preview(
                strip_markup(note.generated_notes), NOTES_PREVIEW_LENGTH
            ),
            created_at=note.created_at,
            ocr_confidence=note.ocr_confidence,
            file_size=note.file_size,
            tags=list(note.tags or []),
        )


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class HistoryPage(CamelModel):
    notes: List[NotePreview]
    pagination: Pagination


class HistoryResponse(CamelModel):
    """Returned by GET /api/notes/history."""

    success: bool = True
    message: str = "History retrieved successfully"
    data: HistoryPage


class NoteListResponse(CamelModel):
    """Returned by GET /api/notes/recent and GET /api/notes/search."""

    success: bool = True
    message: str
    data: List[NotePreview]


class DeleteResponse(CamelModel):
    success: bool = True
    message: str = "Note deleted successfully"


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class TagsRequest(CamelModel):
    """Body of POST/DELETE /api/notes/{id}/tags."""

    tags: List[str] = Field(min_length=1, max_length=50)

    @field_validator("tags")
    @classmethod
    def tags_are_short(cls, v: List[str]) -> List[str]:
        for tag in v:
            if len(tag) > 64:
                raise ValueError(f"Tag '{tag[:20]}...' exceeds 64 characters")
        return v


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(CamelModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "no_text_found",
            "message": "Could not extract any readable text from the image...",
            "details": {"stage": "extraction"},
            "requestId": "550e8400"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(CamelModel):
    """Health check response showing service and dependency status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected, disconnected")
    ocr: str = Field(description="available, unavailable")
    gemini: str = Field(description="available, unavailable")
    persist_failures: int = Field(description="Pipeline runs whose note could not be stored")
    uptime_seconds: float
