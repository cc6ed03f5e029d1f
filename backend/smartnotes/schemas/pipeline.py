"""
SmartNotes Backend: Pipeline Data Contracts
==============================================

What:  Pydantic models passed between the pipeline orchestrator and its
       collaborators (upload storage, OCR adapter, note generator).
Who:   Produced by services/file_service.py, services/ocr_service.py and
       services/gemini_service.py; consumed by services/pipeline.py.

These are internal shapes. The HTTP contract lives in schemas/note.py.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class NoteStyle(str, Enum):
    """Formatting styles the note generator understands."""

    COMPREHENSIVE = "comprehensive"
    CONCISE = "concise"
    DETAILED = "detailed"
    SUMMARY = "summary"

    @classmethod
    def parse(cls, value: Any) -> "NoteStyle":
        """Unknown or empty values fall back to COMPREHENSIVE instead of failing."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.COMPREHENSIVE


class GenerationOptions(BaseModel):
    """Style directives for one note generation request."""

    style: NoteStyle = NoteStyle.COMPREHENSIVE
    subject: Optional[str] = Field(default=None, max_length=200)
    include_key_points: bool = True
    include_summary: bool = True
    include_questions: bool = True

    @field_validator("style", mode="before")
    @classmethod
    def coerce_style(cls, v: Any) -> NoteStyle:
        return NoteStyle.parse(v)

    @field_validator("subject", mode="before")
    @classmethod
    def blank_subject_is_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def as_processing_options(self) -> Dict[str, Any]:
        """Shape stored on the note record under processing_options."""
        return {
            "note_style": self.style.value,
            "subject": self.subject,
            "include_key_points": self.include_key_points,
            "include_summary": self.include_summary,
            "include_questions": self.include_questions,
        }


class StoredUpload(BaseModel):
    """An uploaded image that passed validation and was written to storage."""

    filename: str = Field(description="Generated <uuid>.<ext> name on disk")
    original_name: str
    mime_type: str
    size: int = Field(ge=0)
    path: str = Field(description="Absolute path on the storage volume")
    url: str = Field(description="Public URL path: /uploads/<filename>")


class ExtractionResult(BaseModel):
    """Outcome of one OCR run (after the optional fallback pass)."""

    text: str
    confidence: float = Field(ge=0, le=100)
    word_count: int = Field(ge=0)
    line_count: int = Field(ge=0)
    paragraph_count: int = Field(ge=0)
    psm: int = Field(description="Page segmentation mode that produced this result")
    processing_time_ms: float = 0.0
    raw: Dict[str, Any] = Field(default_factory=dict)

    def as_ocr_metadata(self) -> Dict[str, Any]:
        """Shape stored on the note record under ocr_metadata."""
        return {
            "words": self.word_count,
            "lines": self.line_count,
            "paragraphs": self.paragraph_count,
            "psm": self.psm,
            "processing_time_ms": round(self.processing_time_ms, 2),
        }


class GenerationMetadata(BaseModel):
    model: str
    input_length: int = Field(ge=0)
    output_length: int = Field(ge=0)
    finish_reason: Optional[str] = None
    processing_time_ms: float = 0.0


class GenerationResult(BaseModel):
    """Formatted study notes plus bookkeeping about the model call."""

    notes: str
    metadata: GenerationMetadata
