"""
SmartNotes Backend: ProcessedNote SQLAlchemy Model
=====================================================

What:  ORM model for the `notes` table: one row per processed image.
How:   Inherits from the shared DeclarativeBase; Alembic reads this for migrations.
Who:   Used by NoteStore for CRUD operations and by Alembic for schema management.

Table Design:
    - UUID primary key generated in Python (portable across PostgreSQL and SQLite)
    - Source reference: original filename, stored filename, storage path, URL
    - Extraction result: extracted_text + ocr_confidence (0-100)
    - Generated result: generated_notes
    - Metadata: file_size, mime_type + three JSON documents
      (ocr_metadata, ai_metadata, processing_options)
    - Classification: owner_id, tags (JSON list), status, failure detail
    - Timestamps: created_at (never updated), updated_at (refreshed on update)

Indexes:
    (owner_id, created_at) serves recent/history/search listings,
    which are always scoped to a single owner.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, JSON, DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from smartnotes.database import Base

# JSONB on PostgreSQL, plain JSON (TEXT) elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
NOTE_STATUSES = (STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)

FAILURE_STAGES = ("upload", "extraction", "generation", "persist")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """
    A processed note: the extracted text and the generated study notes
    for one uploaded image.

    Lifecycle:
        1. Created by the pipeline after extraction and generation succeed
           (status = 'completed')
        2. Mutated only by tag add/remove (updated_at refreshed)
        3. Deleted by explicit user action; the pipeline then removes the image
    """

    __tablename__ = "notes"

    # ── Identity ──────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    owner_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Tenant that owns this note ('anonymous' is an ordinary tenant)",
    )

    # ── Source Reference ──────────────────────────────────────────────────
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)

    # Generated <uuid>.<ext> name under STORAGE_ROOT
    stored_filename: Mapped[str] = mapped_column(String(255), nullable=False)

    # Absolute path on the storage volume; never returned by the API
    image_path: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Public URL path: /uploads/<stored_filename>
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    # ── Extraction Result ─────────────────────────────────────────────────
    extracted_text: Mapped[str] = mapped_column(Text, nullable=False)

    ocr_confidence: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Mean OCR word confidence, 0-100",
    )

    # ── Generated Result ──────────────────────────────────────────────────
    generated_notes: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Metadata ──────────────────────────────────────────────────────────
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # {"words": int, "lines": int, "paragraphs": int, "processing_time_ms": float}
    ocr_metadata: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # {"model", "input_length", "output_length", "finish_reason", "processing_time_ms"}
    ai_metadata: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # {"note_style", "subject", "include_key_points", "include_summary", "include_questions"}
    processing_options: Mapped[Dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    # ── Classification ────────────────────────────────────────────────────
    # Lowercase, trimmed, unique; assign a new list to mark the column dirty
    tags: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=STATUS_COMPLETED,
        comment="Processing state: processing, completed, failed",
    )

    failure_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_stage: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("idx_notes_owner_created_at", "owner_id", "created_at"),
        Index("idx_notes_status", "status"),
        CheckConstraint(
            "ocr_confidence IS NULL OR (ocr_confidence >= 0 AND ocr_confidence <= 100)",
            name="ck_notes_ocr_confidence_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Note(id={self.id}, owner='{self.owner_id}', status='{self.status}', "
            f"created_at='{self.created_at}')>"
        )
