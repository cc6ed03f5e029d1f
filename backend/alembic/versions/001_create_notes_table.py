"""Create notes table

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Creates the `notes` table: one row per processed image, holding the
       extracted text, the generated study notes and their metadata.
How:   Portable column types (UUID, JSON → JSONB on PostgreSQL) so the same
       migration runs against PostgreSQL and SQLite.

Rollback: downgrade() drops the table (all notes are lost; images on disk stay).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create the notes table and its listing indexes. See smartnotes/models/note.py."""
    op.create_table(
        "notes",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column(
            "owner_id",
            sa.String(255),
            nullable=False,
            comment="Tenant that owns this note ('anonymous' is an ordinary tenant)",
        ),

        # Source reference
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("stored_filename", sa.String(255), nullable=False),
        sa.Column("image_path", sa.String(1024), nullable=False),
        sa.Column("image_url", sa.String(1024), nullable=False),

        # Extraction and generation results
        sa.Column("extracted_text", sa.Text(), nullable=False),
        sa.Column(
            "ocr_confidence",
            sa.Float(),
            nullable=True,
            comment="Mean OCR word confidence, 0-100",
        ),
        sa.Column("generated_notes", sa.Text(), nullable=False),

        # Metadata
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("ocr_metadata", JSONType, nullable=False),
        sa.Column("ai_metadata", JSONType, nullable=False),
        sa.Column("processing_options", JSONType, nullable=False),

        # Classification
        sa.Column("tags", JSONType, nullable=False),
        sa.Column(
            "status",
            sa.String(50),
            nullable=False,
            server_default=sa.text("'completed'"),
            comment="Processing state: processing, completed, failed",
        ),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column("failure_stage", sa.String(50), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),

        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),

        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "ocr_confidence IS NULL OR (ocr_confidence >= 0 AND ocr_confidence <= 100)",
            name="ck_notes_ocr_confidence_range",
        ),
    )

    # recent/history/search are always owner-scoped and newest first
    op.create_index("idx_notes_owner_created_at", "notes", ["owner_id", "created_at"])
    op.create_index("idx_notes_status", "notes", ["status"])


def downgrade() -> None:
    op.drop_index("idx_notes_status", table_name="notes")
    op.drop_index("idx_notes_owner_created_at", table_name="notes")
    op.drop_table("notes")
