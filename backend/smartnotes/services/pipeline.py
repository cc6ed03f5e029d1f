"""
SmartNotes Backend: Note Pipeline (Business Logic Orchestrator)
=================================================================

What:  Sequences one pipeline run: stored upload → extract text → generate
       notes → persist → response. Also owns note deletion.
How:   Composes TextExtractor, NoteGenerator, NoteStore and FileService,
       all injected at construction.
Who:   Built in the application lifespan; called by the notes routes.
When:  For every process, ocr-only and delete request.

Orchestration Flow (POST /api/notes/process):
    ┌──────────┐    ┌────────────┐    ┌────────────┐    ┌────────────┐
    │ received │───▶│ extracting │───▶│ generating │───▶│ persisting │───▶ done
    └──────────┘    └────────────┘    └────────────┘    └────────────┘
                          │                 │                 │
                          ▼                 ▼                 ▼
                   extraction_failed  generation_failed  persist_failed
                   (upload removed)   (upload removed)   (logged, counted,
                                                          noteId = null)

    extraction_failed and generation_failed are terminal: the error is
    tagged with its stage and propagates to the HTTP error mapping.
    persist_failed is not: the user still gets their notes.
"""

import logging
import time
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.exceptions import (
    DatabaseError,
    NoTextFoundError,
    SmartNotesError,
    ValidationError,
)
from smartnotes.models.note import Note
from smartnotes.schemas.note import (
    NoteCreate,
    OcrDetail,
    OcrOnlyData,
    OcrSummary,
    ProcessData,
    ProcessMetadata,
    UploadedFileInfo,
)
from smartnotes.schemas.pipeline import ExtractionResult, GenerationOptions, StoredUpload
from smartnotes.services.file_service import FileService
from smartnotes.services.llm_base import NoteGenerator
from smartnotes.services.note_store import NoteStore
from smartnotes.services.ocr_service import TextExtractor

logger = logging.getLogger(__name__)


def _file_info(upload: StoredUpload) -> UploadedFileInfo:
    # The storage path stays server-side
    return UploadedFileInfo(
        filename=upload.filename,
        original_name=upload.original_name,
        mime_type=upload.mime_type,
        size=upload.size,
        url=upload.url,
    )


class NotePipeline:
    """
    Orchestrates pipeline runs and note deletion.

    Attributes:
        persist_failures: number of runs whose note could not be stored.
            Reported by /health; reset only by a process restart.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        generator: NoteGenerator,
        store: NoteStore,
        files: FileService,
    ):
        self.extractor = extractor
        self.generator = generator
        self.store = store
        self.files = files
        self.persist_failures = 0

    # ── Stages ────────────────────────────────────────────────────────────

    async def _extract(self, upload: StoredUpload, owner_id: Optional[str]) -> ExtractionResult:
        """Run extraction; an empty result becomes NoTextFoundError."""
        logger.info(
            "Pipeline stage: extracting",
            extra={"event": "stage", "stage": "extraction", "owner_id": owner_id, "upload": upload.filename},
        )
        try:
            extraction = await self.extractor.extract(upload.path)
        except SmartNotesError as e:
            raise e.with_stage("extraction")

        if not extraction.text.strip():
            raise NoTextFoundError(
                context={"confidence": extraction.confidence, "filename": upload.original_name},
            )
        return extraction

    async def _discard(self, upload: StoredUpload, reason: str) -> None:
        """Remove the upload after a terminal failure. Never raises."""
        removed = await self.files.cleanup_file(upload.path)
        logger.info(
            "Discarded upload %s after %s (removed=%s)",
            upload.filename,
            reason,
            removed,
        )

    # ── Operations ────────────────────────────────────────────────────────

    async def process(
        self,
        db: AsyncSession,
        owner_id: str,
        upload: StoredUpload,
        options: GenerationOptions,
    ) -> ProcessData:
        """
        Complete pipeline run for an already validated and stored upload.

        Returns:
            ProcessData with the file descriptor, OCR result, notes and
            metadata; metadata.note_id is None when persistence failed.

        Raises:
            NoTextFoundError, ExtractionFailedError, ExtractionTimeoutError:
                extraction stage (upload removed)
            GenerationFailedError: generation stage (upload removed)
        """
        start_time = time.time()

        # ── Extracting ────────────────────────────────────────────────────
        try:
            extraction = await self._extract(upload, owner_id)
        except Exception:
            await self._discard(upload, "extraction_failed")
            raise

        # ── Generating ────────────────────────────────────────────────────
        logger.info(
            "Pipeline stage: generating",
            extra={"event": "stage", "stage": "generation", "owner_id": owner_id, "upload": upload.filename},
        )
        try:
            generation = await self.generator.generate_notes(extraction.text, options)
        except Exception as e:
            if isinstance(e, SmartNotesError):
                e.with_stage("generation")
            await self._discard(upload, "generation_failed")
            raise

        ocr_metadata = extraction.as_ocr_metadata()
        ai_metadata = generation.metadata.model_dump()
        processing_options = options.as_processing_options()

        # ── Persisting ────────────────────────────────────────────────────
        note_id = None
        try:
            note = await self.store.create(
                db,
                owner_id,
                NoteCreate(
                    original_filename=upload.original_name,
                    stored_filename=upload.filename,
                    image_path=upload.path,
                    image_url=upload.url,
                    extracted_text=extraction.text,
                    ocr_confidence=extraction.confidence,
                    generated_notes=generation.notes,
                    file_size=upload.size,
                    mime_type=upload.mime_type,
                    ocr_metadata=ocr_metadata,
                    ai_metadata=ai_metadata,
                    processing_options=processing_options,
                ),
            )
            note_id = note.id
        except Exception as e:
            # The user still gets their notes; the image stays for a retry
            self.persist_failures += 1
            logger.error(
                "Note could not be stored, returning unsaved result: %s",
                e.message if isinstance(e, SmartNotesError) else str(e),
                exc_info=not isinstance(e, (ValidationError, DatabaseError)),
                extra={
                    "event": "persist_failed",
                    "stage": "persist",
                    "owner_id": owner_id,
                    "upload": upload.filename,
                    "error_type": type(e).__name__,
                },
            )

        processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            "Pipeline done in %.0fms (note=%s)",
            processing_time_ms,
            note_id,
            extra={"event": "stage", "stage": "done", "owner_id": owner_id, "upload": upload.filename},
        )

        return ProcessData(
            original_image=_file_info(upload),
            ocr=OcrSummary(
                text=extraction.text,
                confidence=extraction.confidence,
                words=extraction.word_count,
                lines=extraction.line_count,
                paragraphs=extraction.paragraph_count,
            ),
            ai_notes=generation.notes,
            metadata=ProcessMetadata(
                note_id=note_id,
                processing_time_ms=round(processing_time_ms, 2),
                ocr_metadata=ocr_metadata,
                ai_metadata=ai_metadata,
                processing_options=processing_options,
            ),
        )

    async def extract_only(self, upload: StoredUpload) -> OcrOnlyData:
        """
        Extraction without generation or persistence.

        The upload is kept on success (the client may reference its URL)
        and removed when no text was found or extraction failed.
        """
        try:
            extraction = await self._extract(upload, None)
        except Exception:
            await self._discard(upload, "extraction_failed")
            raise

        return OcrOnlyData(
            original_image=_file_info(upload),
            ocr=OcrDetail(
                text=extraction.text,
                confidence=extraction.confidence,
                words=extraction.word_count,
                lines=extraction.line_count,
                paragraphs=extraction.paragraph_count,
                psm=extraction.psm,
                raw=extraction.raw,
            ),
        )

    async def delete_note(self, db: AsyncSession, owner_id: str, note_id: str) -> Note:
        """
        Delete a note, then remove its stored image best-effort.

        Raises:
            NotFoundError: unknown id or another owner's note.
        """
        note = await self.store.delete(db, owner_id, note_id)
        removed = await self.files.cleanup_file(note.image_path)
        if not removed:
            logger.warning(
                "Image for deleted note %s was not removed",
                note.id,
                extra={"event": "image_cleanup_skipped", "owner_id": owner_id, "upload": note.stored_filename},
            )
        return note
