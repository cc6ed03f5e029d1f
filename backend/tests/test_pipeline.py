"""
SmartNotes Backend: Note Pipeline Tests
==========================================

What:  Tests for NotePipeline orchestration with fake OCR/LLM collaborators.
How:   Real FileService and NoteStore (temp directory, SQLite), fake
       extractor and generator from conftest.

What we test:
    - Success path stores exactly one note and returns its id
    - Terminal failures tag the stage, store nothing and remove the upload
    - Persist failures (including an unreachable database) are counted and
      still return the notes
    - Deleting a note removes its image
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from smartnotes.exceptions import (
    DatabaseError,
    ExtractionFailedError,
    ExtractionTimeoutError,
    GenerationFailedError,
    NotFoundError,
    NoTextFoundError,
)
from smartnotes.models.note import Note
from smartnotes.schemas.pipeline import ExtractionResult, GenerationOptions
from smartnotes.services.note_store import note_store

from conftest import SAMPLE_NOTES, SAMPLE_TEXT


async def count_notes(db) -> int:
    return (await db.execute(select(func.count(Note.id)))).scalar()


@pytest_asyncio.fixture
async def upload(file_service, sample_png_bytes):
    return await file_service.validate_and_store("biology.png", sample_png_bytes, "image/png")


class TestProcess:

    @pytest.mark.asyncio
    async def test_success_stores_one_note(self, pipeline, db_session, upload, fake_extractor, fake_generator):
        options = GenerationOptions(style="concise", subject="Biology", include_questions=False)

        data = await pipeline.process(db_session, "alice", upload, options)

        assert fake_extractor.calls == [upload.path]
        assert fake_generator.calls == [(SAMPLE_TEXT, options)]
        assert data.ocr.text == SAMPLE_TEXT
        assert data.ocr.confidence == pytest.approx(91.5)
        assert data.ocr.words == 12
        assert data.ai_notes == SAMPLE_NOTES
        assert data.original_image.url == upload.url
        assert data.metadata.note_id is not None
        assert data.metadata.processing_options["note_style"] == "concise"
        assert data.metadata.ai_metadata["model"] == "gemini-test"

        note = await note_store.get_by_id(db_session, "alice", data.metadata.note_id)
        assert note.extracted_text == SAMPLE_TEXT
        assert note.generated_notes == SAMPLE_NOTES
        assert note.image_path == upload.path
        assert note.stored_filename == upload.filename
        assert note.original_filename == "biology.png"
        assert note.processing_options["subject"] == "Biology"
        assert await count_notes(db_session) == 1
        assert Path(upload.path).exists()

    @pytest.mark.asyncio
    async def test_whitespace_text_is_no_text_found(self, pipeline, db_session, upload, fake_extractor, fake_generator):
        fake_extractor.result = ExtractionResult(
            text="  \n ", confidence=12.0, word_count=0, line_count=0, paragraph_count=0, psm=6
        )

        with pytest.raises(NoTextFoundError) as exc_info:
            await pipeline.process(db_session, "alice", upload, GenerationOptions())

        assert exc_info.value.stage == "extraction"
        assert fake_generator.calls == []
        assert await count_notes(db_session) == 0
        assert not Path(upload.path).exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [ExtractionFailedError(), ExtractionTimeoutError(timeout_seconds=60)],
    )
    async def test_extraction_failure_discards_upload(self, pipeline, db_session, upload, fake_extractor, error):
        fake_extractor.error = error

        with pytest.raises(ExtractionFailedError) as exc_info:
            await pipeline.process(db_session, "alice", upload, GenerationOptions())

        assert exc_info.value.stage == "extraction"
        assert await count_notes(db_session) == 0
        assert not Path(upload.path).exists()

    @pytest.mark.asyncio
    async def test_generation_failure_discards_upload(self, pipeline, db_session, upload, fake_generator):
        fake_generator.error = GenerationFailedError(context={"error_type": "ResourceExhausted"})

        with pytest.raises(GenerationFailedError) as exc_info:
            await pipeline.process(db_session, "alice", upload, GenerationOptions())

        assert exc_info.value.stage == "generation"
        assert await count_notes(db_session) == 0
        assert not Path(upload.path).exists()

    @pytest.mark.asyncio
    async def test_persist_failure_still_returns_notes(self, pipeline, db_session, upload):
        pipeline.store = AsyncMock()
        pipeline.store.create.side_effect = DatabaseError(context={"error_type": "OperationalError"})

        data = await pipeline.process(db_session, "alice", upload, GenerationOptions())

        assert data.metadata.note_id is None
        assert data.ai_notes == SAMPLE_NOTES
        assert pipeline.persist_failures == 1
        # The image stays so the result can be stored again later
        assert Path(upload.path).exists()

    @pytest.mark.asyncio
    async def test_unreachable_database_still_returns_notes(self, pipeline, unreachable_session, upload):
        data = await pipeline.process(unreachable_session, "alice", upload, GenerationOptions())

        assert data.metadata.note_id is None
        assert data.ai_notes == SAMPLE_NOTES
        assert pipeline.persist_failures == 1
        assert Path(upload.path).exists()

    @pytest.mark.asyncio
    async def test_unexpected_store_error_still_returns_notes(self, pipeline, db_session, upload):
        pipeline.store = AsyncMock()
        pipeline.store.create.side_effect = RuntimeError("event loop is closed")

        data = await pipeline.process(db_session, "alice", upload, GenerationOptions())

        assert data.metadata.note_id is None
        assert pipeline.persist_failures == 1

    @pytest.mark.asyncio
    async def test_invalid_owner_counts_as_persist_failure(self, pipeline, db_session, upload):
        data = await pipeline.process(db_session, "   ", upload, GenerationOptions())

        assert data.metadata.note_id is None
        assert pipeline.persist_failures == 1
        assert await count_notes(db_session) == 0


class TestExtractOnly:

    @pytest.mark.asyncio
    async def test_returns_ocr_detail_and_keeps_upload(self, pipeline, upload, fake_generator):
        data = await pipeline.extract_only(upload)

        assert data.ocr.text == SAMPLE_TEXT
        assert data.ocr.psm == 3
        assert data.original_image.filename == upload.filename
        assert fake_generator.calls == []
        assert Path(upload.path).exists()

    @pytest.mark.asyncio
    async def test_failure_discards_upload(self, pipeline, upload, fake_extractor):
        fake_extractor.error = ExtractionFailedError()

        with pytest.raises(ExtractionFailedError):
            await pipeline.extract_only(upload)
        assert not Path(upload.path).exists()


class TestDeleteNote:

    @pytest.mark.asyncio
    async def test_delete_removes_record_and_image(self, pipeline, db_session, upload):
        data = await pipeline.process(db_session, "alice", upload, GenerationOptions())
        note_id = data.metadata.note_id

        await pipeline.delete_note(db_session, "alice", str(note_id))

        assert not Path(upload.path).exists()
        with pytest.raises(NotFoundError):
            await note_store.get_by_id(db_session, "alice", note_id)

    @pytest.mark.asyncio
    async def test_delete_with_missing_image_succeeds(self, pipeline, db_session, upload):
        data = await pipeline.process(db_session, "alice", upload, GenerationOptions())
        Path(upload.path).unlink()

        await pipeline.delete_note(db_session, "alice", str(data.metadata.note_id))
        assert await count_notes(db_session) == 0

    @pytest.mark.asyncio
    async def test_other_owner_cannot_delete(self, pipeline, db_session, upload):
        data = await pipeline.process(db_session, "alice", upload, GenerationOptions())

        with pytest.raises(NotFoundError):
            await pipeline.delete_note(db_session, "mallory", str(data.metadata.note_id))
        assert Path(upload.path).exists()
        assert await count_notes(db_session) == 1
