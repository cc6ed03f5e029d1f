"""
SmartNotes Backend: Notes Route Handlers
===========================================

What:  The notes API: run the pipeline, OCR only, list/search/read/delete
       stored notes, and edit their tags.
How:   Extracts form/query parameters, validates and stores uploads through
       FileService, delegates to NotePipeline / NoteStore, returns JSON.
Who:   Called by the frontend upload view and the notes history views.

Route order matters: the fixed paths (/history, /recent, /search) are
declared before /notes/{note_id} so they are not captured as ids.

Caching Strategy:
    - POST endpoints: never cached
    - Lists and search: no-store (new notes appear immediately)
    - GET /api/notes/{id}: private, short max-age (tags can still change)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.dependencies import get_file_service, get_owner_id, get_pipeline, store_image_upload
from smartnotes.schemas.note import (
    DeleteResponse,
    ErrorResponse,
    HistoryResponse,
    NoteDetail,
    NoteDetailResponse,
    NoteListResponse,
    OcrOnlyResponse,
    ProcessResponse,
    TagsRequest,
)
from smartnotes.schemas.pipeline import GenerationOptions
from smartnotes.services.file_service import FileService
from smartnotes.services.note_store import note_store
from smartnotes.services.pipeline import NotePipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["Notes"])


# ══════════════════════════════════════════════════════════════════════════
# Pipeline Endpoints
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={
        400: {"description": "Invalid upload, no text found, or extraction failed", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
        500: {"description": "Note generation failed", "model": ErrorResponse},
    },
    summary="Upload an image and generate study notes",
    description=(
        "Upload an image (JPEG, PNG, GIF or WebP, max 10MB). Text is extracted with "
        "Tesseract OCR, turned into study notes by Google Gemini, and stored. If storing "
        "fails the notes are still returned, with metadata.noteId set to null."
    ),
)
async def process_image(
    image: UploadFile | None = File(default=None, description="Image containing text"),
    note_style: str = Form(default="comprehensive", alias="noteStyle"),
    subject: str | None = Form(default=None, max_length=200),
    include_key_points: bool = Form(default=True, alias="includeKeyPoints"),
    include_summary: bool = Form(default=True, alias="includeSummary"),
    include_questions: bool = Form(default=True, alias="includeQuestions"),
    form_user_id: str | None = Form(default=None, alias="userId", max_length=255),
    owner_id: str = Depends(get_owner_id),
    pipeline: NotePipeline = Depends(get_pipeline),
    files: FileService = Depends(get_file_service),
    db: AsyncSession = Depends(get_db_session),
) -> ProcessResponse:
    """
    Complete pipeline: upload → OCR → AI notes → persist.

    Owner comes from the multipart userId field when present, otherwise
    from the userId query parameter, otherwise the default owner.
    """
    if form_user_id and form_user_id.strip():
        owner_id = form_user_id.strip()

    options = GenerationOptions(
        style=note_style,
        subject=subject,
        include_key_points=include_key_points,
        include_summary=include_summary,
        include_questions=include_questions,
    )

    upload = await store_image_upload(image, files)
    logger.info("Processing upload %s (%d bytes) for owner=%s", upload.filename, upload.size, owner_id)

    data = await pipeline.process(db, owner_id, upload, options)
    return ProcessResponse(data=data)


@router.post(
    "/ocr-only",
    response_model=OcrOnlyResponse,
    responses={
        400: {"description": "Invalid upload, no text found, or extraction failed", "model": ErrorResponse},
    },
    summary="Extract text from an image without generating notes",
)
async def extract_text_only(
    image: UploadFile | None = File(default=None, description="Image containing text"),
    pipeline: NotePipeline = Depends(get_pipeline),
    files: FileService = Depends(get_file_service),
) -> OcrOnlyResponse:
    upload = await store_image_upload(image, files)
    data = await pipeline.extract_only(upload)
    return OcrOnlyResponse(data=data)


# ══════════════════════════════════════════════════════════════════════════
# Listing & Search
# ══════════════════════════════════════════════════════════════════════════


@router.get(
    "/history",
    response_model=HistoryResponse,
    summary="Paginated history of completed notes",
)
async def get_history(
    response: Response,
    limit: int = Query(default=10, ge=1, le=100, description="Items per page"),
    page: int = Query(default=1, ge=1, description="1-based page number"),
    tag: Optional[str] = Query(default=None, max_length=64, description="Only notes carrying exactly this tag"),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db_session),
) -> HistoryResponse:
    history = await note_store.list_history(db, owner_id, limit=limit, page=page, tag=tag)

    # Total also exposed as a header for pagination UIs
    response.headers["X-Total-Count"] = str(history.pagination.total)
    response.headers["Cache-Control"] = "no-store"
    return HistoryResponse(data=history)


@router.get(
    "/recent",
    response_model=NoteListResponse,
    summary="Most recent completed notes",
)
async def get_recent(
    response: Response,
    limit: int = Query(default=5, ge=1, le=100),
    tag: Optional[str] = Query(default=None, max_length=64, description="Only notes carrying exactly this tag"),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db_session),
) -> NoteListResponse:
    notes = await note_store.list_recent(db, owner_id, limit=limit, tag=tag)
    response.headers["Cache-Control"] = "no-store"
    return NoteListResponse(message="Recent notes retrieved successfully", data=notes)


@router.get(
    "/search",
    response_model=NoteListResponse,
    responses={400: {"description": "Empty query", "model": ErrorResponse}},
    summary="Search notes by filename, text, notes or tags",
)
async def search_notes(
    response: Response,
    q: str = Query(default="", max_length=200, description="Case-insensitive substring"),
    limit: int = Query(default=50, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db_session),
) -> NoteListResponse:
    notes = await note_store.search(db, owner_id, q, limit=limit)
    response.headers["Cache-Control"] = "no-store"
    return NoteListResponse(message=f"Found {len(notes)} matching notes", data=notes)


# ══════════════════════════════════════════════════════════════════════════
# Single Note
# ══════════════════════════════════════════════════════════════════════════


@router.get(
    "/{note_id}",
    response_model=NoteDetailResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Get a single note by ID",
)
async def get_note(
    note_id: str,
    response: Response,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db_session),
) -> NoteDetailResponse:
    note = await note_store.get_by_id(db, owner_id, note_id)
    response.headers["Cache-Control"] = "private, max-age=60"
    return NoteDetailResponse(data=NoteDetail.from_note(note))


@router.delete(
    "/{note_id}",
    response_model=DeleteResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Delete a note and its stored image",
)
async def delete_note(
    note_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: NotePipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db_session),
) -> DeleteResponse:
    await pipeline.delete_note(db, owner_id, note_id)
    return DeleteResponse()


@router.post(
    "/{note_id}/tags",
    response_model=NoteDetailResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Add tags to a note",
)
async def add_tags(
    note_id: str,
    body: TagsRequest,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db_session),
) -> NoteDetailResponse:
    note = await note_store.add_tags(db, owner_id, note_id, body.tags)
    return NoteDetailResponse(data=NoteDetail.from_note(note))


@router.delete(
    "/{note_id}/tags",
    response_model=NoteDetailResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Remove tags from a note",
)
async def remove_tags(
    note_id: str,
    body: TagsRequest,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db_session),
) -> NoteDetailResponse:
    note = await note_store.remove_tags(db, owner_id, note_id, body.tags)
    return NoteDetailResponse(data=NoteDetail.from_note(note))
