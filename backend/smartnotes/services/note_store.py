"""
SmartNotes Backend: Note Persistence Service
===============================================

What:  Stores processed notes and serves every read and mutation on them.
How:   Stateless service over an AsyncSession; every call names the owner
       explicitly, and every write commits (or rolls back) on its own.
Who:   Called by NotePipeline (create, delete) and the notes routes
       (reads, search, tag mutation).
When:  After a successful extraction + generation pair, and on user requests.

Ownership:
    Every query is scoped by owner_id. A note owned by someone else is
    indistinguishable from a missing one (NotFoundError, 404).

Error Handling Strategy:
    - Missing/invalid fields on create → ValidationError listing every field
    - SQLAlchemy or connection failures → rollback, then DatabaseError (generic message)
    - Unknown or foreign ids → NotFoundError
"""

import logging
import math
import uuid
from typing import Callable, Iterable, List, Optional, Union

from sqlalchemy import desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.exceptions import DatabaseError, NotFoundError, ValidationError
from smartnotes.models.note import (
    FAILURE_STAGES,
    NOTE_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    Note,
    utcnow,
)
from smartnotes.schemas.note import HistoryPage, NoteCreate, NotePreview, Pagination

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_SEARCH_LIMIT = 50

NoteId = Union[str, uuid.UUID]

# asyncpg raises plain OSError when the server cannot be reached
_DB_ERRORS = (SQLAlchemyError, OSError)

_REQUIRED_TEXT_FIELDS = (
    "original_filename",
    "stored_filename",
    "image_path",
    "image_url",
    "mime_type",
)


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """
    Trim and lowercase tags, drop empty ones, and remove duplicates.

    First occurrence wins, so ["Math", " math ", "MATH"] → ["math"].
    """
    normalized: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = tag.strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _tag_exists(db: AsyncSession, predicate):
    """
    EXISTS clause that is true when any single tag of the note satisfies
    predicate. Tags are matched one element at a time, never as JSON text.
    """
    if db.get_bind().dialect.name == "postgresql":
        elements = func.jsonb_array_elements_text(Note.tags).table_valued("value")
    else:
        elements = func.json_each(Note.tags).table_valued("value")
    return select(elements.c.value).where(predicate(elements.c.value)).correlate(Note).exists()


def _parse_note_id(note_id: NoteId) -> uuid.UUID:
    if isinstance(note_id, uuid.UUID):
        return note_id
    try:
        return uuid.UUID(str(note_id))
    except ValueError:
        # Malformed ids can never exist; same answer as an unknown id
        raise NotFoundError(resource="note", resource_id=str(note_id))


class NoteStore:
    """
    Persistence operations for Note records.

    Responsibilities:
        - create():        validated insert, all-or-nothing
        - get_by_id():     single record, owner-scoped
        - list_recent():   newest completed notes as previews, optional tag filter
        - list_history():  offset-paginated previews with totals
        - search():        case-insensitive substring search
        - delete():        remove the record (files are the caller's job)
        - add_tags() / remove_tags(): normalized tag mutation
    """

    # ── Validation ────────────────────────────────────────────────────────

    def _validate(self, owner_id: str, data: NoteCreate) -> None:
        """Collect every invalid field and raise once."""
        invalid: List[str] = []

        if not owner_id or not owner_id.strip():
            invalid.append("owner_id")
        for field in _REQUIRED_TEXT_FIELDS:
            if not (getattr(data, field) or "").strip():
                invalid.append(field)
        if data.file_size is None or data.file_size < 0:
            invalid.append("file_size")
        if data.status not in NOTE_STATUSES:
            invalid.append("status")
        if data.status == STATUS_COMPLETED:
            if not data.extracted_text.strip():
                invalid.append("extracted_text")
            if not data.generated_notes.strip():
                invalid.append("generated_notes")
        if data.ocr_confidence is not None and not 0 <= data.ocr_confidence <= 100:
            invalid.append("ocr_confidence")
        if data.failure_stage is not None and data.failure_stage not in FAILURE_STAGES:
            invalid.append("failure_stage")

        if invalid:
            raise ValidationError(
                message=f"Note is missing or has invalid fields: {', '.join(invalid)}",
                fields=invalid,
            )

    # ── Write Operations ──────────────────────────────────────────────────

    async def create(self, db: AsyncSession, owner_id: str, data: NoteCreate) -> Note:
        """
        Validate and insert a new note, then commit.

        Returns:
            The stored Note with id and timestamps assigned.
        Raises:
            ValidationError: one or more fields missing or out of range.
            DatabaseError:   the insert or commit failed (rolled back).
        """
        self._validate(owner_id, data)

        now = utcnow()
        note = Note(
            id=uuid.uuid4(),
            owner_id=owner_id,
            original_filename=data.original_filename,
            stored_filename=data.stored_filename,
            image_path=data.image_path,
            image_url=data.image_url,
            extracted_text=data.extracted_text,
            ocr_confidence=data.ocr_confidence,
            generated_notes=data.generated_notes,
            file_size=data.file_size,
            mime_type=data.mime_type,
            ocr_metadata=dict(data.ocr_metadata),
            ai_metadata=dict(data.ai_metadata),
            processing_options=dict(data.processing_options),
            tags=normalize_tags(data.tags),
            status=data.status,
            failure_message=data.failure_message,
            failure_stage=data.failure_stage,
            failed_at=now if data.status == STATUS_FAILED else None,
            created_at=now,
            updated_at=now,
        )

        try:
            db.add(note)
            await db.commit()
        except _DB_ERRORS as e:
            await db.rollback()
            logger.error("Failed to insert note: %s", str(e))
            raise DatabaseError(
                message="Could not save the note. Please try again.",
                context={"error_type": type(e).__name__},
            )

        logger.info("Note %s stored for owner=%s", note.id, owner_id)
        return note

    async def delete(self, db: AsyncSession, owner_id: str, note_id: NoteId) -> Note:
        """
        Remove a note and return the deleted record.

        The stored image is left untouched; NotePipeline.delete_note()
        removes it after the record is gone.
        """
        note = await self.get_by_id(db, owner_id, note_id)
        try:
            await db.delete(note)
            await db.commit()
        except _DB_ERRORS as e:
            await db.rollback()
            logger.error("Failed to delete note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not delete the note. Please try again.",
                context={"note_id": str(note_id), "error_type": type(e).__name__},
            )

        logger.info("Note %s deleted for owner=%s", note.id, owner_id)
        return note

    async def _mutate_tags(
        self,
        db: AsyncSession,
        owner_id: str,
        note_id: NoteId,
        mutate: Callable[[List[str]], List[str]],
    ) -> Note:
        note = await self.get_by_id(db, owner_id, note_id)

        # Always assign a new list: in-place edits on a JSON column are not tracked
        note.tags = normalize_tags(mutate(list(note.tags or [])))
        note.updated_at = utcnow()

        try:
            await db.commit()
        except _DB_ERRORS as e:
            await db.rollback()
            logger.error("Failed to update tags on note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not update tags. Please try again.",
                context={"note_id": str(note_id), "error_type": type(e).__name__},
            )
        return note

    async def add_tags(
        self, db: AsyncSession, owner_id: str, note_id: NoteId, tags: Iterable[str]
    ) -> Note:
        """Add normalized tags to a note; existing tags are kept once."""
        new_tags = normalize_tags(tags)
        return await self._mutate_tags(db, owner_id, note_id, lambda current: current + new_tags)

    async def remove_tags(
        self, db: AsyncSession, owner_id: str, note_id: NoteId, tags: Iterable[str]
    ) -> Note:
        """Remove tags from a note, matched after normalization."""
        doomed = set(normalize_tags(tags))
        return await self._mutate_tags(
            db,
            owner_id,
            note_id,
            lambda current: [t for t in normalize_tags(current) if t not in doomed],
        )

    # ── Read Operations ───────────────────────────────────────────────────

    async def get_by_id(self, db: AsyncSession, owner_id: str, note_id: NoteId) -> Note:
        """
        Fetch one note owned by owner_id.

        Raises:
            NotFoundError: unknown id, malformed id, or another owner's note.
            DatabaseError: query failed.
        """
        parsed_id = _parse_note_id(note_id)
        try:
            result = await db.execute(
                select(Note).where(Note.id == parsed_id, Note.owner_id == owner_id)
            )
            note = result.scalar_one_or_none()
        except _DB_ERRORS as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            )

        if note is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        return note

    def _list_scope(self, db: AsyncSession, owner_id: str, tag: Optional[str]) -> list:
        """Filters shared by the list endpoints; tag is an exact, normalized match."""
        scope = [Note.owner_id == owner_id, Note.status == STATUS_COMPLETED]
        if tag is not None:
            wanted = tag.strip().lower()
            if not wanted:
                raise ValidationError(message="Tag filter must not be empty", field="tag")
            scope.append(_tag_exists(db, lambda value: value == wanted))
        return scope

    async def list_recent(
        self, db: AsyncSession, owner_id: str, limit: int = 5, tag: Optional[str] = None
    ) -> List[NotePreview]:
        """Newest completed notes for owner_id, as previews, optionally with one tag."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = (
            select(Note)
            .where(*self._list_scope(db, owner_id, tag))
            .order_by(desc(Note.created_at))
            .limit(limit)
        )
        notes = await self._fetch(db, query, "recent notes")
        return [NotePreview.from_note(note) for note in notes]

    async def list_history(
        self,
        db: AsyncSession,
        owner_id: str,
        limit: int = 10,
        page: int = 1,
        tag: Optional[str] = None,
    ) -> HistoryPage:
        """
        One page of completed notes, newest first, with pagination totals.

        Pages are 1-based; a page past the end returns an empty list with
        correct totals. With tag set, only notes carrying exactly that tag
        are listed and counted.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)
        scope = self._list_scope(db, owner_id, tag)

        query = (
            select(Note)
            .where(*scope)
            .order_by(desc(Note.created_at))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        notes = await self._fetch(db, query, "note history")

        try:
            total = (await db.execute(select(func.count(Note.id)).where(*scope))).scalar() or 0
        except _DB_ERRORS as e:
            logger.error("Database error counting notes: %s", str(e))
            raise DatabaseError(
                message="Could not retrieve notes. Please try again.",
                context={"error_type": type(e).__name__},
            )

        return HistoryPage(
            notes=[NotePreview.from_note(note) for note in notes],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit),
            ),
        )

    async def search(
        self,
        db: AsyncSession,
        owner_id: str,
        query_text: str,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[NotePreview]:
        """
        Case-insensitive substring search over filename, extracted text,
        generated notes and tags. Newest first.
        """
        term = (query_text or "").strip()
        if not term:
            raise ValidationError(message="Search query must not be empty", field="q")

        pattern = f"%{_escape_like(term)}%"
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = (
            select(Note)
            .where(
                Note.owner_id == owner_id,
                Note.status == STATUS_COMPLETED,
                or_(
                    Note.original_filename.ilike(pattern, escape="\\"),
                    Note.extracted_text.ilike(pattern, escape="\\"),
                    Note.generated_notes.ilike(pattern, escape="\\"),
                    _tag_exists(db, lambda tag: tag.ilike(pattern, escape="\\")),
                ),
            )
            .order_by(desc(Note.created_at))
            .limit(limit)
        )
        notes = await self._fetch(db, query, "search results")
        logger.debug("Search '%s' for owner=%s matched %d notes", term, owner_id, len(notes))
        return [NotePreview.from_note(note) for note in notes]

    async def _fetch(self, db: AsyncSession, query, what: str) -> List[Note]:
        try:
            result = await db.execute(query)
            return list(result.scalars().all())
        except _DB_ERRORS as e:
            logger.error("Database error listing %s: %s", what, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve notes. Please try again.",
                context={"error_type": type(e).__name__},
            )


# ── Singleton Instance ────────────────────────────────────────────────────
# NoteStore is stateless; sessions and owners are passed per call
note_store = NoteStore()
