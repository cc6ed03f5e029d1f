"""
SmartNotes Backend: Request Dependencies
==========================================

What:  FastAPI dependencies handing route handlers their collaborators.
How:   Services are built once in the lifespan (main.py) and kept on
       app.state; these functions read them back per request.
       store_image_upload() is the shared first step of every multipart route.
Who:   Used by route handlers via Depends(); tests replace them with
       app.dependency_overrides.
"""

from fastapi import Query, Request, UploadFile

from smartnotes.config import settings
from smartnotes.exceptions import ValidationError
from smartnotes.schemas.pipeline import StoredUpload
from smartnotes.services.file_service import FileService
from smartnotes.services.pipeline import NotePipeline


def get_pipeline(request: Request) -> NotePipeline:
    return request.app.state.pipeline


def get_file_service(request: Request) -> FileService:
    return request.app.state.file_service


def get_owner_id(
    user_id: str | None = Query(
        default=None,
        alias="userId",
        max_length=255,
        description="Owner of the notes; defaults to the anonymous owner",
    ),
) -> str:
    """Owner for this request. Blank or missing means DEFAULT_OWNER_ID."""
    if user_id and user_id.strip():
        return user_id.strip()
    return settings.default_owner_id


async def store_image_upload(image: UploadFile | None, files: FileService) -> StoredUpload:
    """Read, validate and store a multipart image before any processing."""
    if image is None:
        raise ValidationError(
            message="No image uploaded. Please select an image file.",
            field="image",
            context={"stage": "upload"},
        )
    content = await image.read()
    return await files.validate_and_store(
        filename=image.filename,
        content=content,
        content_type=image.content_type,
        content_length=image.size,
    )
