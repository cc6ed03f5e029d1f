"""
SmartNotes Backend: Stored Image Route
=========================================

What:  GET /uploads/{filename} serves a stored image.
Who:   Called by <img> tags that reference a note's imageUrl.

Security:
    - Only flat names directly under STORAGE_ROOT resolve; anything that
      would escape it (../, nested paths) is rejected with 400
    - Content type is derived from the stored extension, which FileService
      chose from the decoded image format
"""

import mimetypes

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from smartnotes.dependencies import get_file_service
from smartnotes.exceptions import NotFoundError
from smartnotes.services.file_service import FileService

router = APIRouter(tags=["Files"])


@router.get(
    "/uploads/{filename:path}",
    summary="Serve an uploaded image",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Invalid file path"},
        404: {"description": "File not found"},
    },
)
async def serve_upload(
    filename: str,
    files: FileService = Depends(get_file_service),
) -> FileResponse:
    path = files.resolve(filename)
    if not path.is_file():
        raise NotFoundError(resource="file", resource_id=filename)

    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(
        path=str(path),
        media_type=media_type,
        # Stored names are unique and never rewritten
        headers={"Cache-Control": "public, max-age=86400"},
    )
