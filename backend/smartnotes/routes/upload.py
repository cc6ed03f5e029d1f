"""
SmartNotes Backend: Upload Route Handler
===========================================

What:  POST /api/upload/image stores an image without processing it.
How:   Same validation as the pipeline endpoints (type, size, decodable
       header), then returns the stored file descriptor.
Who:   Called by clients that upload first and process later.
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from smartnotes.dependencies import get_file_service, store_image_upload
from smartnotes.schemas.note import ErrorResponse, UploadedFileInfo, UploadResponse
from smartnotes.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["Upload"])


@router.post(
    "/image",
    response_model=UploadResponse,
    responses={400: {"description": "Invalid file type or size", "model": ErrorResponse}},
    summary="Upload an image",
    description="Upload a JPEG, PNG, GIF or WebP image (max 10MB) and get its public URL.",
)
async def upload_image(
    image: UploadFile | None = File(default=None),
    files: FileService = Depends(get_file_service),
) -> UploadResponse:
    upload = await store_image_upload(image, files)
    logger.info("Image uploaded: %s (%d bytes)", upload.filename, upload.size)

    return UploadResponse(
        file=UploadedFileInfo(
            filename=upload.filename,
            original_name=upload.original_name,
            mime_type=upload.mime_type,
            size=upload.size,
            url=upload.url,
        ),
    )
