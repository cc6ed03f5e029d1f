"""
SmartNotes Backend: Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for each failure in the pipeline.
How:   Each exception carries a user-safe message and a context dict.
       Global exception handlers (registered in main.py) map them to
       structured JSON error responses with the right HTTP status.
Who:   Raised by adapters, services and routes; caught by global handlers.

Exception Hierarchy:
    SmartNotesError (base)
    ├── ValidationError            → 400 Bad Request (bad upload, missing field)
    ├── NoTextFoundError           → 400 Bad Request (nothing legible in image)
    ├── ExtractionFailedError      → 400 Bad Request (image quality, engine error)
    │   └── ExtractionTimeoutError → 400 Bad Request (recognition took too long)
    ├── GenerationFailedError      → 500 Internal Server Error (provider side)
    ├── NotFoundError              → 404 Not Found
    ├── FileStorageError           → 500 Internal Server Error
    └── DatabaseError              → 500 Internal Server Error

    Pipeline stages tag their errors with context["stage"], one of
    upload, extraction, generation, persist.
"""

from typing import Any, Dict, List, Optional


class SmartNotesError(Exception):
    """
    Base exception for all SmartNotes application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    @property
    def stage(self) -> Optional[str]:
        """Pipeline stage that raised this error, when known."""
        return self.context.get("stage")

    def with_stage(self, stage: str) -> "SmartNotesError":
        """Tags the error with the pipeline stage it escaped from."""
        self.context.setdefault("stage", stage)
        return self


class ValidationError(SmartNotesError):
    """
    Raised when client input or a record fails validation.

    When:    Unsupported file type, size exceeded, empty upload,
             missing required note fields, invalid confidence.
    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "File type 'application/pdf' is not supported",
            "details": {"field": "image", "allowed": ["image/gif", "image/jpeg", ...]}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        fields: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        if fields:
            ctx["fields"] = list(fields)
        super().__init__(message=message, context=ctx)
        self.field = field
        self.fields = list(fields or [])


class NoTextFoundError(SmartNotesError):
    """
    Raised by the pipeline when extraction returned only whitespace.

    The OCR adapter itself never raises this: an empty page is a valid
    recognition result. The orchestrator decides it is unusable.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = (
            "Could not extract any readable text from the image. "
            "Please ensure the image contains clear, readable text."
        ),
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.setdefault("stage", "extraction")
        super().__init__(message=message, context=ctx)


class ExtractionFailedError(SmartNotesError):
    """
    Raised when the OCR engine cannot process the image.

    When:    File missing or not decodable, Tesseract missing or erroring.
    HTTP:    400 Bad Request (treated as caller-fixable: image quality)
    """

    def __init__(
        self,
        message: str = (
            "Could not extract text from the image. "
            "Please ensure the image is clear and contains readable text."
        ),
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.setdefault("stage", "extraction")
        super().__init__(message=message, context=ctx)


class ExtractionTimeoutError(ExtractionFailedError):
    """
    Raised when a single recognition call exceeds the configured bound.

    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=(
                f"Text extraction did not finish within {timeout_seconds:g} seconds. "
                "Try a smaller or clearer image."
            ),
            context=ctx,
        )
        self.timeout_seconds = timeout_seconds


class GenerationFailedError(SmartNotesError):
    """
    Raised when the generative model could not produce notes.

    Covers quota, authentication, network, blocked and malformed responses.
    The pipeline does not distinguish sub-causes beyond logging them
    (context["error_type"]).
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = (
            "Could not generate notes. "
            "Please check the AI service configuration and try again."
        ),
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.setdefault("stage", "generation")
        super().__init__(message=message, context=ctx)


class NotFoundError(SmartNotesError):
    """
    Raised when a requested resource does not exist.

    When:    GET/DELETE /api/notes/{id} for an unknown id, or one owned by
             a different owner.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(SmartNotesError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, directory not writable.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(SmartNotesError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; the original
    error type is kept in context for the server log.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
