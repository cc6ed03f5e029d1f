"""
SmartNotes Backend: FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance;
       the lifespan builds the pipeline services and tears them down.
Who:   Called by uvicorn to start the server (uvicorn smartnotes.main:app).
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────────┐ ┌──────────┐ ┌─────────┐ ┌────────────┐  │
    │  │ Rate Limit │→│  Req ID  │→│ Logging │→│ GZip, CORS │  │
    │  └────────────┘ └──────────┘ └─────────┘ └────────────┘  │
    │                                                          │
    │  Routes:                                                 │
    │  /api/notes/*   /api/upload/image   /uploads/*   /health │
    │                                                          │
    │  app.state (built in lifespan):                          │
    │  file_service, extractor, generator → pipeline           │
    │                                                          │
    │  Exception Handlers:                                     │
    │  Validation/NoText/Extraction→400  NotFound→404          │
    │  Generation→500  Storage/DB→500  anything else→500       │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (logged, never fatal)
    3. Build FileService, TextExtractor, GeminiNoteGenerator, NotePipeline

    Shutdown:
    1. Shut down the OCR worker pool
    2. Dispose database engine (close all connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from smartnotes import __version__
from smartnotes.config import settings
from smartnotes.database import dispose_engine
from smartnotes.exceptions import (
    DatabaseError,
    ExtractionFailedError,
    ExtractionTimeoutError,
    FileStorageError,
    GenerationFailedError,
    NotFoundError,
    NoTextFoundError,
    SmartNotesError,
    ValidationError,
)
from smartnotes.middleware.logging import RequestLoggingMiddleware
from smartnotes.middleware.rate_limit import RateLimitMiddleware
from smartnotes.middleware.request_id import RequestIDMiddleware, request_id_var
from smartnotes.routes import files, health, notes, upload
from smartnotes.services.file_service import FileService
from smartnotes.services.gemini_service import GeminiNoteGenerator
from smartnotes.services.note_store import note_store
from smartnotes.services.ocr_service import TextExtractor
from smartnotes.services.pipeline import NotePipeline

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    When:    Called once during app startup, before any other initialization.
    Format:  %(asctime)s [%(levelname)s] %(name)s: %(message)s to stdout.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party loggers that are chatty at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

def build_pipeline(app: FastAPI) -> NotePipeline:
    """Construct the pipeline collaborators and keep them on app.state."""
    app.state.file_service = FileService()
    app.state.extractor = TextExtractor()
    app.state.generator = GeminiNoteGenerator()
    app.state.pipeline = NotePipeline(
        extractor=app.state.extractor,
        generator=app.state.generator,
        store=note_store,
        files=app.state.file_service,
    )
    return app.state.pipeline


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: logging, configuration check, service construction.
    Shutdown: OCR worker pool, then database connections.
    """
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("SmartNotes Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # The server still starts: health checks report what is missing
        logger.error("Configuration error: %s", str(e))

    pipeline = build_pipeline(app)
    logger.info("Storage directory: %s", app.state.file_service.storage_root)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("SmartNotes Backend shutting down...")
    pipeline.extractor.shutdown()
    await dispose_engine()
    logger.info("Shutdown complete. persist_failures=%d", pipeline.persist_failures)


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Build the standard error payload: {error, message, details?, requestId}."""
    content: Dict[str, Any] = {"error": error, "message": message}
    if details:
        content["details"] = details
    content["requestId"] = request_id_var.get("")
    return JSONResponse(status_code=status_code, content=content)


def _public_details(exc: SmartNotesError) -> Dict[str, Any]:
    # Only client-meaningful context; error types and ids stay in the logs
    keys = ("stage", "field", "fields", "allowed", "max_size_mb", "timeout_seconds", "resource")
    return {k: v for k, v in exc.context.items() if k in keys}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP status codes and error codes.

    Handler hierarchy:
        ValidationError         → 400 validation_error
        NoTextFoundError        → 400 no_text_found
        ExtractionTimeoutError  → 400 extraction_timeout
        ExtractionFailedError   → 400 extraction_failed
        GenerationFailedError   → 500 generation_failed
        NotFoundError           → 404 not_found
        FileStorageError        → 500 server_error
        DatabaseError           → 500 server_error
        SmartNotesError (base)  → 500 server_error
        RequestValidationError  → 400 validation_error (bad query/form values)
        Exception (fallback)    → 500 internal_server_error

    Responses never contain stack traces, paths or SQL; those are logged.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return error_response(400, "validation_error", exc.message, _public_details(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        logger.warning("[%s] Invalid request parameters: %s", request_id_var.get(""), fields)
        return error_response(
            400,
            "validation_error",
            "Invalid request parameters.",
            {"fields": [f for f in fields if f]},
        )

    @app.exception_handler(NoTextFoundError)
    async def handle_no_text(request: Request, exc: NoTextFoundError):
        logger.info("[%s] No text found in upload", request_id_var.get(""))
        return error_response(400, "no_text_found", exc.message, _public_details(exc))

    @app.exception_handler(ExtractionTimeoutError)
    async def handle_extraction_timeout(request: Request, exc: ExtractionTimeoutError):
        logger.warning("[%s] Extraction timed out: %s", request_id_var.get(""), exc.context)
        return error_response(400, "extraction_timeout", exc.message, _public_details(exc))

    @app.exception_handler(ExtractionFailedError)
    async def handle_extraction_failed(request: Request, exc: ExtractionFailedError):
        logger.warning("[%s] Extraction failed: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return error_response(400, "extraction_failed", exc.message, _public_details(exc))

    @app.exception_handler(GenerationFailedError)
    async def handle_generation_failed(request: Request, exc: GenerationFailedError):
        logger.error("[%s] Generation failed: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return error_response(500, "generation_failed", exc.message, _public_details(exc))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(404, "not_found", exc.message)

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("[%s] File storage error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return error_response(500, "server_error", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(SmartNotesError)
    async def handle_application_error(request: Request, exc: SmartNotesError):
        logger.error("[%s] Application error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: generic 500, full traceback in the server log only."""
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests call this and inject collaborators through dependency_overrides,
    since ASGI test transports do not run the lifespan.
    """
    app = FastAPI(
        title="SmartNotes API",
        description=(
            "Upload a photo of class material: text is extracted with Tesseract OCR, "
            "turned into study notes by Google Gemini, and stored for later review."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(notes.router)
    app.include_router(upload.router)
    app.include_router(files.router)
    app.include_router(health.router)

    return app


# uvicorn imports `smartnotes.main:app`
app = create_app()
