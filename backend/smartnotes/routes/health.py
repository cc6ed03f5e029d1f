"""
SmartNotes Backend: Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database, the Tesseract binary and the Gemini API, and
       reports how many pipeline runs could not store their note.
Who:   Called by Docker health checks, load balancers, and monitoring systems.

Status levels:
    - healthy:   all dependencies operational (HTTP 200)
    - degraded:  OCR or Gemini unavailable (HTTP 200, flag for monitoring)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes import __version__
from smartnotes.database import get_db_session
from smartnotes.dependencies import get_pipeline
from smartnotes.schemas.note import HealthResponse
from smartnotes.services.pipeline import NotePipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Service start time for uptime reporting
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the health status of the backend service and its dependencies "
        "(database, Tesseract OCR, Google Gemini)."
    ),
)
async def health_check(
    response: Response,
    pipeline: NotePipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db_session),
) -> HealthResponse:
    db_status = "connected"
    ocr_status = "available"
    gemini_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check OCR Engine ──────────────────────────────────────────────────
    if not await pipeline.extractor.health_check():
        ocr_status = "unavailable"
        overall = "degraded" if overall != "unhealthy" else overall

    # ── Check Gemini API ──────────────────────────────────────────────────
    if not await pipeline.generator.health_check():
        gemini_status = "unavailable"
        overall = "degraded" if overall != "unhealthy" else overall

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        ocr=ocr_status,
        gemini=gemini_status,
        persist_failures=pipeline.persist_failures,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
