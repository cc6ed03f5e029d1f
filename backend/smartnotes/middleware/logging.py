"""
SmartNotes Backend: Request Logging Middleware
=================================================

What:  One access log line per HTTP request, with status and duration.
How:   Times the downstream call and logs method, path, status, duration,
       client address and request id, both in the message and as
       structured `extra` fields.
Who:   Applied to every request via Starlette middleware.

Typical durations:
    - GET /api/notes/recent: 5-50ms (one indexed query)
    - POST /api/notes/ocr-only: 1-10s (Tesseract, up to two passes)
    - POST /api/notes/process: 3-30s (OCR plus Gemini generation)

Request bodies (images, extracted text) are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from smartnotes.middleware.request_id import request_id_var

logger = logging.getLogger("smartnotes.access")

# Probes and image fetches would drown out the API traffic
_QUIET_PATHS = ("/health",)
_QUIET_PREFIXES = ("/uploads/",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request at a level matching its outcome:
    5xx → ERROR, 4xx → WARNING, everything else → INFO.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in _QUIET_PATHS or path.startswith(_QUIET_PREFIXES):
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
