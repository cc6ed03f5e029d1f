"""
SmartNotes Backend: Rate Limiting Middleware
===============================================

What:  Per-IP sliding window rate limiter.
How:   Keeps the timestamps of each client's recent requests in memory and
       answers 429 with Retry-After once the window is full.
Who:   Outermost middleware; rejects abuse before any upload is read.

Every pipeline run costs a Tesseract run and a Gemini call, so the limit
protects both the CPU and the Gemini quota.

Algorithm: Sliding Window Log
    1. Drop the client's timestamps older than the window
    2. If the remaining count is at the limit, reject
    3. Otherwise record now and let the request through

    Single-process only: each uvicorn worker keeps its own counters.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from smartnotes.config import settings
from smartnotes.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Configuration:
        max_requests: requests allowed per window (RATE_LIMIT_REQUESTS)
        window_seconds: window length (RATE_LIMIT_WINDOW)

    Never limited: health checks, API docs, and stored image fetches.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    EXCLUDED_PREFIXES = ("/uploads/",)

    # Inactive clients are purged every this many recorded requests
    CLEANUP_INTERVAL = 1000

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        super().__init__(app)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._recorded = 0

    def _is_excluded(self, path: str) -> bool:
        return path in self.EXCLUDED_PATHS or path.startswith(self.EXCLUDED_PREFIXES)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self._is_excluded(request.url.path):
            return await call_next(request)

        # Behind a proxy this is the proxy's address
        client_ip = request.client.host if request.client else "unknown"

        now = time.time()
        window_start = now - self.window_seconds
        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(recent),
                self.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retryAfter": retry_after},
                    "requestId": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._recorded += 1
        if self._recorded % self.CLEANUP_INTERVAL == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        """Forget clients with no request inside the current window."""
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
