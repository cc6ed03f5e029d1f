"""
SmartNotes Backend: Request ID Middleware
============================================

What:  Assigns a correlation id to each request and returns it in X-Request-ID.
How:   Reuses a well-formed client-sent X-Request-ID, otherwise generates a
       short UUID; stores it in a ContextVar for loggers and error handlers.
Who:   Applied to every request via Starlette middleware.

Error payloads carry the same id as "requestId", so a user reporting a
failed upload gives support the exact log lines of their pipeline run.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client ids end up in log lines; keep them short and printable
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return str(uuid.uuid4())[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Use the client's X-Request-ID when it is short and printable
        2. Otherwise generate an 8-character id
        3. Expose it through request_id_var and request.state.request_id
        4. Echo it in the X-Request-ID response header
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client_rid = request.headers.get("X-Request-ID", "")
        rid = client_rid if _VALID_REQUEST_ID.match(client_rid) else new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)

        response.headers["X-Request-ID"] = rid
        return response
