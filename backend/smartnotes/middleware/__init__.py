"""
SmartNotes Backend: Middleware Package
=========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    - Rate limit first: abusive clients are rejected before any work
    - Request ID next: every later log line carries the correlation id
    - Logging measures everything below it, including the pipeline run
"""
