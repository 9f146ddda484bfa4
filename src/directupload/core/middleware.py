"""Middleware for HTTP error logging."""

import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from directupload.core.logging import upload_session_context

logger = logging.getLogger(__name__)


async def _session_id_of(request: Request) -> Optional[str]:
    """Find the upload session a request refers to, if any."""
    session_id = request.query_params.get("session_id")
    if session_id:
        return session_id

    # Only the small JSON bodies of the upload API; part bodies are never parsed
    if request.method != "POST" or not request.headers.get("content-type", "").startswith(
        "application/json"
    ):
        return None
    try:
        body = await request.json()
    except ValueError:
        # Malformed JSON is reported by request validation
        return None
    if isinstance(body, dict) and body.get("session_id"):
        return str(body["session_id"])
    return None


class HTTPErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Log every error response with the session it concerns.

    4xx responses are logged at WARNING, 5xx at ERROR.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        session_id = await _session_id_of(request)
        if session_id:
            upload_session_context.set(session_id)

        response = await call_next(request)

        status = response.status_code
        if status < 400:
            return response

        logger.log(
            logging.ERROR if status >= 500 else logging.WARNING,
            "Server error response" if status >= 500 else "Client error response",
            extra={
                "http_status": status,
                "method": request.method,
                "path": request.url.path,
                "session_id": session_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response
