"""Request logging middleware."""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("practice.requests")

REQUEST_ID_HEADER = "X-Request-ID"
MAX_LOGGED_BODY = 500
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status and duration.

    Each request is tagged with an ``X-Request-ID`` (taken from the request
    or generated) that is echoed in the response and the log line. Error
    responses also log their body so the handler's ``detail`` shows up next
    to the request.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id

        status = response.status_code
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        prefix = f"[{request_id}] {request.method} {path} -> {status} ({duration_ms:.0f}ms)"

        if status >= 400 and hasattr(response, "body_iterator"):
            body = b""
            async for chunk in response.body_iterator:
                body += chunk.encode("utf-8") if isinstance(chunk, str) else chunk

            detail = body.decode("utf-8", errors="replace")
            if len(detail) > MAX_LOGGED_BODY:
                detail = detail[:MAX_LOGGED_BODY] + "..."
            log = logger.warning if status < 500 else logger.error
            log("%s: %s", prefix, detail)

            # The body iterator is consumed; hand the client a fresh response.
            return Response(
                content=body,
                status_code=status,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

        if request.url.path in QUIET_PATHS:
            logger.debug(prefix)
        else:
            logger.info(prefix)
        return response
