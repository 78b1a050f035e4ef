"""Request ID middleware — tag every hub log line caused by one HTTP call.

Learn: POST /api/reports/push or a notification fans out to many sockets,
and each failed send logs on its own. Binding a request id (reused from
X-Request-ID when the dashboard's proxy sets one) into structlog's
contextvars ties those lines back to the call that caused them. One
access line per call records method, status and latency.

WebSocket traffic is not HTTP and bypasses this middleware.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(HEADER) or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        logger.info(
            "livereports.http.request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

        response.headers[HEADER] = request_id
        return response
