"""Request ID middleware.

Tags every request with an ID (taken from the caller or generated) so log
lines and responses, including 429 rejections, can be correlated.
"""

import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from relay.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to the request state and the response.

    A caller-supplied ``X-Request-ID`` is reused when it is non-empty and
    at most ``MAX_REQUEST_ID_LENGTH`` characters; otherwise a UUID4 is
    generated. Each completed request is logged at debug level.
    """

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self.header_name, "").strip()
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[self.header_name] = request_id

        logger.debug(
            "Request completed",
            extra=get_log_context(
                request_id=request_id,
                path=request.url.path,
                method=request.method,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            ),
        )
        return response


def get_request_id(request: Request) -> str:
    """Request ID assigned by ``RequestIdMiddleware``, or ``"unknown"``."""
    return getattr(request.state, "request_id", "unknown")
