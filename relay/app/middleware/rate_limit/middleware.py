"""HTTP admission middleware.

One middleware class serves every HTTP surface; instances differ by
category and by the path prefix they guard (all routes, webhook routes,
the JSON-RPC endpoint, the operator API).
"""

from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from relay.app.core.logging import get_log_context, get_logger
from relay.app.middleware.rate_limit.engine import RateLimitEngine
from relay.app.middleware.rate_limit.models import API, GENERAL, MCP, WEBHOOK
from relay.app.middleware.rate_limit.responses import (
    apply_rate_limit_headers,
    build_rejection_response,
)

logger = get_logger(__name__)

FORWARDED_FOR_HEADER = "X-Forwarded-For"


def get_client_id(request: Request, trust_proxy: bool = False) -> str:
    """Derive the rate limit client identity for a request.

    Uses the left-most X-Forwarded-For address when the proxy is trusted,
    otherwise the transport peer address.
    """
    if trust_proxy:
        forwarded = request.headers.get(FORWARDED_FOR_HEADER)
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
            if client_ip:
                return client_ip
    return request.client.host if request.client else "unknown"


def get_request_client_id(request: Request) -> str:
    """Client identity resolved by the outermost rate limit middleware."""
    return getattr(request.state, "rate_limit_client_id", None) or get_client_id(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce a category's rate limit on requests.

    When ``skip_successful`` or ``skip_failed`` is active the request is
    only peeked before the handler runs and counted afterwards, once its
    status is known. Concurrent requests can all pass the same peek, so
    the limit is approximate in that mode.
    """

    def __init__(
        self,
        app,
        engine: RateLimitEngine,
        category: str = GENERAL,
        path_prefix: Optional[str] = None,
        key_generator: Optional[Callable[[Request], str]] = None,
        skip: Optional[Callable[[Request], bool]] = None,
        message: Optional[str] = None,
        include_headers: Optional[bool] = None,
        skip_successful: Optional[bool] = None,
        skip_failed: Optional[bool] = None,
        overwrite_headers: bool = True,
    ):
        super().__init__(app)
        config = engine.config
        # Fail at startup rather than on the first request
        config.limits_for(category)

        self.engine = engine
        self.category = category
        self.path_prefix = path_prefix.rstrip("/") if path_prefix else None
        self.key_generator = key_generator or (
            lambda request: get_client_id(request, config.trust_proxy)
        )
        self.skip = skip
        self.message = message or config.message
        self.include_headers = config.include_headers if include_headers is None else include_headers
        self.skip_successful = config.skip_successful if skip_successful is None else skip_successful
        self.skip_failed = config.skip_failed if skip_failed is None else skip_failed
        self.overwrite_headers = overwrite_headers

    def _applies_to(self, request: Request) -> bool:
        if self.path_prefix is None:
            return True
        path = request.url.path
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not self._applies_to(request) or (self.skip is not None and self.skip(request)):
            return await call_next(request)

        client_id = self.key_generator(request)
        request.state.rate_limit_client_id = client_id

        deferred = self.skip_successful or self.skip_failed
        if deferred:
            decision = await self.engine.peek(self.category, client_id)
        else:
            decision = await self.engine.check_and_consume(self.category, client_id)

        if not decision.allowed:
            logger.info(
                "Request rejected by rate limiter",
                extra=get_log_context(
                    category=self.category,
                    client_id=client_id,
                    path=request.url.path,
                    method=request.method,
                ),
            )
            return build_rejection_response(decision, self.message, self.include_headers)

        response = await call_next(request)

        if deferred and not self._is_skipped(response.status_code):
            decision = await self.engine.check_and_consume(self.category, client_id)

        if self.include_headers:
            apply_rate_limit_headers(response.headers, decision, overwrite=self.overwrite_headers)
        return response

    def _is_skipped(self, status_code: int) -> bool:
        failed = status_code >= 400
        return (self.skip_successful and not failed) or (self.skip_failed and failed)


def add_rate_limit_middleware(
    app: FastAPI,
    engine: RateLimitEngine,
    webhook_prefix: str = "/webhook",
    mcp_prefix: str = "/mcp",
    api_prefix: str = "/api",
) -> None:
    """Install the general, api, webhook and mcp limiters on an app.

    The general limiter is added last so it runs first; route-specific
    limiters only see requests it admitted and their headers take
    precedence on the response.
    """
    app.add_middleware(RateLimitMiddleware, engine=engine, category=API, path_prefix=api_prefix)
    app.add_middleware(RateLimitMiddleware, engine=engine, category=WEBHOOK, path_prefix=webhook_prefix)
    app.add_middleware(RateLimitMiddleware, engine=engine, category=MCP, path_prefix=mcp_prefix)
    app.add_middleware(
        RateLimitMiddleware,
        engine=engine,
        category=GENERAL,
        overwrite_headers=False,
    )
