"""Middleware package for the relay."""

from relay.app.middleware.rate_limit import RateLimitMiddleware, add_rate_limit_middleware
from relay.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RateLimitMiddleware",
    "add_rate_limit_middleware",
    "RequestIdMiddleware",
    "get_request_id",
]
