"""API endpoints package for the relay."""

from relay.app.api.mcp import router as mcp_router
from relay.app.api.rate_limit_admin import router as rate_limit_admin_router
from relay.app.api.webhooks import router as webhooks_router

__all__ = [
    "mcp_router",
    "rate_limit_admin_router",
    "webhooks_router",
]
