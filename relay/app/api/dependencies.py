"""FastAPI dependencies resolving per-app components from app.state."""

from fastapi import Request

from relay.app.middleware.rate_limit.engine import RateLimitEngine
from relay.app.services.tool_registry import ToolRegistry
from relay.app.services.webhook_dispatcher import WebhookDispatcher


def get_rate_limit_engine(request: Request) -> RateLimitEngine:
    return request.app.state.rate_limiter


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher
