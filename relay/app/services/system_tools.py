"""System administration and diagnostics tools."""

import platform
import time
from typing import Any, Dict

from relay.app.core.logging import get_logger
from relay.app.services.tool_registry import ToolContext, ToolRegistry, text_result

logger = get_logger(__name__)

_started_at = time.time()


async def get_status(arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """Service and rate limiter status."""
    status: Dict[str, Any] = {
        "service": context.settings.app_name,
        "uptime_seconds": round(time.time() - _started_at, 1),
        "python": platform.python_version(),
    }
    if arguments.get("includeRateLimits", True):
        status["rate_limiter"] = context.engine.get_status()
    return text_result(status)


async def health_check(arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """Check the counter store is reachable."""
    store = context.engine.store
    reachable = await store.ping()
    return text_result({
        "status": "ok" if reachable else "degraded",
        "checks": {"rate_limit_storage": {"type": store.storage_type, "reachable": reachable}},
    })


async def rate_limit_history(arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """Recent calls for one tool (or all tools)."""
    tool_name = arguments.get("toolName")
    limit = arguments.get("limit")
    history = context.engine.get_tool_history(tool_name)
    if isinstance(limit, int) and limit > 0:
        history = {name: calls[-limit:] for name, calls in history.items()}
    return text_result({"capacity": context.engine.history.capacity, "tools": history})


async def reset_client_limits(arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """Drop the rate limit counters of a client."""
    client_id = arguments.get("clientId")
    if not isinstance(client_id, str) or not client_id:
        return text_result("clientId is required", is_error=True)
    category = arguments.get("category")
    deleted = await context.engine.reset_client_limits(client_id, category)
    logger.info(
        f"Client rate limits reset via tool call: {deleted} counters",
        extra={"client_id": client_id, "category": category, "requested_by": context.client_id},
    )
    return text_result({"clientId": client_id, "category": category, "deleted": deleted})


def register_system_tools(registry: ToolRegistry) -> None:
    """Register the built-in system tools."""
    registry.register(
        "system_get_status",
        get_status,
        description="System Status",
        input_schema={
            "type": "object",
            "properties": {
                "includeRateLimits": {
                    "type": "boolean",
                    "default": True,
                    "description": "Include rate limiter configuration and tool statistics",
                },
            },
            "required": [],
        },
    )
    registry.register("system_health_check", health_check, description="System Health Check")
    registry.register(
        "system_rate_limit_history",
        rate_limit_history,
        description="Recent tool calls and their admission outcome",
        input_schema={
            "type": "object",
            "properties": {
                "toolName": {"type": "string", "description": "Only this tool"},
                "limit": {"type": "integer", "minimum": 1, "description": "Most recent N calls"},
            },
            "required": [],
        },
    )
    registry.register(
        "system_reset_client_limits",
        reset_client_limits,
        description="Reset rate limit counters for a client",
        input_schema={
            "type": "object",
            "properties": {
                "clientId": {"type": "string"},
                "category": {"type": "string"},
            },
            "required": ["clientId"],
        },
    )
