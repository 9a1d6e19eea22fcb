"""Services for the relay application."""

from relay.app.services.system_tools import register_system_tools
from relay.app.services.tool_registry import ToolContext, ToolDefinition, ToolRegistry
from relay.app.services.webhook_dispatcher import WebhookDispatcher

__all__ = [
    "ToolContext",
    "ToolDefinition",
    "ToolRegistry",
    "WebhookDispatcher",
    "register_system_tools",
]
