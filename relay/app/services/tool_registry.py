"""Registry of tools exposed over the JSON-RPC endpoint.

Each tool is a name, a JSON schema for its arguments and an async
handler. Handlers receive their arguments and a ``ToolContext`` and
return an MCP tool result (``{"content": [...], "isError": bool}``).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from relay.app.core.config import Settings
from relay.app.middleware.rate_limit.engine import RateLimitEngine


@dataclass
class ToolContext:
    """Per-call information handed to tool handlers."""
    client_id: str
    engine: RateLimitEngine
    settings: Settings
    request_id: Optional[str] = None


ToolHandler = Callable[[Dict[str, Any], ToolContext], Awaitable[Dict[str, Any]]]


@dataclass
class ToolDefinition:
    """A registered tool."""
    name: str
    description: str
    handler: ToolHandler
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_dict(self) -> Dict[str, Any]:
        """Tool listing entry for ``tools/list``."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def text_result(payload: Any, is_error: bool = False) -> Dict[str, Any]:
    """Wrap a payload as a single text content tool result."""
    text = payload if isinstance(payload, str) else json.dumps(payload, default=str, indent=2)
    result: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


class ToolRegistry:
    """Name-indexed collection of tools."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None,
    ) -> ToolDefinition:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name already exists.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        tool = ToolDefinition(name=name, description=description, handler=handler)
        if input_schema is not None:
            tool.input_schema = input_schema
        self._tools[name] = tool
        return tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_dict() for tool in self._tools.values()]
