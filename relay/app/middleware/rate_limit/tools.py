"""Tool-level admission for JSON-RPC tool dispatch."""

from typing import Any, Dict, Optional

from relay.app.middleware.rate_limit.engine import RateLimitEngine
from relay.app.middleware.rate_limit.responses import build_tool_rejection_result


class ToolRateLimitGuard:
    """Second admission layer, run inside ``tools/call`` dispatch.

    Only reached after the ``mcp`` category middleware admitted the HTTP
    request, so rejected envelopes never count against a tool.
    """

    def __init__(self, engine: RateLimitEngine):
        self.engine = engine

    async def admit(self, tool_name: str, client_id: str) -> Optional[Dict[str, Any]]:
        """Count the call and return a rejection result, or None if allowed."""
        decision = await self.engine.check_and_consume_tool(tool_name, client_id)
        if decision.allowed:
            return None
        return build_tool_rejection_result(tool_name, decision)
