"""JSON-RPC 2.0 tool dispatch endpoint.

Implements the subset of the MCP protocol the relay serves: ``initialize``,
``ping``, ``tools/list`` and ``tools/call``. Every ``tools/call`` passes a
per-tool rate limit check before the tool body runs; a rejection is
returned as a tool result with ``isError`` set, not as an HTTP error.
"""

from typing import Any, Dict, Literal, Optional, Union

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from relay import __version__
from relay.app.api.dependencies import get_rate_limit_engine, get_tool_registry
from relay.app.core.logging import get_log_context, get_logger
from relay.app.middleware.rate_limit.engine import RateLimitEngine
from relay.app.middleware.rate_limit.middleware import get_request_client_id
from relay.app.middleware.rate_limit.tools import ToolRateLimitGuard
from relay.app.middleware.request_id import get_request_id
from relay.app.services.tool_registry import ToolContext, ToolRegistry, text_result

logger = get_logger(__name__)
router = APIRouter(tags=["mcp"])

PROTOCOL_VERSION = "2025-03-26"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


class JSONRPCRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"]
    id: Optional[Union[str, int]] = None
    method: str
    params: Optional[Dict[str, Any]] = None


class JSONRPCError(Exception):
    """Protocol-level error returned in the ``error`` member."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def _rpc_response(request_id: Any, result: Dict[str, Any]) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": request_id, "result": result})


def _rpc_error(request_id: Any, code: int, message: str) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
    )


async def _call_tool(
    params: Dict[str, Any],
    request: Request,
    registry: ToolRegistry,
    engine: RateLimitEngine,
) -> Dict[str, Any]:
    name = params.get("name")
    if not isinstance(name, str) or not name:
        raise JSONRPCError(INVALID_PARAMS, "Missing tool name")
    arguments = params.get("arguments") or {}
    if not isinstance(arguments, dict):
        raise JSONRPCError(INVALID_PARAMS, "Tool arguments must be an object")

    tool = registry.get(name)
    if tool is None:
        return text_result(f"Unknown tool: {name}", is_error=True)

    client_id = get_request_client_id(request)
    rejection = await ToolRateLimitGuard(engine).admit(name, client_id)
    if rejection is not None:
        return rejection

    context = ToolContext(
        client_id=client_id,
        engine=engine,
        settings=request.app.state.settings,
        request_id=get_request_id(request),
    )
    try:
        return await tool.handler(arguments, context)
    except Exception as e:
        logger.exception(
            f"Tool '{name}' failed: {e}",
            extra=get_log_context(request_id=context.request_id, tool_name=name, client_id=client_id),
        )
        return text_result(f"Error executing tool {name}: {e}", is_error=True)


async def _dispatch(
    rpc: JSONRPCRequest,
    request: Request,
    registry: ToolRegistry,
    engine: RateLimitEngine,
) -> Dict[str, Any]:
    if rpc.method == "initialize":
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": request.app.state.settings.app_name, "version": __version__},
        }
    if rpc.method == "ping":
        return {}
    if rpc.method == "tools/list":
        return {"tools": registry.list_tools()}
    if rpc.method == "tools/call":
        return await _call_tool(rpc.params or {}, request, registry, engine)
    raise JSONRPCError(METHOD_NOT_FOUND, f"Method not found: {rpc.method}")


@router.post("/mcp")
async def handle_mcp(
    request: Request,
    registry: ToolRegistry = Depends(get_tool_registry),
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
) -> Response:
    """Handle one JSON-RPC message."""
    try:
        body = await request.json()
    except ValueError:
        return _rpc_error(None, PARSE_ERROR, "Parse error")

    request_id = body.get("id") if isinstance(body, dict) else None
    try:
        rpc = JSONRPCRequest.model_validate(body)
    except ValidationError:
        return _rpc_error(request_id, INVALID_REQUEST, "Invalid Request")

    is_notification = "id" not in body
    try:
        result = await _dispatch(rpc, request, registry, engine)
    except JSONRPCError as e:
        if is_notification:
            return Response(status_code=202)
        return _rpc_error(rpc.id, e.code, e.message)

    if is_notification:
        return Response(status_code=202)
    return _rpc_response(rpc.id, result)
