"""Operator endpoints for inspecting and resetting rate limits."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from relay.app.api.dependencies import get_rate_limit_engine
from relay.app.exceptions import BadRequestError, ConfigurationError
from relay.app.middleware.rate_limit.engine import RateLimitEngine

router = APIRouter(prefix="/api/rate-limit", tags=["rate-limit"])


@router.get("/status")
async def rate_limit_status(
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
) -> Dict[str, Any]:
    """Current rate limiter configuration and tool statistics."""
    return engine.get_status()


@router.get("/tools/history")
async def tool_history(
    tool: Optional[str] = None,
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
) -> Dict[str, Any]:
    """Recent tool calls and their admission outcome."""
    return {"capacity": engine.history.capacity, "tools": engine.get_tool_history(tool)}


@router.delete("/clients/{client_id}")
async def reset_client(
    client_id: str,
    category: Optional[str] = None,
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
) -> Dict[str, Any]:
    """Drop a client's counters for one category, or all of them."""
    try:
        deleted = await engine.reset_client_limits(client_id, category)
    except ConfigurationError as e:
        raise BadRequestError(e.message) from e
    return {"success": True, "clientId": client_id, "category": category, "deleted": deleted}
