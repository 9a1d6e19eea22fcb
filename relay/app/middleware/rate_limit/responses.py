"""Translate admission decisions into HTTP and JSON-RPC responses."""

from typing import Any, Dict, MutableMapping

from fastapi.responses import JSONResponse

from relay.app.middleware.rate_limit.models import AdmissionDecision

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"
WINDOW_HEADER = "X-RateLimit-Window"
RETRY_AFTER_HEADER = "Retry-After"

RATE_LIMIT_HEADERS = (LIMIT_HEADER, REMAINING_HEADER, RESET_HEADER, WINDOW_HEADER)


def build_rate_limit_headers(decision: AdmissionDecision) -> Dict[str, str]:
    """Standard X-RateLimit-* headers for a decision."""
    return {
        LIMIT_HEADER: str(decision.limit),
        REMAINING_HEADER: str(decision.remaining),
        RESET_HEADER: str(decision.reset_at_seconds),
        WINDOW_HEADER: str(decision.window_ms),
    }


def apply_rate_limit_headers(
    headers: MutableMapping[str, str],
    decision: AdmissionDecision,
    overwrite: bool = True,
) -> None:
    """Set rate limit headers on a response.

    With ``overwrite=False`` headers already set by an inner limiter win.
    """
    if not overwrite and LIMIT_HEADER in headers:
        return
    for name, value in build_rate_limit_headers(decision).items():
        headers[name] = value


def build_rejection_body(decision: AdmissionDecision, message: str) -> Dict[str, Any]:
    """JSON body for a 429 response."""
    return {
        "success": False,
        "error": "Rate limit exceeded",
        "message": message,
        "rateLimitInfo": {
            "limit": decision.limit,
            "remaining": 0,
            "resetTime": decision.reset_at_seconds,
            "retryAfter": decision.retry_after,
        },
    }


def build_rejection_response(
    decision: AdmissionDecision,
    message: str,
    include_headers: bool = True,
) -> JSONResponse:
    """429 response for a rejected HTTP request."""
    headers = {RETRY_AFTER_HEADER: str(decision.retry_after)}
    if include_headers:
        headers.update(build_rate_limit_headers(decision))
    return JSONResponse(
        status_code=429,
        content=build_rejection_body(decision, message),
        headers=headers,
    )


def build_tool_rejection_result(tool_name: str, decision: AdmissionDecision) -> Dict[str, Any]:
    """Tool result signalling a tool-level rate limit rejection."""
    return {
        "content": [
            {
                "type": "text",
                "text": (
                    f'Rate limit exceeded for tool "{tool_name}". '
                    f"Please try again in {decision.retry_after} seconds."
                ),
            }
        ],
        "isError": True,
    }
