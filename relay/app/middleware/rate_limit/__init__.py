"""Rate limiting for the relay.

Fixed-window request admission per category (general, api, webhook, mcp)
and per tool, over an in-memory or Redis counter store.
"""

from relay.app.middleware.rate_limit.backends import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from relay.app.middleware.rate_limit.engine import (
    RateLimitEngine,
    ToolCallHistory,
    build_counter_store,
)
from relay.app.middleware.rate_limit.middleware import (
    RateLimitMiddleware,
    add_rate_limit_middleware,
    get_client_id,
    get_request_client_id,
)
from relay.app.middleware.rate_limit.models import (
    API,
    CATEGORIES,
    GENERAL,
    MCP,
    TOOL,
    WEBHOOK,
    AdmissionDecision,
    CategoryLimit,
    CounterEntry,
    RateLimitConfig,
    ToolCallRecord,
)
from relay.app.middleware.rate_limit.tools import ToolRateLimitGuard

__all__ = [
    # Models
    "AdmissionDecision",
    "CategoryLimit",
    "CounterEntry",
    "RateLimitConfig",
    "ToolCallRecord",
    "CATEGORIES",
    "GENERAL",
    "API",
    "WEBHOOK",
    "MCP",
    "TOOL",
    # Backends
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    # Main classes
    "RateLimitEngine",
    "ToolCallHistory",
    "build_counter_store",
    "RateLimitMiddleware",
    "ToolRateLimitGuard",
    "add_rate_limit_middleware",
    "get_client_id",
    "get_request_client_id",
]
