"""Rate limiting data models.

This module contains dataclasses for rate limit configuration, counter
state and admission decisions.
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from relay.app.exceptions import ConfigurationError

GENERAL = "general"
API = "api"
WEBHOOK = "webhook"
MCP = "mcp"
TOOL = "tool"

CATEGORIES = (GENERAL, API, WEBHOOK, MCP, TOOL)


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CategoryLimit:
    """Fixed-window policy for one category."""
    window_ms: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitConfig:
    """Resolved, immutable rate limit configuration.

    Attributes:
        categories: Window/limit pair per category name.
        enabled: Global switch; when False every check admits without
            touching storage.
        use_redis: Count in the shared Redis store instead of in-process.
        redis_url: Connection URL for the shared store.
        redis_timeout_ms: Upper bound for a single shared-store call.
        skip_successful: Don't count requests that end with status < 400.
        skip_failed: Don't count requests that end with status >= 400.
        include_headers: Attach X-RateLimit-* headers to responses.
        trust_proxy: Derive client identity from X-Forwarded-For.
        message: Human-readable message for 429 bodies.
        fail_closed: Reject instead of admit when the store fails.
        tool_history_size: Ring buffer capacity per tool.
    """
    categories: Mapping[str, CategoryLimit]
    enabled: bool = True
    use_redis: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_ms: int = 100
    skip_successful: bool = False
    skip_failed: bool = False
    include_headers: bool = True
    trust_proxy: bool = False
    message: str = "Too many requests, please try again later."
    fail_closed: bool = False
    tool_history_size: int = 100

    def __post_init__(self) -> None:
        # Freeze the mapping so the config can be shared across requests
        object.__setattr__(self, "categories", MappingProxyType(dict(self.categories)))

    def limits_for(self, category: str) -> CategoryLimit:
        """Return the window/limit pair for a category.

        Raises:
            ConfigurationError: If the category is not configured.
        """
        try:
            return self.categories[category]
        except KeyError:
            raise ConfigurationError(
                f"No rate limit configured for category '{category}'"
            ) from None

    def validate(self) -> None:
        """Check every required category has a positive window and limit.

        Raises:
            ConfigurationError: On the first missing or invalid category.
        """
        for category in CATEGORIES:
            limits = self.limits_for(category)
            if limits.window_ms < 1 or limits.max_requests < 1:
                raise ConfigurationError(
                    f"Rate limit category '{category}' needs a positive window "
                    f"and limit (got window_ms={limits.window_ms}, "
                    f"max_requests={limits.max_requests})"
                )

    @classmethod
    def from_settings(cls, settings) -> "RateLimitConfig":
        """Build the config from application settings."""
        return cls(
            categories={
                GENERAL: CategoryLimit(settings.rate_limit_window_ms, settings.rate_limit_max_requests),
                API: CategoryLimit(settings.rate_limit_api_window_ms, settings.rate_limit_api_max_requests),
                WEBHOOK: CategoryLimit(settings.rate_limit_webhook_window_ms, settings.rate_limit_webhook_max_requests),
                MCP: CategoryLimit(settings.rate_limit_mcp_window_ms, settings.rate_limit_mcp_max_requests),
                TOOL: CategoryLimit(settings.rate_limit_tool_window_ms, settings.rate_limit_tool_max_requests),
            },
            enabled=settings.rate_limit_enabled,
            use_redis=settings.rate_limit_use_redis,
            redis_url=settings.rate_limit_redis_url,
            redis_timeout_ms=settings.rate_limit_redis_timeout_ms,
            skip_successful=settings.rate_limit_skip_successful,
            skip_failed=settings.rate_limit_skip_failed,
            include_headers=settings.rate_limit_include_headers,
            trust_proxy=settings.rate_limit_trust_proxy,
            message=settings.rate_limit_message,
            fail_closed=settings.rate_limit_fail_closed,
            tool_history_size=settings.rate_limit_tool_history_size,
        )


@dataclass(frozen=True)
class CounterEntry:
    """Counter state for one key within its current window."""
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    window_ms: int
    retry_after: Optional[int] = None

    @property
    def reset_at_seconds(self) -> int:
        """Reset time as unix seconds, rounded up."""
        return -(-self.reset_at_ms // 1000)


@dataclass(frozen=True)
class ToolCallRecord:
    """One entry of a tool's call history."""
    client_id: str
    timestamp_ms: int
    allowed: bool


@dataclass
class ToolStats:
    """Running totals for a tool since process start."""
    calls: int = 0
    rejected: int = 0
    last_called_ms: Optional[int] = field(default=None)
