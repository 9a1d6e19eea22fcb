"""Rate limit engine.

Holds the resolved configuration and turns counter store results into
admission decisions, per category and per tool.
"""

import math
import re
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from relay.app.core.logging import get_log_context, get_logger
from relay.app.exceptions import StorageRaceAnomaly, StorageTransportError
from relay.app.middleware.rate_limit.backends import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from relay.app.middleware.rate_limit.models import (
    TOOL,
    AdmissionDecision,
    CategoryLimit,
    CounterEntry,
    RateLimitConfig,
    ToolCallRecord,
    ToolStats,
    now_ms,
)

logger = get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[])")


def _escape_glob(value: str) -> str:
    # Bracket classes are understood by both fnmatch and Redis MATCH
    return _GLOB_SPECIAL.sub(r"[\1]", value)


def category_key(category: str, client_id: str) -> str:
    return f"{category}:{client_id}"


def tool_key(tool_name: str, client_id: str) -> str:
    return f"{TOOL}:{tool_name}:{client_id}"


def build_counter_store(
    config: RateLimitConfig,
    clock: Callable[[], int] = now_ms,
) -> CounterStore:
    """Select the counter store backend from configuration."""
    if config.use_redis:
        logger.info("Using Redis rate limit counter store")
        return RedisCounterStore(
            redis_url=config.redis_url,
            timeout_ms=config.redis_timeout_ms,
            clock=clock,
        )
    logger.debug("Using in-memory rate limit counter store")
    return InMemoryCounterStore(clock=clock)


class ToolCallHistory:
    """Bounded per-tool call history for diagnostics.

    Keeps the last ``capacity`` calls of every tool (oldest dropped first)
    plus running totals. Purely observational: nothing here feeds back
    into admission.
    """

    def __init__(self, capacity: int = 100):
        self._capacity = capacity
        self._lock = threading.Lock()
        self._calls: Dict[str, Deque[ToolCallRecord]] = {}
        self._stats: Dict[str, ToolStats] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, tool_name: str, client_id: str, timestamp_ms: int, allowed: bool) -> None:
        with self._lock:
            calls = self._calls.get(tool_name)
            if calls is None:
                calls = self._calls[tool_name] = deque(maxlen=self._capacity)
            calls.append(ToolCallRecord(client_id=client_id, timestamp_ms=timestamp_ms, allowed=allowed))

            stats = self._stats.setdefault(tool_name, ToolStats())
            stats.calls += 1
            if not allowed:
                stats.rejected += 1
            stats.last_called_ms = timestamp_ms

    def get(self, tool_name: str) -> List[ToolCallRecord]:
        """Recent calls for one tool, oldest first."""
        with self._lock:
            return list(self._calls.get(tool_name, ()))

    def stats(self) -> Dict[str, ToolStats]:
        with self._lock:
            return {
                name: ToolStats(s.calls, s.rejected, s.last_called_ms)
                for name, s in self._stats.items()
            }

    def tool_names(self) -> List[str]:
        with self._lock:
            return sorted(self._calls)


class RateLimitEngine:
    """Fixed-window rate limiter over a pluggable counter store.

    ``check_and_consume`` counts one request for a (category, client) pair;
    ``check_and_consume_tool`` does the same for a (tool, client) pair under
    the ``tool`` category and records the call in the tool history.

    Storage failures never propagate: the request is admitted (or rejected
    when ``fail_closed`` is set) and the failure is logged.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        store: Optional[CounterStore] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the engine.

        Args:
            config: Resolved rate limit configuration
            store: Counter store (defaults to the one selected by config)
            clock: Time source returning epoch milliseconds

        Raises:
            ConfigurationError: If any category lacks a valid window/limit.
        """
        config.validate()
        self._config = config
        self._clock = clock
        self._store = store if store is not None else build_counter_store(config, clock)
        self._history = ToolCallHistory(config.tool_history_size)
        self.initialized = False

        logger.info(
            "Rate limiter engine created",
            extra={
                "enabled": config.enabled,
                "storage_type": self._store.storage_type,
                "fail_closed": config.fail_closed,
            },
        )

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def store(self) -> CounterStore:
        return self._store

    @property
    def history(self) -> ToolCallHistory:
        return self._history

    async def initialize(self) -> bool:
        """Verify the counter store, falling back to in-memory counting.

        Returns:
            True once the engine is ready (always, since fallback is local).
        """
        if self._store.storage_type != InMemoryCounterStore.storage_type:
            if not await self._store.ping():
                logger.warning(
                    "Rate limit counter store unreachable, falling back to in-memory storage",
                    extra={"storage_type": self._store.storage_type},
                )
                try:
                    await self._store.close()
                except Exception as e:
                    logger.debug(f"Error closing unreachable counter store: {e}")
                self._store = InMemoryCounterStore(clock=self._clock)

        self.initialized = True
        logger.info(
            "Rate limiter engine initialized",
            extra={"storage_type": self._store.storage_type, "enabled": self._config.enabled},
        )
        return True

    async def close(self) -> None:
        await self._store.close()

    async def check_and_consume(self, category: str, client_id: str) -> AdmissionDecision:
        """Count one request for ``client_id`` in ``category``.

        Raises:
            ConfigurationError: If the category is not configured.
        """
        limits = self._config.limits_for(category)
        if not self._config.enabled:
            return self._unmetered(limits)
        return await self._consume(category_key(category, client_id), category, limits, client_id)

    async def check_and_consume_tool(self, tool_name: str, client_id: str) -> AdmissionDecision:
        """Count one call of ``tool_name`` for ``client_id``.

        Independent from the ``mcp`` category counter of the enclosing
        HTTP request.
        """
        limits = self._config.limits_for(TOOL)
        if not self._config.enabled:
            decision = self._unmetered(limits)
        else:
            decision = await self._consume(
                tool_key(tool_name, client_id), TOOL, limits, client_id, tool_name=tool_name
            )

        try:
            self._history.record(tool_name, client_id, self._clock(), decision.allowed)
        except Exception as e:
            logger.warning(
                f"Failed to record tool call history: {e}",
                extra=get_log_context(tool_name=tool_name, client_id=client_id),
            )
        return decision

    async def peek(self, category: str, client_id: str) -> AdmissionDecision:
        """Decision the next request would get, without counting it."""
        limits = self._config.limits_for(category)
        if not self._config.enabled:
            return self._unmetered(limits)

        key = category_key(category, client_id)
        try:
            entry = await self._store.peek(key)
        except Exception as e:
            return self._storage_fallback(limits, key, category, e)

        now = self._clock()
        count = entry.count if entry is not None else 0
        reset_at_ms = entry.reset_at_ms if entry is not None else now + limits.window_ms
        if count < limits.max_requests:
            return AdmissionDecision(
                allowed=True,
                limit=limits.max_requests,
                remaining=limits.max_requests - count,
                reset_at_ms=reset_at_ms,
                window_ms=limits.window_ms,
            )
        return self._rejection(limits, reset_at_ms, now)

    async def _consume(
        self,
        key: str,
        category: str,
        limits: CategoryLimit,
        client_id: str,
        tool_name: Optional[str] = None,
    ) -> AdmissionDecision:
        try:
            entry = await self._store.increment(key, limits.window_ms)
        except Exception as e:
            return self._storage_fallback(limits, key, category, e)

        now = self._clock()
        if entry.count < 1:
            anomaly = StorageRaceAnomaly(key, entry.count)
            logger.error(
                f"Rate limit invariant violated, rejecting request: {anomaly}",
                extra=get_log_context(category=category, client_id=client_id, tool_name=tool_name, key=key),
            )
            reset_at_ms = entry.reset_at_ms if entry.reset_at_ms > now else now + limits.window_ms
            return self._rejection(limits, reset_at_ms, now)

        decision = self._decide(entry, limits, now)
        if decision.allowed:
            logger.debug(
                "Rate limit check passed",
                extra=get_log_context(
                    category=category,
                    client_id=client_id,
                    tool_name=tool_name,
                    count=entry.count,
                    limit=limits.max_requests,
                    remaining=decision.remaining,
                ),
            )
        else:
            logger.warning(
                "Tool rate limit exceeded" if tool_name else "Rate limit exceeded",
                extra=get_log_context(
                    category=category,
                    client_id=client_id,
                    tool_name=tool_name,
                    count=entry.count,
                    limit=limits.max_requests,
                    retry_after=decision.retry_after,
                ),
            )
        return decision

    def _decide(self, entry: CounterEntry, limits: CategoryLimit, now: int) -> AdmissionDecision:
        if entry.count <= limits.max_requests:
            return AdmissionDecision(
                allowed=True,
                limit=limits.max_requests,
                remaining=limits.max_requests - entry.count,
                reset_at_ms=entry.reset_at_ms,
                window_ms=limits.window_ms,
            )
        return self._rejection(limits, entry.reset_at_ms, now)

    @staticmethod
    def _rejection(limits: CategoryLimit, reset_at_ms: int, now: int) -> AdmissionDecision:
        return AdmissionDecision(
            allowed=False,
            limit=limits.max_requests,
            remaining=0,
            reset_at_ms=reset_at_ms,
            window_ms=limits.window_ms,
            retry_after=max(1, math.ceil((reset_at_ms - now) / 1000)),
        )

    def _unmetered(self, limits: CategoryLimit) -> AdmissionDecision:
        return AdmissionDecision(
            allowed=True,
            limit=limits.max_requests,
            remaining=limits.max_requests,
            reset_at_ms=self._clock(),
            window_ms=limits.window_ms,
        )

    def _storage_fallback(
        self,
        limits: CategoryLimit,
        key: str,
        category: str,
        error: Exception,
    ) -> AdmissionDecision:
        """Handle a counter store failure with the configured policy."""
        now = self._clock()
        context = get_log_context(category=category, key=key, error_type=type(error).__name__)

        if not isinstance(error, StorageTransportError):
            logger.exception(f"Unexpected rate limit storage error: {error}", extra=context)

        if self._config.fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered, request denied: {error}",
                extra=context,
            )
            return self._rejection(limits, now + limits.window_ms, now)

        logger.warning(
            f"Rate limiting fail-open triggered, request allowed without rate limit check: {error}",
            extra=context,
        )
        return AdmissionDecision(
            allowed=True,
            limit=limits.max_requests,
            remaining=limits.max_requests,
            reset_at_ms=now + limits.window_ms,
            window_ms=limits.window_ms,
        )

    async def reset_client_limits(self, client_id: str, category: Optional[str] = None) -> int:
        """Delete a client's counters.

        Args:
            client_id: Client identity whose counters are dropped
            category: Only reset this category (all categories when None)

        Returns:
            Number of counters deleted
        """
        if category is None:
            categories = [name for name in self._config.categories if name != TOOL]
            include_tools = True
        elif category == TOOL:
            categories, include_tools = [], True
        else:
            self._config.limits_for(category)
            categories, include_tools = [category], False

        # Whole-key matches only; client IDs may contain ':'
        keys: List[str] = []
        for name in categories:
            keys.extend(await self._store.keys(_escape_glob(category_key(name, client_id))))
        if include_tools:
            keys.extend(
                key for key in await self._store.keys(f"{TOOL}:*")
                if key.split(":", 2)[2:] == [client_id]
            )

        for key in keys:
            await self._store.delete(key)

        logger.info(
            "Reset rate limits for client",
            extra=get_log_context(client_id=client_id, category=category, deleted=len(keys)),
        )
        return len(keys)

    def get_tool_history(self, tool_name: Optional[str] = None) -> Dict[str, Any]:
        """Recent tool calls, for one tool or for every tool seen so far."""
        names = [tool_name] if tool_name is not None else self._history.tool_names()
        return {
            name: [
                {"clientId": r.client_id, "timestamp": r.timestamp_ms, "allowed": r.allowed}
                for r in self._history.get(name)
            ]
            for name in names
        }

    def get_status(self) -> Dict[str, Any]:
        """Rate limiter status and configuration."""
        return {
            "enabled": self._config.enabled,
            "initialized": self.initialized,
            "storage_type": self._store.storage_type,
            "fail_closed": self._config.fail_closed,
            "configuration": {
                name: {"window_ms": limits.window_ms, "max_requests": limits.max_requests}
                for name, limits in self._config.categories.items()
            },
            "tools": {
                name: {
                    "calls": stats.calls,
                    "rejected": stats.rejected,
                    "last_called_ms": stats.last_called_ms,
                }
                for name, stats in self._history.stats().items()
            },
        }
