"""Counter store backends for rate limiting.

Two interchangeable implementations of the same fixed-window contract:

- ``InMemoryCounterStore``: process-local, suitable for single-instance
  deployments and tests.
- ``RedisCounterStore``: shared across instances; atomicity is delegated
  to a Redis Lua script.
"""

import asyncio
import fnmatch
import threading
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis
import redis.asyncio as aioredis

from relay.app.core.logging import get_logger
from relay.app.exceptions import StorageTransportError
from relay.app.middleware.rate_limit.models import CounterEntry, now_ms
from relay.app.middleware.rate_limit.redis_lua import INCREMENT_SCRIPT

logger = get_logger(__name__)


class CounterStore(ABC):
    """Abstract base class for counter stores."""

    storage_type: str = "unknown"

    @abstractmethod
    async def increment(self, key: str, window_ms: int) -> CounterEntry:
        """Atomically count one request against ``key``.

        Starts a fresh window (count 1, reset in ``window_ms``) when the
        key is missing or its window has elapsed; otherwise increments the
        count and keeps the reset time.

        Raises:
            StorageTransportError: If the store cannot be reached.
        """

    @abstractmethod
    async def peek(self, key: str) -> Optional[CounterEntry]:
        """Return the live entry for ``key`` without counting, or None."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Drop the counter for ``key``."""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """List live keys matching a glob pattern."""

    async def ping(self) -> bool:
        """Check the store is reachable."""
        return True

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryCounterStore(CounterStore):
    """Process-local fixed-window counter store.

    Each new window schedules its own eviction on the running event loop
    so inactive keys don't accumulate. A window reset cancels the previous
    eviction before scheduling a new one.

    Thread-safe: the read-check-write runs under a lock and never awaits.
    """

    storage_type = "memory"

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CounterEntry] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}

    async def increment(self, key: str, window_ms: int) -> CounterEntry:
        loop = asyncio.get_running_loop()
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None or now >= entry.reset_at_ms:
                entry = CounterEntry(count=1, reset_at_ms=now + window_ms)
                self._entries[key] = entry
                self._schedule_eviction(loop, key, entry.reset_at_ms, now)
            else:
                entry = CounterEntry(count=entry.count + 1, reset_at_ms=entry.reset_at_ms)
                self._entries[key] = entry
            return entry

    def _schedule_eviction(
        self,
        loop: asyncio.AbstractEventLoop,
        key: str,
        reset_at_ms: int,
        now: int,
    ) -> None:
        """Replace any pending eviction for ``key``. Caller holds the lock."""
        previous = self._evictions.pop(key, None)
        if previous is not None:
            previous.cancel()
        delay = max(0.0, (reset_at_ms - now) / 1000)
        self._evictions[key] = loop.call_later(delay, self._evict, key, reset_at_ms)

    def _evict(self, key: str, reset_at_ms: int) -> None:
        with self._lock:
            entry = self._entries.get(key)
            # A newer window owns the key now; its own eviction will run
            if entry is not None and entry.reset_at_ms != reset_at_ms:
                return
            self._entries.pop(key, None)
            self._evictions.pop(key, None)

    async def peek(self, key: str) -> Optional[CounterEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._clock() >= entry.reset_at_ms:
                return None
            return entry

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            handle = self._evictions.pop(key, None)
            if handle is not None:
                handle.cancel()

    async def keys(self, pattern: str = "*") -> List[str]:
        with self._lock:
            now = self._clock()
            return [
                key for key, entry in self._entries.items()
                if now < entry.reset_at_ms and fnmatch.fnmatchcase(key, pattern)
            ]

    @property
    def pending_evictions(self) -> int:
        """Number of scheduled eviction timers."""
        return len(self._evictions)

    async def close(self) -> None:
        with self._lock:
            for handle in self._evictions.values():
                handle.cancel()
            self._evictions.clear()
            self._entries.clear()


class RedisCounterStore(CounterStore):
    """Redis-based distributed counter store.

    Shares one counting domain between all relay instances pointed at the
    same Redis. Every call is bounded by ``timeout_ms``; timeouts and Redis
    errors surface as ``StorageTransportError``.
    """

    storage_type = "redis"
    KEY_PREFIX = "rate_limit:"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: str = "redis://localhost:6379/0",
        timeout_ms: int = 100,
        key_prefix: str = KEY_PREFIX,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize Redis counter store.

        Args:
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL (used when no client is given)
            timeout_ms: Upper bound for each Redis round-trip
            key_prefix: Namespace prepended to every key
            clock: Time source returning epoch milliseconds
        """
        self._redis = redis_client
        self._redis_url = redis_url
        self._timeout = timeout_ms / 1000
        self._key_prefix = key_prefix
        self._clock = clock

    def _get_redis(self) -> Any:
        """Get or create the Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._timeout,
                socket_connect_timeout=self._timeout,
            )
        return self._redis

    def _full_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def _execute(self, key: str, operation: Callable[[Any], Awaitable[Any]]) -> Any:
        """Run one Redis operation under the configured timeout."""
        try:
            redis_client = self._get_redis()
            return await asyncio.wait_for(operation(redis_client), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise StorageTransportError(
                f"Redis call timed out after {int(self._timeout * 1000)}ms", key=key
            ) from e
        except (redis.RedisError, OSError) as e:
            raise StorageTransportError(f"Redis error: {e}", key=key) from e

    async def increment(self, key: str, window_ms: int) -> CounterEntry:
        full_key = self._full_key(key)
        now = self._clock()
        count, ttl_ms = await self._execute(
            key, lambda r: r.eval(INCREMENT_SCRIPT, 1, full_key, window_ms)
        )
        return CounterEntry(count=int(count), reset_at_ms=now + int(ttl_ms))

    async def peek(self, key: str) -> Optional[CounterEntry]:
        full_key = self._full_key(key)

        async def _read(r: Any) -> List[Any]:
            pipe = r.pipeline(transaction=True)
            pipe.get(full_key)
            pipe.pttl(full_key)
            return await pipe.execute()

        now = self._clock()
        value, ttl_ms = await self._execute(key, _read)
        if value is None or int(ttl_ms) < 0:
            return None
        return CounterEntry(count=int(value), reset_at_ms=now + int(ttl_ms))

    async def delete(self, key: str) -> None:
        full_key = self._full_key(key)
        await self._execute(key, lambda r: r.delete(full_key))

    async def keys(self, pattern: str = "*") -> List[str]:
        match = self._full_key(pattern)

        async def _scan(r: Any) -> List[str]:
            found = []
            async for raw in r.scan_iter(match=match):
                name = raw.decode() if isinstance(raw, bytes) else raw
                found.append(name[len(self._key_prefix):])
            return found

        return await self._execute(pattern, _scan)

    async def ping(self) -> bool:
        try:
            await self._execute("ping", lambda r: r.ping())
        except StorageTransportError as e:
            logger.warning(f"Redis counter store ping failed: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
