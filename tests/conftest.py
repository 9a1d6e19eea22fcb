"""Shared fixtures for relay tests."""

import fnmatch
from typing import Dict, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from relay.app.core.config import Settings
from relay.app.middleware.rate_limit import CATEGORIES, CategoryLimit, RateLimitConfig


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_config():
    """Factory for RateLimitConfig with per-category overrides."""

    def _make(limits: Optional[Dict[str, Tuple[int, int]]] = None, **options) -> RateLimitConfig:
        categories = {name: CategoryLimit(60000, 100) for name in CATEGORIES}
        for name, (window_ms, max_requests) in (limits or {}).items():
            categories[name] = CategoryLimit(window_ms, max_requests)
        return RateLimitConfig(categories=categories, **options)

    return _make


@pytest.fixture
def make_settings():
    """Factory for Settings that ignores the environment's .env file."""

    def _make(**overrides) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def mock_redis(clock):
    """Mock async Redis client honouring the increment script's semantics.

    Entries are stored as ``[count, expires_at_ms]`` and expire against the
    fake clock.
    """
    redis_client = MagicMock()
    redis_client.data = {}

    def _live(key):
        entry = redis_client.data.get(key)
        if entry is not None and entry[1] <= clock():
            redis_client.data.pop(key, None)
            return None
        return entry

    async def mock_eval(script, num_keys, key, window_ms):
        entry = _live(key)
        now = clock()
        if entry is None:
            entry = redis_client.data[key] = [0, now + int(window_ms)]
        entry[0] += 1
        return [entry[0], entry[1] - now]

    def mock_pipeline(transaction=True):
        pipe = MagicMock()
        ops = []
        pipe.get.side_effect = lambda key: ops.append(("get", key))
        pipe.pttl.side_effect = lambda key: ops.append(("pttl", key))

        async def execute():
            results = []
            for op, key in ops:
                entry = _live(key)
                if op == "get":
                    results.append(str(entry[0]).encode() if entry else None)
                else:
                    results.append(entry[1] - clock() if entry else -2)
            return results

        pipe.execute = AsyncMock(side_effect=execute)
        return pipe

    async def mock_scan_iter(match="*"):
        for key in list(redis_client.data):
            if _live(key) is not None and fnmatch.fnmatchcase(key, match):
                yield key.encode()

    async def mock_delete(key):
        return 1 if redis_client.data.pop(key, None) is not None else 0

    redis_client.eval = AsyncMock(side_effect=mock_eval)
    redis_client.pipeline = MagicMock(side_effect=mock_pipeline)
    redis_client.scan_iter = mock_scan_iter
    redis_client.delete = AsyncMock(side_effect=mock_delete)
    redis_client.ping = AsyncMock(return_value=True)
    redis_client.aclose = AsyncMock()
    return redis_client
