"""Counter store adapters.

This package provides a small abstraction layer so the accountant can run
against Redis in production and an in-memory store in tests or local
development without changing the accounting code.
"""

from __future__ import annotations

from rate_limiter.adapters.counter_store.base import DEFAULT_PREFIX, AbstractCounterStore
from rate_limiter.adapters.counter_store.in_memory import CounterEntry, InMemoryCounterStore
from rate_limiter.adapters.counter_store.redis_store import RedisCounterStore, build_redis_client

__all__ = [
    "DEFAULT_PREFIX",
    "AbstractCounterStore",
    "CounterEntry",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "build_redis_client",
]
