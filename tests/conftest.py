"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before anything imports the settings module so
no test ever needs a running Redis.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from rate_limiter.adapters.counter_store import InMemoryCounterStore  # noqa: E402
from rate_limiter.core.accountant import RateLimitAccountant  # noqa: E402


@pytest.fixture
def clock() -> Mock:
    """Frozen UNIX clock shared by the store and the accountant."""
    return Mock(return_value=1_000_000.0)


@pytest.fixture
def store(clock: Mock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def accountant(store: InMemoryCounterStore, clock: Mock) -> RateLimitAccountant:
    return RateLimitAccountant(store, clock=clock)
