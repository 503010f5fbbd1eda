"""Per-request rate limiting across the configured windows.

This module wires the accountant into the HTTP layer.

Design goals:
- Minimal coupling: the middleware depends on ``enforce_request_limits`` only.
- Swap-friendly: the counter store is chosen from settings behind an
  abstract interface.
- Every configured window (hour, minute, second) is checked against the
  client IP; a window with a limit <= 0 is skipped.
"""

from __future__ import annotations

import logging
from typing import Mapping, NamedTuple

from rate_limiter.adapters.counter_store import (
    AbstractCounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    build_redis_client,
)
from rate_limiter.core.accountant import RateLimitAccountant, RateLimitDecision, RateLimitRequest
from rate_limiter.core.config import RateLimitSettings, Settings, settings

logger = logging.getLogger(__name__)


class Window(NamedTuple):
    name: str
    interval_seconds: int
    setting: str


WINDOWS: tuple[Window, ...] = (
    Window("requests:hourly", 3600, "hourly_request_limit"),
    Window("requests:minute", 60, "minute_request_limit"),
    Window("requests:second", 1, "second_request_limit"),
)


_accountant: RateLimitAccountant | None = None


def build_counter_store(app_settings: Settings) -> AbstractCounterStore:
    """Create the counter store selected by ``rate_limit.store_backend``."""

    prefix = app_settings.rate_limit.prefix
    if app_settings.rate_limit.store_backend == "memory":
        logger.info("counter_store.selected", extra={"backend": "memory"})
        return InMemoryCounterStore(prefix=prefix)

    logger.info("counter_store.selected", extra={"backend": "redis"})
    return RedisCounterStore(build_redis_client(app_settings.redis), prefix=prefix)


def get_accountant() -> RateLimitAccountant:
    """Return the process-wide accountant built from global settings.

    The instance is cached in-module so the Redis connection pool (or the
    in-memory counters) is shared across requests.
    """

    global _accountant

    if _accountant is None:
        _accountant = RateLimitAccountant(build_counter_store(settings))
    return _accountant


def enforce_request_limits(
    accountant: RateLimitAccountant,
    rate_limit_settings: RateLimitSettings,
    connection_address: str | None,
    headers: Mapping[str, str],
) -> list[RateLimitDecision]:
    """Count one request against every enabled window.

    Windows are checked in order (hour, minute, second); the first one
    exceeded raises and the remaining windows are not counted.

    Args:
        accountant: Accountant to record with.
        rate_limit_settings: Thresholds and trusted proxy headers.
        connection_address: Transport-level client address.
        headers: Request headers.

    Returns:
        One decision per enabled window.

    Raises:
        RateLimitExceeded: When a window's threshold is exceeded.
        StoreUnavailableError: When arming a window expiration fails.
    """

    base = RateLimitRequest().with_client_identity(
        connection_address,
        headers,
        rate_limit_settings.trusted_header_names,
    )

    decisions: list[RateLimitDecision] = []
    for window in WINDOWS:
        threshold = getattr(rate_limit_settings, window.setting)
        if threshold <= 0:
            continue

        request = (
            base.with_name(window.name)
            .with_time_interval(window.interval_seconds)
            .with_rate_limit_headers(rate_limit_settings.include_headers)
        )
        decisions.append(accountant.limit(request, threshold))

    return decisions


def most_restrictive(decisions: list[RateLimitDecision]) -> RateLimitDecision | None:
    """Pick the decision with the fewest remaining units (ties: shortest window)."""

    if not decisions:
        return None
    return min(decisions, key=lambda d: (d.remaining, d.interval_seconds))
