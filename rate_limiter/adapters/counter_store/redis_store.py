"""Redis-backed counter store.

Maps the counter store interface onto INCRBY, EXPIREAT, SCAN and DEL. Any
``RedisError`` (connection refused, timeout, auth failure...) is translated
into ``StoreUnavailableError`` so callers never depend on redis-py types.
"""

from __future__ import annotations

import logging
from typing import Sequence

import redis
from redis.exceptions import RedisError

from rate_limiter.adapters.counter_store.base import DEFAULT_PREFIX, AbstractCounterStore
from rate_limiter.core.config import RedisSettings
from rate_limiter.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def build_redis_client(redis_settings: RedisSettings) -> redis.Redis:
    """Create a Redis client from settings.

    The client owns a connection pool; connections are opened lazily on the
    first command, so construction never touches the network.
    """
    return redis.Redis.from_url(
        redis_settings.url,
        decode_responses=True,
        socket_timeout=redis_settings.socket_timeout,
        socket_connect_timeout=redis_settings.socket_connect_timeout,
    )


def _unavailable(operation: str, exc: RedisError) -> StoreUnavailableError:
    return StoreUnavailableError(
        code="counter_store_unavailable",
        message=f"Counter store {operation} failed: {type(exc).__name__}",
        details={"operation": operation},
    )


class RedisCounterStore(AbstractCounterStore):
    """Counter store on a shared Redis instance."""

    def __init__(self, client: redis.Redis, *, prefix: str = DEFAULT_PREFIX) -> None:
        self._client = client
        self.prefix = prefix

    def increment_by(self, key: str, amount: int) -> int:
        try:
            return int(self._client.incrby(self.prefix + key, amount))
        except RedisError as exc:
            raise _unavailable("incrby", exc) from exc

    def expire_at(self, key: str, unix_timestamp: int) -> None:
        try:
            self._client.expireat(self.prefix + key, unix_timestamp)
        except RedisError as exc:
            raise _unavailable("expireat", exc) from exc

    def keys_matching(self, pattern: str) -> list[str]:
        # SCAN instead of KEYS so a large keyspace doesn't block the server.
        try:
            return list(self._client.scan_iter(match=self.prefix + pattern))
        except RedisError as exc:
            raise _unavailable("scan", exc) from exc

    def delete_all(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        try:
            self._client.delete(*(self.prefix + key for key in keys))
        except RedisError as exc:
            raise _unavailable("del", exc) from exc
        logger.debug("counter_store.deleted", extra={"key_count": len(keys)})
