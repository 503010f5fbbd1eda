"""Fixed-window rate limit accounting.

A rate limit check is described by an immutable ``RateLimitRequest`` built up
segment by segment, then evaluated by a ``RateLimitAccountant`` against a
counter store:

    request = (
        RateLimitRequest()
        .with_client_identity(request.client.host, request.headers)
        .with_name("requests:minute")
        .with_time_interval(60)
    )
    accountant.limit(request, threshold=200)

Counting protocol per check:
1. INCRBY the composed tag by ``amount``.
2. If the new count equals ``amount`` this write opened the window, so arm
   the expiration at now + interval.
3. Compare the count to the threshold (strictly greater is a violation).

Failure policy is deliberately asymmetric. An unreachable store during the
increment counts as zero and the request is allowed (fail-open). A failure
while arming the expiration propagates, because a counter left without a TTL
would never reset.

Concurrent first writers may both see ``count == amount`` and both arm the
expiration; they set the same instant, so the duplicate is harmless.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from rate_limiter.adapters.counter_store.base import AbstractCounterStore
from rate_limiter.core.config import DEFAULT_TRUSTED_HEADER_NAMES
from rate_limiter.core.errors import RateLimitExceeded, StoreUnavailableError
from rate_limiter.core.identity import resolve_client_address
from rate_limiter.core.logging import hash_tag

logger = logging.getLogger(__name__)

TAG_DELIMITER = ":"

HEADER_LIMIT = "X-Rate-Limit-Limit"
HEADER_REMAINING = "X-Rate-Limit-Remaining"


def escape_segment(value: str) -> str:
    """Escape the delimiter inside a caller-supplied segment.

    ``%`` is escaped first so the encoding stays reversible and two distinct
    values can never produce the same segment.
    """
    return value.replace("%", "%25").replace(TAG_DELIMITER, "%3A")


def join_tag(segments: Iterable[str]) -> str:
    """Join segments into a tag, each one followed by the delimiter."""
    return "".join(f"{segment}{TAG_DELIMITER}" for segment in segments)


@dataclass(frozen=True)
class RateLimitRequest:
    """Immutable description of one rate limit check.

    Every ``with_*`` method returns a new request, so a partially built
    request can be shared and extended without leaking state between checks.

    Attributes:
        segments: Ordered tag segments, already escaped where needed.
        interval_seconds: Window length. Zero means the caller should skip
            the check; the accountant does not interpret it.
        emit_headers: Whether decisions carry rate limit response headers.
    """

    segments: tuple[str, ...] = ()
    interval_seconds: int = 0
    emit_headers: bool = False

    @property
    def tag(self) -> str:
        return join_tag(self.segments)

    def _append(self, segment: str) -> RateLimitRequest:
        return replace(self, segments=self.segments + (segment,))

    def with_name(self, name: str) -> RateLimitRequest:
        """Limit by action name (e.g. ``requests:hourly``).

        Names are chosen by the operator and appended verbatim, so they may
        themselves contain the delimiter.
        """
        return self._append(name)

    def with_client_identity(
        self,
        connection_address: str | None,
        headers: Mapping[str, str],
        trusted_header_names: Iterable[str] = DEFAULT_TRUSTED_HEADER_NAMES,
    ) -> RateLimitRequest:
        """Limit by client IP address.

        When no valid address can be resolved an empty segment is appended,
        which buckets all unidentifiable traffic together.
        """
        address = resolve_client_address(connection_address, headers, trusted_header_names)
        return self._append(address or "")

    def with_user_id(self, user_id: str | int) -> RateLimitRequest:
        """Limit by an explicit caller identity instead of the IP address."""
        return self._append(escape_segment(str(user_id)))

    def with_time_interval(self, seconds: int = 3600) -> RateLimitRequest:
        if seconds < 0:
            raise ValueError("interval seconds must be >= 0")
        return replace(self, interval_seconds=seconds)

    def with_rate_limit_headers(self, enabled: bool = True) -> RateLimitRequest:
        return replace(self, emit_headers=enabled)


@dataclass(frozen=True)
class IncrementOutcome:
    """Result of the increment step.

    ``error`` is set when the store was unreachable; ``count`` is then 0.
    """

    count: int
    error: StoreUnavailableError | None = None

    @property
    def counted(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of ``RateLimitAccountant.limit``.

    Attributes:
        tag: Tag the count was recorded under.
        count: Count after this increment (0 when the store was unavailable).
        limit: Threshold the count was compared to.
        remaining: Units left in the window, clamped at zero once the
            count passes the limit.
        interval_seconds: Window length of the check.
        headers: Response headers to attach; empty unless requested.
    """

    tag: str
    count: int
    limit: int
    remaining: int
    interval_seconds: int
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit


class RateLimitAccountant:
    """Records and limits actions against a counter store.

    The accountant holds no per-check state; one instance is shared by all
    requests in the process.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the accountant.

        Args:
            store: Counter store adapter (Redis or in-memory).
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def _increment(self, tag: str, amount: int) -> IncrementOutcome:
        try:
            return IncrementOutcome(count=self._store.increment_by(tag, amount))
        except StoreUnavailableError as exc:
            return IncrementOutcome(count=0, error=exc)

    def record(self, request: RateLimitRequest, amount: int = 1) -> int:
        """Record ``amount`` actions for the request's tag.

        Args:
            request: Composed rate limit request.
            amount: Number of actions to add (bulk recording).

        Returns:
            The count in the current window, or 0 if the store was
            unreachable during the increment.

        Raises:
            ValueError: If amount is not positive.
            StoreUnavailableError: If arming the window expiration fails.
        """
        if amount < 1:
            raise ValueError("amount must be >= 1")

        tag = request.tag
        outcome = self._increment(tag, amount)

        if not outcome.counted:
            logger.warning(
                "rate_limit.store_unavailable",
                extra={
                    "tag_hash": hash_tag(tag),
                    "error_message": outcome.error.message if outcome.error else None,
                },
            )
            return 0

        # First write in this window: arm the expiration.
        if outcome.count == amount:
            self._store.expire_at(tag, int(self._clock()) + request.interval_seconds)

        logger.debug(
            "rate_limit.recorded",
            extra={
                "tag_hash": hash_tag(tag),
                "amount": amount,
                "count": outcome.count,
                "window_s": request.interval_seconds,
            },
        )
        return outcome.count

    def limit(
        self,
        request: RateLimitRequest,
        threshold: int = 5000,
        amount: int = 1,
    ) -> RateLimitDecision:
        """Record actions and enforce ``threshold`` for the current window.

        Args:
            request: Composed rate limit request.
            threshold: Maximum count allowed in the window.
            amount: Number of actions to add.

        Returns:
            The decision, with rate limit headers when the request asked
            for them. ``X-Rate-Limit-Remaining`` is clamped at zero: a
            rejected request reports 0, never a negative count.

        Raises:
            ValueError: If threshold or amount is not positive.
            RateLimitExceeded: If the count exceeds ``threshold``. The
                decision (headers included) is attached to the exception.
            StoreUnavailableError: If arming the window expiration fails.
        """
        if threshold < 1:
            raise ValueError("threshold must be >= 1")

        count = self.record(request, amount)
        remaining = max(0, threshold - count)

        headers: Mapping[str, str] = MappingProxyType({})
        if request.emit_headers:
            headers = MappingProxyType(
                {HEADER_LIMIT: str(threshold), HEADER_REMAINING: str(remaining)}
            )

        decision = RateLimitDecision(
            tag=request.tag,
            count=count,
            limit=threshold,
            remaining=remaining,
            interval_seconds=request.interval_seconds,
            headers=headers,
        )

        if decision.exceeded:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "tag_hash": hash_tag(decision.tag),
                    "count": count,
                    "limit": threshold,
                    "window_s": request.interval_seconds,
                },
            )
            raise RateLimitExceeded(
                details={
                    "limit": threshold,
                    "remaining": remaining,
                    "interval_seconds": request.interval_seconds,
                },
                decision=decision,
            )

        return decision

    def flush_all(self) -> None:
        """Reset every limit. Useful for debugging; not for production traffic."""
        self.flush_by_lookup("*")

    def flush_by_lookup(self, pattern: str) -> None:
        """Delete every counter whose tag matches the glob ``pattern``.

        Enumeration is not atomic with concurrent increments.
        """
        prefix = self._store.prefix
        keys = [
            key[len(prefix):] if key.startswith(prefix) else key
            for key in self._store.keys_matching(pattern)
        ]
        if keys:
            self._store.delete_all(keys)
        logger.info("rate_limit.flushed", extra={"pattern": pattern, "key_count": len(keys)})
