"""Unit tests for the rate limit accountant against the in-memory store."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from rate_limiter.adapters.counter_store import AbstractCounterStore
from rate_limiter.core.accountant import (
    HEADER_LIMIT,
    HEADER_REMAINING,
    RateLimitAccountant,
    RateLimitRequest,
)
from rate_limiter.core.errors import RateLimitExceeded, StoreUnavailableError


def _request(name: str, interval: int = 60) -> RateLimitRequest:
    return RateLimitRequest().with_name(name).with_time_interval(interval)


def _unavailable() -> StoreUnavailableError:
    return StoreUnavailableError(code="counter_store_unavailable", message="down")


class TestRecord:
    def test_counts_accumulate_within_window(self, accountant, store) -> None:
        request = _request("requests:record")

        assert accountant.record(request) == 1
        assert accountant.record(request) == 2
        assert accountant.record(request, 5) == 7
        assert store.peek("requests:record:").count == 7

    def test_tags_are_isolated(self, accountant, store) -> None:
        accountant.record(_request("a"), 3)
        accountant.record(_request("b"))
        accountant.record(_request("a"), 2)

        assert store.peek("a:").count == 5
        assert store.peek("b:").count == 1

    def test_first_write_arms_expiration(self, accountant, store, clock) -> None:
        accountant.record(_request("requests:first", interval=20), 20)

        assert store.peek("requests:first:").expires_at == 1_000_000 + 20

    def test_later_writes_do_not_move_expiration(self, accountant, store, clock) -> None:
        request = _request("requests:later", interval=60)
        accountant.record(request)

        clock.return_value = 1_000_030.0
        accountant.record(request)
        accountant.record(request, 4)

        assert store.peek("requests:later:").expires_at == 1_000_060

    def test_new_window_after_expiry(self, accountant, store, clock) -> None:
        request = _request("requests:window", interval=10)
        accountant.record(request)
        accountant.record(request)

        clock.return_value = 1_000_010.0

        assert accountant.record(request) == 1
        assert store.peek("requests:window:").expires_at == 1_000_020

    def test_expiration_armed_once_per_window(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.increment_by.side_effect = [1, 2, 3]
        accountant = RateLimitAccountant(fake_store, clock=Mock(return_value=500.0))
        request = _request("requests:arming", interval=60)

        for _ in range(3):
            accountant.record(request)

        fake_store.expire_at.assert_called_once_with("requests:arming:", 560)

    def test_empty_request_records_under_empty_tag(self, accountant, store) -> None:
        accountant.record(_request("configured"))

        assert accountant.record(RateLimitRequest().with_time_interval(60)) == 1
        assert store.peek("configured:").count == 1
        assert store.peek("").count == 1

    def test_concurrent_records_keep_exact_count(self, accountant, store) -> None:
        shared = _request("requests:shared", interval=60)

        def worker(index: int) -> None:
            other = _request(f"requests:other:{index}", interval=60)
            for _ in range(500):
                accountant.record(shared, 3)
                accountant.record(other)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        entry = store.peek("requests:shared:")
        assert entry.count == 8 * 500 * 3
        assert entry.expires_at == 1_000_000 + 60
        for index in range(8):
            assert store.peek(f"requests:other:{index}:").count == 500

    def test_rejects_non_positive_amount(self, accountant) -> None:
        with pytest.raises(ValueError):
            accountant.record(_request("x"), 0)


class TestFailurePolicy:
    def test_increment_failure_counts_as_zero(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.increment_by.side_effect = _unavailable()
        accountant = RateLimitAccountant(fake_store)

        assert accountant.record(_request("down")) == 0
        fake_store.expire_at.assert_not_called()

    def test_increment_failure_allows_request(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.increment_by.side_effect = _unavailable()
        accountant = RateLimitAccountant(fake_store)

        decision = accountant.limit(_request("down").with_rate_limit_headers(), 1)

        assert decision.count == 0
        assert decision.exceeded is False
        assert decision.headers[HEADER_REMAINING] == "1"

    def test_arming_failure_propagates(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.increment_by.return_value = 1
        fake_store.expire_at.side_effect = _unavailable()
        accountant = RateLimitAccountant(fake_store)

        with pytest.raises(StoreUnavailableError):
            accountant.record(_request("arming"))

    def test_unexpected_errors_are_not_swallowed(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.increment_by.side_effect = RuntimeError("bug")
        accountant = RateLimitAccountant(fake_store)

        with pytest.raises(RuntimeError):
            accountant.record(_request("bug"))


class TestLimit:
    def test_limit_not_reached(self, accountant) -> None:
        accountant.limit(_request("requests:not_reached", 1), 10)
        decision = accountant.limit(_request("requests:not_reached", 1), 10)

        assert decision.count == 2
        assert decision.remaining == 8
        assert decision.exceeded is False

    def test_over_limit_rate(self, accountant) -> None:
        request = _request("requests:over_limit", 60)

        first = accountant.limit(request, 1)
        assert first.count == 1

        with pytest.raises(RateLimitExceeded) as exc_info:
            accountant.limit(request, 1)

        assert exc_info.value.decision.count == 2
        assert exc_info.value.code == "rate_limit_exceeded"

    def test_threshold_boundary(self, accountant) -> None:
        request = _request("requests:boundary")

        for _ in range(5):
            accountant.limit(request, 5)

        with pytest.raises(RateLimitExceeded):
            accountant.limit(request, 5)

    def test_recorded_amount_counts_towards_limit(self, accountant) -> None:
        request = _request("requests:record", 20)
        accountant.record(request, 20)

        with pytest.raises(RateLimitExceeded):
            accountant.limit(request, 20)

    def test_bulk_amount(self, accountant) -> None:
        request = _request("requests:bulk")

        assert accountant.limit(request, 10, amount=10).remaining == 0
        with pytest.raises(RateLimitExceeded):
            accountant.limit(request, 10, amount=1)

    def test_no_headers_unless_requested(self, accountant) -> None:
        decision = accountant.limit(_request("requests:quiet"), 3)

        assert dict(decision.headers) == {}

    def test_headers_when_requested(self, accountant) -> None:
        request = _request("requests:loud").with_rate_limit_headers()

        decision = accountant.limit(request, 3)

        assert decision.headers[HEADER_LIMIT] == "3"
        assert decision.headers[HEADER_REMAINING] == "2"

    def test_headers_attached_when_exceeded(self, accountant) -> None:
        request = _request("requests:loud_exceeded").with_rate_limit_headers()
        accountant.limit(request, 1)

        with pytest.raises(RateLimitExceeded) as exc_info:
            accountant.limit(request, 1)

        headers = exc_info.value.decision.headers
        assert headers[HEADER_LIMIT] == "1"
        assert headers[HEADER_REMAINING] == "0"
        assert exc_info.value.details["limit"] == 1

    def test_remaining_header_never_negative(self, accountant) -> None:
        request = _request("requests:far_over").with_rate_limit_headers()
        accountant.limit(request, 2)
        accountant.limit(request, 2)

        with pytest.raises(RateLimitExceeded) as exc_info:
            accountant.limit(request, 2, amount=5)

        decision = exc_info.value.decision
        assert decision.count == 7
        assert decision.remaining == 0
        assert decision.headers[HEADER_REMAINING] == "0"

    def test_accountant_reusable_after_exceeded(self, accountant) -> None:
        accountant.limit(_request("requests:a"), 1)
        with pytest.raises(RateLimitExceeded):
            accountant.limit(_request("requests:a"), 1)

        decision = accountant.limit(_request("requests:b"), 1)

        assert decision.tag == "requests:b:"
        assert decision.count == 1

    def test_rejects_non_positive_threshold(self, accountant) -> None:
        with pytest.raises(ValueError):
            accountant.limit(_request("x"), 0)


class TestFlush:
    def test_flush_resets_counts(self, accountant, store) -> None:
        request = _request("requests:record", 20)
        accountant.record(request, 20)

        accountant.flush_all()

        assert store.peek("requests:record:") is None
        assert accountant.limit(request, 20).count == 1
        assert store.peek("requests:record:").expires_at == 1_000_000 + 20

    def test_flush_by_lookup_only_deletes_matches(self, accountant, store) -> None:
        accountant.record(_request("login:alice"))
        accountant.record(_request("login:bob"))
        accountant.record(_request("search:alice"))

        accountant.flush_by_lookup("login:*")

        assert store.peek("login:alice:") is None
        assert store.peek("login:bob:") is None
        assert store.peek("search:alice:").count == 1

    def test_flush_strips_prefix_before_delete(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.prefix = "rate_limits:"
        fake_store.keys_matching.return_value = ["rate_limits:a:", "rate_limits:b:"]
        accountant = RateLimitAccountant(fake_store)

        accountant.flush_all()

        fake_store.keys_matching.assert_called_once_with("*")
        fake_store.delete_all.assert_called_once_with(["a:", "b:"])

    def test_flush_with_no_keys_skips_delete(self) -> None:
        fake_store = Mock(spec=AbstractCounterStore)
        fake_store.prefix = "rate_limits:"
        fake_store.keys_matching.return_value = []
        accountant = RateLimitAccountant(fake_store)

        accountant.flush_all()

        fake_store.delete_all.assert_not_called()

