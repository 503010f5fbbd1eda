"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Expiry is lazy: an expired entry is dropped the next time it is touched,
  and every `sweep_every` writes all expired entries are purged so keys of
  clients that never return do not accumulate.
"""

from __future__ import annotations

import fnmatch
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from rate_limiter.adapters.counter_store.base import DEFAULT_PREFIX, AbstractCounterStore


@dataclass
class CounterEntry:
    count: int
    expires_at: int | None = None


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by a dict, mirroring Redis INCRBY/EXPIREAT.

    Useful for tests and single-process development; it never raises
    ``StoreUnavailableError``.
    """

    def __init__(
        self,
        *,
        prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], float] = time.time,
        sweep_every: int = 1000,
    ) -> None:
        """Initialize the store.

        Args:
            prefix: Namespace prepended to every key.
            clock: Time source function returning UNIX time in seconds.
            sweep_every: Number of writes between purges of expired entries.

        Raises:
            ValueError: If sweep_every is not positive.
        """
        if sweep_every < 1:
            raise ValueError("sweep_every must be >= 1")

        self.prefix = prefix
        self._clock = clock
        self._sweep_every = sweep_every
        self._writes_since_sweep = 0
        self._lock = threading.RLock()
        self._entries: dict[str, CounterEntry] = {}

    def _live_entry(self, full_key: str) -> CounterEntry | None:
        """Return the entry for ``full_key`` or None, evicting it if expired."""
        entry = self._entries.get(full_key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._entries[full_key]
            return None
        return entry

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [
                full_key
                for full_key, entry in self._entries.items()
                if entry.expires_at is not None and now >= entry.expires_at
            ]
            for full_key in expired:
                del self._entries[full_key]
            self._writes_since_sweep = 0
            return len(expired)

    def entry_count(self) -> int:
        """Number of stored entries, expired or not."""
        with self._lock:
            return len(self._entries)

    def increment_by(self, key: str, amount: int) -> int:
        full_key = self.prefix + key
        with self._lock:
            self._writes_since_sweep += 1
            if self._writes_since_sweep >= self._sweep_every:
                self.purge_expired()

            entry = self._live_entry(full_key)
            if entry is None:
                entry = CounterEntry(count=0)
                self._entries[full_key] = entry
            entry.count += amount
            return entry.count

    def expire_at(self, key: str, unix_timestamp: int) -> None:
        full_key = self.prefix + key
        with self._lock:
            entry = self._live_entry(full_key)
            if entry is not None:
                entry.expires_at = unix_timestamp

    def keys_matching(self, pattern: str) -> list[str]:
        full_pattern = self.prefix + pattern
        with self._lock:
            return [
                full_key
                for full_key in list(self._entries)
                if self._live_entry(full_key) is not None
                and fnmatch.fnmatchcase(full_key, full_pattern)
            ]

    def delete_all(self, keys: Sequence[str]) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(self.prefix + key, None)

    def peek(self, key: str) -> CounterEntry | None:
        """Return a copy of the live entry for ``key`` without modifying it."""
        with self._lock:
            entry = self._live_entry(self.prefix + key)
            if entry is None:
                return None
            return CounterEntry(count=entry.count, expires_at=entry.expires_at)
