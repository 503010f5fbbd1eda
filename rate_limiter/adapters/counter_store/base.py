"""Counter store interface.

The accountant depends on this abstraction (not a concrete client) so the
backing store can be Redis in production and an in-memory fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

DEFAULT_PREFIX = "rate_limits:"


class AbstractCounterStore(ABC):
    """Key-value store offering atomic increment and expire-at semantics.

    Every key passed in is namespaced with ``prefix`` by the adapter. Keys
    returned from ``keys_matching`` are the namespaced keys, as Redis reports
    them.

    All methods raise ``StoreUnavailableError`` when the backend is unreachable.
    """

    prefix: str = DEFAULT_PREFIX

    @abstractmethod
    def increment_by(self, key: str, amount: int) -> int:
        """Atomically add ``amount`` to ``key`` and return the new value.

        A missing or expired key is created with value ``amount``.
        """
        raise NotImplementedError

    @abstractmethod
    def expire_at(self, key: str, unix_timestamp: int) -> None:
        """Set the absolute expiration instant of ``key``."""
        raise NotImplementedError

    @abstractmethod
    def keys_matching(self, pattern: str) -> list[str]:
        """Return namespaced keys matching the glob ``pattern`` under the prefix."""
        raise NotImplementedError

    @abstractmethod
    def delete_all(self, keys: Sequence[str]) -> None:
        """Delete the given (un-namespaced) keys in one batch."""
        raise NotImplementedError
