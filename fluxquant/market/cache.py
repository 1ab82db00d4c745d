"""Expiring in-memory cache with an injected clock.

Entries expire ``ttl`` after insertion.  When ``max_entries`` is reached
the least recently written entry is evicted.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Generic, Hashable, Optional, TypeVar

from fluxquant.clock import Clock, utc_now

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Keyed cache with per-entry expiry.

    Args:
        ttl: Lifetime of an entry.  A zero TTL disables caching.
        max_entries: Upper bound on stored entries.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        ttl: timedelta,
        max_entries: int = 512,
        clock: Clock = utc_now,
    ) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[datetime, V]] = OrderedDict()

    def get(self, key: Hashable) -> Optional[V]:
        """Return the cached value, or ``None`` if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: Hashable, value: V) -> None:
        if self._ttl <= timedelta(0):
            return
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self._ttl, value)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def purge_expired(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        expired = [k for k, (exp, _) in self._entries.items() if now >= exp]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
