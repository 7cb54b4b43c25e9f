from __future__ import annotations

import time
from collections.abc import Callable, Hashable


class TTLCache:
    """Entries expire *ttl_seconds* after they were set.

    The clock is injectable so expiry can be tested without sleeping.  With
    *max_entries* set, the oldest entry is evicted once the cache is full.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int | None = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.max_entries = max_entries
        self._entries: dict[Hashable, tuple[float, object]] = {}

    def get(self, key: Hashable, default: object = None) -> object:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: object) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self.clock() + self.ttl_seconds, value)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                del self._entries[next(iter(self._entries))]

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [k for k, (exp, _) in self._entries.items() if now >= exp]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        return len(self._entries)
