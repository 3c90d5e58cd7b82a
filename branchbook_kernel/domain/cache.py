"""
Lookup cache for display snapshots.

Activity logging snapshots the actor's name/email/role and the branch name
on every audit row.  Those reads are cached here with a bounded TTL.  Access
decisions never consult this cache.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Protocol

from branchbook_kernel.domain.clock import Clock, SystemClock

_MISSING = object()


class LookupCache(Protocol):
    """Key/value cache used for display snapshots."""

    def get(self, key: Any) -> Any | None: ...

    def put(self, key: Any, value: Any) -> None: ...

    def invalidate(self, key: Any) -> None: ...

    def clear(self) -> None: ...


class TTLCache:
    """
    Thread-safe cache whose entries expire ``ttl_seconds`` after insertion.

    Expiry is evaluated against the injected clock, so tests drive it with a
    DeterministicClock.  When ``max_entries`` is reached the oldest entry is
    evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 1024,
        clock: Clock | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[Any, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self._clock.now().timestamp()

    def get(self, key: Any) -> Any | None:
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return None
            expires_at, value = entry
            if self._now() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: Any, value: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (self._now() + self._ttl, value)

    def invalidate(self, key: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullCache:
    """Disabled cache: every lookup misses."""

    def get(self, key: Any) -> Any | None:
        return None

    def put(self, key: Any, value: Any) -> None:
        pass

    def invalidate(self, key: Any) -> None:
        pass

    def clear(self) -> None:
        pass
