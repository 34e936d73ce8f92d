"""
SongCard - In-memory caches

A single generic :class:`TTLCache` covers the three caches the service
needs:

- metadata cache: ``platform:id`` → track info, 24 hour TTL
- colour cache: image URL → extracted palette, lives for the session
- image cache: image URL → decoded bitmap, lives for the process

Entries expire when ``now - inserted_at >= ttl`` and are evicted lazily on
the next lookup of the same key; there is no background sweep.  Caches are
owned by :class:`songcard.services.context.CardServices`, never by module
state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    key: Hashable
    value: V
    inserted_at: float


class TTLCache(Generic[K, V]):
    """Dictionary-backed cache with an optional time-to-live.

    ``ttl=None`` disables expiry (identity / session caches).  ``clock``
    defaults to :func:`time.monotonic` and is injectable for tests.
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive (or None for no expiry)")
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._entries: Dict[K, CacheEntry[V]] = {}

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=self._clock())

    def delete(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        # Counts stored entries, including expired ones not yet looked up
        return len(self._entries)

    def _expired(self, entry: CacheEntry[V]) -> bool:
        if self.ttl is None:
            return False
        return self._clock() - entry.inserted_at >= self.ttl
