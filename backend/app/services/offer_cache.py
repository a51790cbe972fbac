from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    stored_at: float
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_entries: int
    ttl_seconds: float


def offer_key(offer_id: str) -> str:
    return f"offer_{offer_id}"


def documents_key(offer_id: str) -> str:
    return f"offer_{offer_id}_documents"


def communications_key(offer_id: str) -> str:
    return f"offer_{offer_id}_communications"


class OfferCache:
    """Bounded TTL cache for offer snapshots.

    - Lazy expiry: an expired entry is dropped when read.
    - At capacity, the oldest inserted entry is evicted (insertion order,
      not access order).
    - Hits are snapshots; callers never gate writes on them.
    - Every delete or invalidation bumps the key's generation. A reader
      captures ``generation(key)`` before an await and fills through
      ``set_if_current`` so a result fetched before a write cannot land
      after it.

    Not locked: all mutation happens on the event loop thread.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() > entry.expires_at

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry.data

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, data: Any) -> None:
        now = self._clock()
        # Re-setting a key moves it to the back of the insertion order.
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            del self._entries[next(iter(self._entries))]
        self._entries[key] = CacheEntry(data=data, stored_at=now, expires_at=now + self.ttl_seconds)

    def generation(self, key: str) -> int:
        return self._generations.setdefault(key, 0)

    def set_if_current(self, key: str, data: Any, generation: int) -> bool:
        if self.generation(key) != generation:
            return False
        self.set(key, data)
        return True

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        self._bump(key)

    def invalidate_pattern(self, pattern: str) -> int:
        doomed = [k for k in self._entries if pattern in k]
        for k in doomed:
            del self._entries[k]
        # Keys with a read in flight may have no entry yet.
        for k in {*doomed, *(k for k in self._generations if pattern in k)}:
            self._bump(k)
        return len(doomed)

    def _bump(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def invalidate_offer(self, offer_id: str) -> int:
        return self.invalidate_pattern(offer_key(offer_id))

    def clear(self) -> None:
        for k in {*self._entries, *self._generations}:
            self._bump(k)
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries), max_entries=self.max_entries, ttl_seconds=self.ttl_seconds
        )
