from __future__ import annotations

import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Callable

_DEFAULT_TTL = 3600.0  # 1 hour
_DEFAULT_MAX_SIZE = 1000


class LRUCache:
    """In-memory key/value cache bounded by size and time-to-live.

    Whichever bound is hit first wins: expired entries are dropped when they
    are next touched, and inserting into a full cache evicts the least
    recently used entry. ``get`` returns ``None`` on a miss, so ``None`` is
    never stored.
    """

    def __init__(
        self,
        max_size: int = _DEFAULT_MAX_SIZE,
        ttl_seconds: float = _DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def make_key(payload: Any) -> str:
        normalized = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(normalized.encode()).hexdigest()[:32]

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry[0] < self.ttl_seconds:
            self._entries.move_to_end(key)
            self._hits += 1
            return entry[1]
        if entry is not None:
            del self._entries[key]
        self._misses += 1
        return None

    def set(self, key: str, value: Any) -> None:
        if value is None:
            return
        if key in self._entries:
            del self._entries[key]
        else:
            self._purge_expired()
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1
        self._entries[key] = (self._clock(), value)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry[0] < self.ttl_seconds

    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "size": len(self),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [k for k, (created, _) in self._entries.items() if now - created >= self.ttl_seconds]
        for key in expired:
            del self._entries[key]
