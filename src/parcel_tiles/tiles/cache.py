import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TileCache:
    """In-process TTL cache for encoded tiles.

    Built once at startup and handed to whoever serves tiles. Concurrent
    misses on one key may both produce and store; the last write wins.
    """

    def __init__(
        self,
        ttl: int = 3600,
        max_entries: int = 10000,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}
        self._lock = threading.Lock()

    def get(self, key):
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                self._stats["misses"] += 1
                return None
            expires_at, value = entry
            if expires_at < self._clock():
                self._entries.pop(key, None)
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return value

    def set(self, key, value, ttl: Optional[int] = None):
        if not self.enabled:
            return
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest_key = min(self._entries.items(), key=lambda item: item[1][0])[0]
                self._entries.pop(oldest_key, None)
                self._stats["evictions"] += 1
            self._entries[key] = (self._clock() + (self.ttl if ttl is None else ttl), value)

    def get_or_create(self, key, producer: Callable[[], Optional[bytes]]) -> Optional[bytes]:
        """Read-through lookup. Empty results are returned but never stored."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = producer()
        if value:
            self.set(key, value)
        return value

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._stats["hits"] = 0
            self._stats["misses"] = 0
            self._stats["evictions"] = 0

    def stats(self):
        with self._lock:
            out = dict(self._stats)
            out["keys"] = len(self._entries)
            return out
