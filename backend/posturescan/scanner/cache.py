# posturescan/scanner/cache.py
"""
Caller-owned TTL cache.

Instead of module-level dicts, the caller creates a TTLCache and passes it
to the pipeline (or keeps one per Flask app). Probes look values up through
the handle they are given; with no handle nothing is cached.

A Flask app shares one instance across request threads, so every access
goes through a lock.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

DEFAULT_TTL = 300.0
DEFAULT_MAX_ENTRIES = 4096

_MISSING = object()


class TTLCache:
    """Key → value store where every entry expires after ttl seconds."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self.misses += 1
                return default
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if len(self._entries) >= self.max_entries and key not in self._entries:
                self.purge_expired()
                if len(self._entries) >= self.max_entries:
                    # Evict the entry closest to expiry
                    oldest = min(self._entries, key=lambda k: self._entries[k][0])
                    del self._entries[oldest]
            self._entries[key] = (self._clock() + (ttl or self.ttl), value)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
