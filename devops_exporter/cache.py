"""In-memory TTL cache shared by collection tasks."""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
import threading
import time

from devops_exporter.series import MetricRow


@dataclass
class CacheEntry:
    """A cached snapshot with its expiry time."""
    key: str
    snapshot: Tuple[MetricRow, ...]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MetricsCache:
    """
    Thread-safe key/value store with per-entry expiration.

    Keys are namespaced by the caller (``"<task>:<family>"``). The clock is
    injectable so expiry can be tested without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Tuple[MetricRow, ...]]:
        """Return the cached rows for ``key``, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return tuple(row.copy() for row in entry.snapshot)

    def set(self, key: str, rows, ttl_s: float):
        """Store a copy of ``rows`` under ``key`` for ``ttl_s`` seconds."""
        snapshot = tuple(row.copy() for row in rows)
        with self._lock:
            self._entries[key] = CacheEntry(key, snapshot, self._clock() + ttl_s)

    def purge_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
