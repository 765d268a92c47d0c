import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from ..models import ResultSet


CacheKey = Tuple[str, str, Tuple[Tuple[str, Any], ...], int]


class ResultCache:
    """Bounded LRU of result sets keyed by connection, statement, params and row cap.

    Entries expire ``ttl`` seconds after they were stored. A size or ttl of
    zero disables caching.
    """

    def __init__(self, max_size: int = 100, ttl: float = 300.0):
        self.logger = logging.getLogger(__name__)
        self.max_size = max_size
        self.ttl = ttl
        self._entries: "OrderedDict[CacheKey, Tuple[float, ResultSet]]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_size > 0 and self.ttl > 0

    @staticmethod
    def key(
        connection_key: str,
        sql: str,
        params: Optional[Dict[str, Any]],
        max_rows: int,
    ) -> CacheKey:
        frozen = tuple(sorted((name, repr(value)) for name, value in (params or {}).items()))
        return (connection_key, sql, frozen, max_rows)

    def get(self, key: CacheKey) -> Optional[ResultSet]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, result = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return result

    def put(self, key: CacheKey, result: ResultSet) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl, result)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def invalidate(self, connection_key: str) -> None:
        """Drop every entry for one connection."""
        with self._lock:
            stale = [key for key in self._entries if key[0] == connection_key]
            for key in stale:
                del self._entries[key]
        if stale:
            self.logger.debug(f"Dropped {len(stale)} cached results for {connection_key}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
