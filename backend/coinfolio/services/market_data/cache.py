"""
In-memory response cache for the market data gateway.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


class TTLCache:
    """Bounded LRU cache whose entries expire ``ttl_seconds`` after being stored.

    Expired entries are dropped lazily on read. When the cache holds more than
    ``max_entries`` the least recently used entry is evicted. Access is not
    locked: the gateway runs on a single event loop and concurrent misses on
    the same key simply store the same body twice.
    """

    def __init__(self, max_entries: int = 1024, ttl_seconds: float = 300,
                 timer: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._timer = timer
        self._data: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._timer() - entry.stored_at < self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            logger.debug(f"Cache expired: {key}")
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._data[key] = CacheEntry(value=value, stored_at=self._timer())
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.debug(f"Cache evicted: {evicted}")

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        entry = self._data.get(key)
        return entry is not None and self._is_fresh(entry)
