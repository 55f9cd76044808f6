"""
Bounded in-process response cache with per-entry TTL and FIFO eviction.
"""

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_CAPACITY = 100


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def make_cache_key(endpoint_id: str, params: Optional[Mapping[str, Any]]) -> str:
    """Deterministic identity of an (endpoint, params) pair.

    Keys are sorted and values stringified, so ``{"count": 5}`` and
    ``{"count": 5.0}`` share an entry.
    """
    normalized = {name: _stringify(value) for name, value in (params or {}).items()}
    return f"{endpoint_id}:{json.dumps(normalized, sort_keys=True, separators=(',', ':'))}"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    data: Any
    created_at: float
    ttl_ms: float

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at <= self.ttl_ms

    def age_ms(self, now: float) -> float:
        return now - self.created_at


class ResponseCache:
    """Key -> CacheEntry store holding at most ``capacity`` entries.

    A full cache evicts the oldest-inserted entry; reads never reorder entries.
    Expired entries are not served by :meth:`get` but stay available to
    :meth:`get_stale` until they are replaced, evicted or cleared.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        clock: Callable[[], float] = _wall_clock_ms,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.capacity = capacity
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.cache")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` only while it is fresh."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(self.clock()):
                self._hits += 1
                return entry
            self._misses += 1
            return None

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` regardless of its age."""
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, data: Any, ttl_ms: float) -> CacheEntry:
        """Store ``data`` under ``key``; a stored key counts as newly inserted."""
        evicted = None
        with self._lock:
            entry = CacheEntry(key=key, data=data, created_at=self.clock(), ttl_ms=ttl_ms)
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
            self._entries[key] = entry

        if evicted is not None:
            self.logger.debug("Evicted oldest cache entry", key=evicted)
            if self.metrics:
                self.metrics.increment_counter("cache_evictions_total")
        self.logger.debug("Cached response", key=key, ttl_ms=ttl_ms)
        return entry

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        self.logger.info("Cache cleared", removed=removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self.clock()
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "keys": list(self._entries),
                "expired": sum(1 for entry in self._entries.values() if not entry.is_fresh(now)),
                "hits": self._hits,
                "misses": self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
