"""
Rate Cache - bounded, TTL-based cache of resolved exchange rates.

Entries are keyed by (tenant, source, target, rate type, as-of date).
Any write to a tenant's exchange rates drops every entry of that tenant.
"""
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ..enums import ExchangeRateType
from ..store.clock import Clock, SystemClock


CacheKey = tuple[str, str, str, ExchangeRateType, date]


@dataclass
class _Entry:
    rate: float
    expires_at: float  # clock timestamp, seconds


class RateCache:
    """Thread-safe LRU cache with a fixed time-to-live."""

    def __init__(self, ttl_seconds: int = 15 * 60, capacity: int = 1024, clock: Optional[Clock] = None):
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self.clock = clock or SystemClock()
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _now(self) -> float:
        return self.clock.now().timestamp()

    def get(self, key: CacheKey) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at <= self._now():
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.rate

    def put(self, key: CacheKey, rate: float):
        with self._lock:
            self._entries[key] = _Entry(rate=rate, expires_at=self._now() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every entry for ``tenant_id``. Returns the number dropped."""
        with self._lock:
            stale = [key for key in self._entries if key[0] == tenant_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > self._now()
