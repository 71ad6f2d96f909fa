"""
In-Memory TTL Cache

A key -> value store whose entries expire a fixed time after they were
written. Used for upstream proxy responses (10s), computed market
indicators (5 min) and the official exchange rate (30 min). Each call site
owns its own instance with its own TTL.

Expiry is lazy: staleness is checked when an entry is read, and a stale
entry is dropped by the read that notices it. There is no background sweep,
the key space is bounded by the number of distinct upstream requests.

Usage:
    cache = TTLCache(ttl_seconds=10, name="proxy")
    cache.put("upbit_/v1/ticker", payload)
    cached = cache.get("upbit_/v1/ticker")   # None once 10s have passed
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.logging import get_logger, log_cache_event
from core.schemas import CacheStats, CacheEntryInfo


@dataclass
class CacheEntry:
    """One stored value and the clock reading at which it was written."""

    key: str
    value: Any
    stored_at: float


class TTLCache:
    """
    Fixed-TTL in-memory cache.

    An entry is valid while ``clock() - stored_at < ttl_seconds``. A miss and
    an expired entry look the same to the caller: both return None.

    Attributes:
        ttl_seconds: Lifetime of every entry in this instance
        name: Label used in logs and stats

    Example:
        >>> cache = TTLCache(ttl_seconds=10, name="proxy")
        >>> cache.put("BTCUSDT", {"price": 65000})
        >>> cache.get("BTCUSDT")
        {'price': 65000}

    Notes:
        - clock defaults to time.monotonic so wall-clock jumps don't expire
          or revive entries; tests inject a fake clock
        - Values are stored as-is (no copy)
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache"
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.ttl_seconds = float(ttl_seconds)
        self.name = name
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self.logger = get_logger(__name__)

    # ============================================
    # Core Operations
    # ============================================

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value for key while it is fresh.

        Returns:
            The stored value, or None if the key is absent or expired
            (an expired entry is removed)
        """
        entry = self._store.get(key)
        if entry is None:
            log_cache_event(self.name, "miss", key)
            return None

        if not self._is_fresh(entry):
            self._store.pop(key, None)
            log_cache_event(self.name, "expired", key)
            return None

        log_cache_event(self.name, "hit", key)
        return entry.value

    def put(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous entry and restarting its TTL."""
        self._store[key] = CacheEntry(key=key, value=value, stored_at=self._clock())
        log_cache_event(self.name, "put", key)

    def clear(self) -> None:
        """Remove all entries immediately."""
        count = len(self._store)
        self._store.clear()
        log_cache_event(self.name, "clear", details=f"{count} entries removed")

    # ============================================
    # Introspection
    # ============================================

    def stats(self) -> CacheStats:
        """
        Diagnostic snapshot of the cache.

        Expired entries that have not been read yet are still counted;
        stats() never evicts.
        """
        return CacheStats(
            name=self.name,
            ttl_seconds=self.ttl_seconds,
            size=len(self._store),
            keys=list(self._store.keys()),
            approx_memory_bytes=self._estimate_size()
        )

    def entries(self) -> List[CacheEntryInfo]:
        """Age and expiry flag for every stored entry, without evicting anything."""
        now = self._clock()
        return [
            CacheEntryInfo(
                key=entry.key,
                age_seconds=max(0.0, now - entry.stored_at),
                expired=not self._is_fresh(entry, now)
            )
            for entry in self._store.values()
        ]

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        entry = self._store.get(key)  # type: ignore[arg-type]
        return entry is not None and self._is_fresh(entry)

    # ============================================
    # Helpers
    # ============================================

    def _is_fresh(self, entry: CacheEntry, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return now - entry.stored_at < self.ttl_seconds

    def _estimate_size(self) -> int:
        payload = [[entry.key, entry.value, entry.stored_at] for entry in self._store.values()]
        try:
            return len(json.dumps(payload, default=str))
        except (TypeError, ValueError):
            # Circular structures; fall back to a flat per-entry guess
            return 1024 * len(self._store)
