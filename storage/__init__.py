"""
Storage Package

In-process state shared by the services:
- TTLCache: fixed-TTL key/value cache with lazy expiry
- FallbackResolver: ordered candidate resolution with success and
  permanent-failure memoization

Both are plain classes. The composition root (app.main.AppContext) creates
the instances it needs; there are no module-level singletons here.
Nothing is persisted across restarts.
"""

from storage.ttl_cache import TTLCache, CacheEntry
from storage.fallback_resolver import FallbackResolver, FallbackChain, ResolutionState

__all__ = ["TTLCache", "CacheEntry", "FallbackResolver", "FallbackChain", "ResolutionState"]
