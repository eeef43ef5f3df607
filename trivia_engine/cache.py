"""
In-memory TTL cache for winner lists.

Settled winners never change once written, so they are cached for a long
time and only dropped when a period is re-settled by an operator. Synthetic
winner sets are cached per period for a short time so a gated viewer sees a
stable list across refreshes.
"""

import time
from typing import Any, Optional, Dict, List
import threading
from dataclasses import dataclass

from .logging_utils import get_logger

logger = get_logger("trivia_engine.cache")


@dataclass
class CacheEntry:
    """A single cache entry with value and expiration"""
    value: Any
    expires_at: float
    created_at: float


class MemoryCache:
    """Thread-safe in-memory cache with TTL support"""

    def __init__(self):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'evictions': 0
        }

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired"""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None
            if time.time() > entry.expires_at:
                del self._cache[key]
                self._stats['misses'] += 1
                self._stats['evictions'] += 1
                return None
            self._stats['hits'] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int = 3600) -> None:
        with self._lock:
            now = time.time()
            self._cache[key] = CacheEntry(value=value, expires_at=now + ttl_seconds, created_at=now)
            self._stats['sets'] += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._stats['evictions'] += len(self._cache)
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries, return how many were removed"""
        with self._lock:
            now = time.time()
            expired = [key for key, entry in self._cache.items() if now > entry.expires_at]
            for key in expired:
                del self._cache[key]
            self._stats['evictions'] += len(expired)
            return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total * 100) if total > 0 else 0
            return {
                **self._stats,
                'total_requests': total,
                'hit_rate_percent': round(hit_rate, 2),
                'cache_size': len(self._cache),
            }


_cache = MemoryCache()


def get_cache() -> MemoryCache:
    return _cache


def cache_winners(period_id: int, winners: List[Any], ttl_hours: int = 24) -> None:
    """Cache the settled (real) winners of a period"""
    _cache.set(f"winners:{period_id}", list(winners), ttl_hours * 3600)


def get_cached_winners(period_id: int) -> Optional[List[Any]]:
    return _cache.get(f"winners:{period_id}")


def cache_synthetic_winners(period_id: int, winners: List[Any], ttl_minutes: int = 10) -> None:
    _cache.set(f"synthetic_winners:{period_id}", list(winners), ttl_minutes * 60)


def get_cached_synthetic_winners(period_id: int) -> Optional[List[Any]]:
    return _cache.get(f"synthetic_winners:{period_id}")


def invalidate_winners_cache(period_id: int) -> None:
    _cache.delete(f"winners:{period_id}")
    _cache.delete(f"synthetic_winners:{period_id}")


def cleanup_cache_periodically() -> int:
    """Drop expired entries; meant to be called from a periodic job"""
    expired_count = _cache.cleanup_expired()
    if expired_count > 0:
        logger.info("cache_cleanup", extra={"event": "cache_cleanup", "amount": expired_count})
    return expired_count
