import time
from trivia_engine.cache import (
    MemoryCache,
    cache_synthetic_winners,
    cache_winners,
    cleanup_cache_periodically,
    get_cache,
    get_cached_synthetic_winners,
    get_cached_winners,
    invalidate_winners_cache,
)


def test_memory_cache_set_get_and_expire():
    c = MemoryCache()
    c.set('k', 'v', ttl_seconds=1)
    assert c.get('k') == 'v'
    time.sleep(1.1)
    assert c.get('k') is None
    stats = c.get_stats()
    assert stats['hits'] == 1 and stats['misses'] == 1
    assert stats['cache_size'] == 0


def test_cleanup_expired_counts_removed_entries():
    c = MemoryCache()
    c.set('gone', 1, ttl_seconds=-1)
    c.set('kept', 2, ttl_seconds=60)
    assert c.cleanup_expired() == 1
    assert c.get('kept') == 2


def test_winner_helpers_and_invalidation():
    cache_winners(7, ["ann", "ben"])
    cache_synthetic_winners(7, ["ai"])
    assert get_cached_winners(7) == ["ann", "ben"]
    assert get_cached_synthetic_winners(7) == ["ai"]
    invalidate_winners_cache(7)
    assert get_cached_winners(7) is None
    assert get_cached_synthetic_winners(7) is None


def test_cached_list_is_a_copy():
    winners = ["ann"]
    cache_winners(8, winners)
    winners.append("late")
    assert get_cached_winners(8) == ["ann"]


def test_periodic_cleanup_uses_shared_cache():
    get_cache().set('stale', 'x', ttl_seconds=-1)
    assert cleanup_cache_periodically() == 1
    assert cleanup_cache_periodically() == 0
