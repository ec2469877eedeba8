"""Unit tests for cache/store.py -- PermissionCache."""

from cache.store import PermissionCache

NAMES = frozenset({"books.read"})


def test_get_miss(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    assert cache.get(1) is None


def test_fresh_entry_served_until_ttl(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    assert cache.set(1, NAMES)
    clock.advance(299.9)
    assert cache.get(1) == NAMES


def test_stale_entry_evicted_on_get(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    cache.set(1, NAMES)
    clock.advance(300)
    assert cache.get(1) is None
    assert len(cache) == 0


def test_invalidate_drops_entry(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    cache.set(1, NAMES)
    cache.set(2, NAMES)
    cache.invalidate(1)
    assert cache.get(1) is None
    assert cache.get(2) == NAMES


def test_set_with_outdated_generation_is_dropped(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    generation = cache.generation(1)
    cache.invalidate(1)
    assert cache.set(1, NAMES, generation) is False
    assert cache.get(1) is None
    assert cache.set(1, NAMES, cache.generation(1)) is True
    assert cache.get(1) == NAMES


def test_generations_are_per_user(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    generation = cache.generation(2)
    cache.invalidate(1)
    assert cache.set(2, NAMES, generation) is True


def test_purge_expired(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    cache.set(1, NAMES)
    clock.advance(200)
    cache.set(2, NAMES)
    clock.advance(150)
    assert cache.purge_expired() == 1
    assert cache.get(1) is None
    assert cache.get(2) == NAMES


def test_clear_discards_entries_and_in_flight_loads(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    cache.set(1, NAMES)
    generation = cache.generation(1)
    cache.clear()
    assert len(cache) == 0
    assert cache.set(1, NAMES, generation) is False


def test_zero_ttl_never_serves(clock):
    cache = PermissionCache(ttl=0, clock=clock)
    cache.set(1, NAMES)
    assert cache.get(1) is None


def test_clear_discards_load_for_user_never_seen(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    generation = cache.generation(7)
    cache.clear()
    assert cache.set(7, frozenset({"stale"}), generation) is False
    assert cache.get(7) is None
    assert cache.set(7, NAMES, cache.generation(7)) is True


def test_invalidate_after_clear_still_discards(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    cache.clear()
    generation = cache.generation(3)
    cache.invalidate(3)
    assert cache.set(3, NAMES, generation) is False


def test_purge_drops_generation_stamps(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    for uid in range(100):
        cache.invalidate(uid)
    assert len(cache._generations) == 100
    cache.purge_expired()
    assert cache._generations == {}


def test_purge_does_not_revive_invalidated_load(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    generation = cache.generation(1)
    cache.invalidate(1)
    cache.purge_expired()
    # The stamp from invalidate() is gone, but the old generation still loses.
    assert cache.set(1, NAMES, generation) is False
    assert cache.set(1, NAMES, cache.generation(1)) is True


def test_purge_keeps_fresh_entries(clock):
    cache = PermissionCache(ttl=300, clock=clock)
    cache.set(1, NAMES)
    cache.invalidate(2)
    assert cache.purge_expired() == 0
    assert cache.get(1) == NAMES
