"""
cache/store.py -- In-process TTL cache of resolved permission sets.

Maps user_id -> (frozenset of permission names, cached_at). One lock guards
the dict and the per-user generation counters; it is held only for dict
operations, never while a repository query runs.

Generations make invalidation stick across a racing load. They come from one
increasing counter: invalidate(uid) stamps uid with a fresh value, and
clear() or a purge that drops the per-user map raises a floor that every
user without a stamp reports. A generation read before any of those can
never match again:

    gen = cache.generation(uid)        # before querying the repository
    names = load(uid)                  # lock not held
    cache.set(uid, names, gen)         # dropped if invalidate(uid) ran meanwhile

Two concurrent misses for the same user may both load; the later set wins.

Usage:
    cache = PermissionCache(ttl=300)
    cache.get(42)                      # frozenset or None
    cache.set(42, frozenset({"books.read"}), cache.generation(42))
    cache.invalidate(42)
    cache.purge_expired()              # call periodically to trim old entries
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

_DEFAULT_TTL = 300  # 5 minutes in seconds


class PermissionCache:
    def __init__(self, ttl: float = _DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[int, tuple[frozenset[str], float]] = {}
        self._generations: dict[int, int] = {}
        self._counter = 0
        self._floor = 0

    def get(self, user_id: int) -> frozenset[str] | None:
        """Return the cached set for user_id if present and fresh. Stale entries are evicted."""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            names, cached_at = entry
            if self._clock() - cached_at >= self.ttl:
                del self._entries[user_id]
                return None
            return names

    def generation(self, user_id: int) -> int:
        with self._lock:
            return self._generations.get(user_id, self._floor)

    def set(self, user_id: int, names: frozenset[str], generation: int | None = None) -> bool:
        """Store names for user_id, replacing any existing entry.

        When generation is given and user_id was invalidated since it was
        read, the store is skipped and False is returned.
        """
        with self._lock:
            if generation is not None and generation != self._generations.get(user_id, self._floor):
                return False
            self._entries[user_id] = (frozenset(names), self._clock())
            return True

    def invalidate(self, user_id: int) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._counter += 1
            self._generations[user_id] = self._counter

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of entries removed.

        Also drops the per-user generation stamps so the map does not grow
        with every user ever invalidated. Loads in flight at that moment are
        not cached; their next check loads again.
        """
        with self._lock:
            now = self._clock()
            stale = [uid for uid, (_, cached_at) in self._entries.items() if now - cached_at >= self.ttl]
            for uid in stale:
                del self._entries[uid]
            if self._generations:
                self._reset_generations()
            return len(stale)

    def clear(self) -> None:
        """Drop every entry and discard every load still in flight."""
        with self._lock:
            self._entries.clear()
            self._reset_generations()

    def _reset_generations(self) -> None:
        # Caller holds the lock.
        self._counter += 1
        self._floor = self._counter
        self._generations.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
