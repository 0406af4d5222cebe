"""
Injectable cache providers.

Business logic asks a provider to `get_or_compute` a value under a key, a
lifetime and a set of tags; writes elsewhere call `invalidate(tags)`. The
engine never holds cache state of its own.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Set, Tuple, TypeVar, runtime_checkable
import logging
import threading
import time

T = TypeVar("T")

_MISSING = object()


class CacheTags:
    """Tag and key builders shared by the engine and repositories."""

    @staticmethod
    def patient(patient_id: str) -> str:
        return f"growth:patient:{patient_id}"

    @staticmethod
    def reference(gender: str, chart_type: str) -> str:
        return f"growth:reference:{gender}:{chart_type}"

    @staticmethod
    def key(*parts: Any) -> str:
        return ":".join(str(p) for p in parts)


@runtime_checkable
class CacheProvider(Protocol):
    """Memoization with tag-based invalidation."""

    def get_or_compute(
        self,
        key: str,
        ttl: Optional[float],
        fn: Callable[[], T],
        tags: Iterable[str] = (),
    ) -> T:
        """Return the cached value for key, or compute, store and return it.

        A ttl of None never expires.
        """
        ...

    def invalidate(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of the tags; return how many were dropped."""
        ...


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float]
    tags: Tuple[str, ...]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    discarded: int = 0


class InMemoryCacheProvider:
    """
    Bounded LRU cache with per-entry TTL and a tag index.

    Bookkeeping is guarded by a lock; `fn` runs outside it, so two racing
    misses may both compute and the later write wins with an equal value.
    Each tag carries a generation bumped by `invalidate`; a value whose
    tags were invalidated while `fn` ran is returned but not stored.

    Usage:
        cache = InMemoryCacheProvider(max_entries=1024)
        value = cache.get_or_compute("k", 60.0, expensive, tags=["growth:patient:1"])
        cache.invalidate(["growth:patient:1"])
    """

    def __init__(
        self, max_entries: int = 2048, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._tag_index: Dict[str, Set[str]] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.RLock()
        self.stats = CacheStats()

    def get_or_compute(
        self,
        key: str,
        ttl: Optional[float],
        fn: Callable[[], T],
        tags: Iterable[str] = (),
    ) -> T:
        tags = tuple(tags)
        value = self._get(key)
        if value is not _MISSING:
            return value
        snapshot = self._snapshot(tags)
        value = fn()
        self._set(key, value, ttl, tags, snapshot)
        return value

    def _snapshot(self, tags: Tuple[str, ...]) -> Tuple[int, Tuple[int, ...]]:
        with self._lock:
            return self._epoch, tuple(self._generations.get(tag, 0) for tag in tags)

    def _get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                logging.debug(f"Cache miss: {key}")
                return _MISSING
            if entry.expires_at is not None and entry.expires_at <= self._clock():
                self._remove(key)
                self.stats.misses += 1
                logging.debug(f"Cache expired: {key}")
                return _MISSING
            self._entries.move_to_end(key)
            self.stats.hits += 1
            logging.debug(f"Cache hit: {key}")
            return entry.value

    def _set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float],
        tags: Tuple[str, ...],
        snapshot: Tuple[int, Tuple[int, ...]],
    ) -> None:
        expires_at = None if ttl is None else self._clock() + ttl
        with self._lock:
            if self._snapshot(tags) != snapshot:
                self.stats.discarded += 1
                logging.debug(f"Cache discarded {key}: invalidated during compute")
                return
            if key in self._entries:
                self._remove(key)
            self._entries[key] = _Entry(value=value, expires_at=expires_at, tags=tags)
            for tag in tags:
                self._tag_index.setdefault(tag, set()).add(key)
            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                self._remove(oldest)
                self.stats.evictions += 1

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]

    def invalidate(self, tags: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for tag in list(tags):
                self._generations[tag] = self._generations.get(tag, 0) + 1
                for key in list(self._tag_index.get(tag, ())):
                    self._remove(key)
                    removed += 1
            self.stats.invalidations += removed
        logging.debug(f"Cache invalidated {removed} entries")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()
            self._epoch += 1

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullCacheProvider:
    """Provider that never stores anything; every call computes."""

    def get_or_compute(
        self,
        key: str,
        ttl: Optional[float],
        fn: Callable[[], T],
        tags: Iterable[str] = (),
    ) -> T:
        return fn()

    def invalidate(self, tags: Iterable[str]) -> int:
        return 0
