from __future__ import annotations
"""Explicit expiring cache for per-actor capability sets.

Entries are immutable ``CacheEntry(value, expires_at)`` records. Writers copy the
entry map, modify the copy and swap it in under a lock; readers take the current
map reference without locking (copy-on-write), so a reader may see a slightly
stale view but never a torn one.
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Generic, Hashable, Optional, TypeVar

V = TypeVar('V')


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    def __init__(self, ttl_seconds: float, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, CacheEntry[V]] = {}
        self._write_lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            return None
        return entry.value

    def put(self, key: Hashable, value: V) -> V:
        entry = CacheEntry(value, self._clock() + self.ttl_seconds)
        with self._write_lock:
            entries = dict(self._entries)
            entries[key] = entry
            self._prune(entries)
            self._entries = entries
        return value

    def get_or_compute(self, key: Hashable, compute: Callable[[], V]) -> V:
        cached = self.get(key)
        if cached is not None:
            return cached
        return self.put(key, compute())

    def invalidate(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._write_lock:
            entries = {k: e for k, e in self._entries.items() if not predicate(k)}
            removed = len(self._entries) - len(entries)
            self._entries = entries
        return removed

    def invalidate_role(self, role: str) -> int:
        """Drop every entry whose key (a frozen role set) contains ``role``."""
        return self.invalidate(lambda key: isinstance(key, frozenset) and role in key)

    def clear(self) -> None:
        with self._write_lock:
            self._entries = {}

    def _prune(self, entries: Dict[Hashable, CacheEntry[Any]]) -> None:
        now = self._clock()
        for k in [k for k, e in entries.items() if e.expires_at <= now]:
            del entries[k]

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> FrozenSet[Hashable]:
        return frozenset(self._entries)


__all__ = ['CacheEntry', 'TTLCache']
