#!/usr/bin/env python3

"""
core/query_cache.py - Minimal query cache with key-prefix invalidation.

Refresh policies name the data they own as tuple keys, e.g.
``("staff", "reports", school_id)``. Invalidating a key marks every cached
entry whose key starts with it as stale; the next reader refetches.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Optional

from core.protocols import CacheKey

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    updated_at: float
    stale: bool = False


def _normalize_key(key: Any) -> CacheKey:
    if isinstance(key, tuple):
        return key
    if isinstance(key, list):
        return tuple(key)
    if isinstance(key, Hashable):
        return (key,)
    raise TypeError(f"Cache key must be hashable or a sequence, got {type(key).__name__}")


class QueryCache:
    """Thread-safe key/value cache whose entries can be marked stale by prefix."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.time

    def set(self, key: Any, value: Any) -> None:
        with self._lock:
            self._entries[_normalize_key(key)] = CacheEntry(value=value, updated_at=self._clock())

    def get(self, key: Any, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(_normalize_key(key))
            return default if entry is None else entry.value

    def is_stale(self, key: Any) -> bool:
        """Missing entries count as stale."""
        with self._lock:
            entry = self._entries.get(_normalize_key(key))
            return entry is None or entry.stale

    def invalidate(self, key: Any) -> int:
        """Mark every entry whose key starts with ``key`` as stale."""
        prefix = _normalize_key(key)
        count = 0
        with self._lock:
            for entry_key, entry in self._entries.items():
                if entry_key[: len(prefix)] == prefix:
                    entry.stale = True
                    count += 1
        logger.debug(f"Invalidated {count} cache entr{'y' if count == 1 else 'ies'} for {prefix}")
        return count

    def remove(self, key: Any) -> None:
        with self._lock:
            self._entries.pop(_normalize_key(key), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Module-level cache instance
_default_cache: Optional[QueryCache] = None
_cache_lock = threading.Lock()


def get_query_cache() -> QueryCache:
    """Get or create the application's shared QueryCache."""
    global _default_cache  # noqa: PLW0603
    with _cache_lock:
        if _default_cache is None:
            _default_cache = QueryCache()
        return _default_cache


__all__ = ["CacheEntry", "QueryCache", "get_query_cache"]
