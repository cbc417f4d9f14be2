"""Cache implementations for infrastructure.

Usage example:
    from kra_connect.config import CacheConfig
    from kra_connect.infrastructure.cache import ResponseCache, generate_cache_key

    cache = ResponseCache(CacheConfig(max_size=500))
    key = generate_cache_key("pin_verification", {"pin": "P051234567A"})
    payload = cache.get_or_set(key, lambda: fetch_pin(), ttl=3600)
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import override
from urllib.parse import urlencode

from ..config import CacheConfig
from ..exceptions import CacheOperationError
from ..protocols import Cache


def generate_cache_key(kind: str, params: Mapping[str, object] | None = None) -> str:
    """Build a stable key for a cache kind and its parameters.

    Parameters are sorted by name before hashing, so their order never affects hits.
    Parameters whose value is None are left out, as if they were never passed.
    """
    ordered = sorted((name, value) for name, value in (params or {}).items() if value is not None)
    digest = hashlib.md5(urlencode(ordered).encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{kind}:{digest}"


@dataclass(frozen=True)
class CacheEntry:
    value: object
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def _empty_store() -> OrderedDict[str, CacheEntry]:
    return OrderedDict()


@dataclass
class ResponseCache(Cache):
    """In-memory cache bounded by size and freshness.

    When full, the oldest-inserted entry is evicted (FIFO, not LRU). Expired entries
    are removed lazily on read or by `clear_expired`. Concurrent misses for the same
    key are not collapsed: each caller runs its own factory.
    """

    config: CacheConfig = field(default_factory=CacheConfig)
    clock: Callable[[], float] = time.monotonic
    _store: OrderedDict[str, CacheEntry] = field(
        default_factory=_empty_store, init=False, repr=False
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @override
    def get(self, key: str) -> object | None:
        if not self.enabled:
            return None
        full_key = self.config.full_key(key)
        with self._lock:
            entry = self._store.get(full_key)
            if entry is None:
                return None
            if entry.is_expired(self.clock()):
                del self._store[full_key]
                return None
            return entry.value

    @override
    def set(self, key: str, value: object, ttl: float | None = None) -> bool:
        """Store `value` for `ttl` seconds (default TTL when None).

        Returns:
            False when caching is disabled, True once stored.

        Raises:
            CacheOperationError: If the value or TTL cannot be cached, or the store
                write fails.
        """
        if not self.enabled:
            return False
        if value is None:
            raise CacheOperationError.write_failed(key, "None cannot be cached")
        effective_ttl = self.config.ttl if ttl is None else ttl
        if effective_ttl < 0:
            raise CacheOperationError.write_failed(key, f"negative ttl {effective_ttl}")

        full_key = self.config.full_key(key)
        with self._lock:
            try:
                expires_at = self.clock() + effective_ttl
                if full_key in self._store:
                    # Re-inserting moves the key to the back of the eviction order.
                    del self._store[full_key]
                elif len(self._store) >= self.config.max_size:
                    self._store.popitem(last=False)
                self._store[full_key] = CacheEntry(value, expires_at)
            except Exception as exc:
                raise CacheOperationError.write_failed(key, str(exc)) from exc
        return True

    @override
    def get_or_set[ValueT](
        self, key: str, factory: Callable[[], ValueT], ttl: float | None = None
    ) -> ValueT:
        cached = self.get(key)
        if cached is not None:
            return cached  # type: ignore[return-value]
        value = factory()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(self.config.full_key(key), None) is not None

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    @override
    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def clear_expired(self) -> int:
        """Remove every expired entry and return how many were removed."""
        with self._lock:
            now = self.clock()
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._store)

    def warm_up(self, items: Mapping[str, object], ttl: float | None = None) -> int:
        """Store several values at once; returns how many were stored."""
        return sum(1 for key, value in items.items() if self.set(key, value, ttl))

    @override
    def stats(self) -> dict[str, object]:
        with self._lock:
            now = self.clock()
            total = len(self._store)
            expired = sum(1 for entry in self._store.values() if entry.is_expired(now))
        return {
            "enabled": self.enabled,
            "total_items": total,
            "valid_items": total - expired,
            "expired_items": expired,
            "max_size": self.config.max_size,
            "usage_percentage": round(total / self.config.max_size * 100, 2),
        }
