"""Bounded, access-expiring cache of Storables keyed by StorableKey.

Replaces a Guava-style loading cache with an OrderedDict kept in access
order: the front holds the least recently used entry, which is also the
first one to go idle.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from catalog_storage.core.exceptions import InvalidArgumentError
from catalog_storage.core.logging import get_logger, log_cache_operation
from catalog_storage.models.storable import Storable, StorableKey

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExpiryPolicy:
    """Size and idle-time bounds; ``expire_after_access`` of 0 disables idle expiry."""
    max_size: int
    expire_after_access: float

    def __post_init__(self):
        if self.max_size <= 0:
            raise InvalidArgumentError(f"Cache max size must be positive, got {self.max_size}",
                                       operation="configure_cache")
        if self.expire_after_access < 0:
            raise InvalidArgumentError(
                f"Cache expire-after-access must not be negative, got {self.expire_after_access}",
                operation="configure_cache",
            )


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time counters."""
    hit_count: int = 0
    miss_count: int = 0
    eviction_count: int = 0

    @property
    def request_count(self) -> int:
        return self.hit_count + self.miss_count

    @property
    def hit_rate(self) -> float:
        requests = self.request_count
        return self.hit_count / requests if requests else 1.0


class StorableCache:
    """Thread-safe LRU map with an idle timeout.

    Either bound evicts on its own: inserting past ``max_size`` drops the
    least recently used entry, and any entry untouched for longer than
    ``expire_after_access`` is dropped before the next operation sees it.
    """

    def __init__(self, policy: ExpiryPolicy, clock: Callable[[], float] = time.monotonic):
        self._policy = policy
        self._clock = clock
        self._entries: "OrderedDict[StorableKey, Tuple[Storable, float]]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_settings(cls, max_size: int, expire_after_access: float) -> "StorableCache":
        return cls(ExpiryPolicy(max_size=max_size, expire_after_access=expire_after_access))

    # =========================================================================
    # Internals (caller holds the lock)
    # =========================================================================

    def _expire(self) -> None:
        ttl = self._policy.expire_after_access
        if not ttl:
            return
        cutoff = self._clock() - ttl
        while self._entries:
            key, (_, last_access) = next(iter(self._entries.items()))
            if last_access > cutoff:
                break
            del self._entries[key]
            self._evictions += 1
            log_cache_operation(logger, "expire", key)

    def _lookup(self, key: StorableKey) -> Optional[Storable]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        self._entries[key] = (entry[0], self._clock())
        self._entries.move_to_end(key)
        return entry[0]

    def _store(self, key: StorableKey, value: Storable) -> None:
        self._entries[key] = (value, self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self._policy.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            log_cache_operation(logger, "evict", evicted)

    # =========================================================================
    # Public API
    # =========================================================================

    def get(self, key: StorableKey) -> Optional[Storable]:
        with self._lock:
            self._expire()
            value = self._lookup(key)
        log_cache_operation(logger, "get", key, hit=value is not None)
        return value

    def get_all(self, keys: Iterable[StorableKey]) -> Dict[StorableKey, Storable]:
        """Cached values for the keys that are present; absent keys are left out."""
        with self._lock:
            self._expire()
            found = {}
            for key in keys:
                value = self._lookup(key)
                if value is not None:
                    found[key] = value
        return found

    def put(self, key: StorableKey, value: Storable) -> None:
        with self._lock:
            self._expire()
            self._store(key, value)
        log_cache_operation(logger, "put", key)

    def put_all(self, entries: Mapping[StorableKey, Storable]) -> None:
        with self._lock:
            self._expire()
            for key, value in entries.items():
                self._store(key, value)

    def remove(self, key: StorableKey) -> Optional[Storable]:
        with self._lock:
            entry = self._entries.pop(key, None)
        log_cache_operation(logger, "remove", key, hit=entry is not None)
        return entry[0] if entry is not None else None

    def remove_all(self, keys: Optional[Iterable[StorableKey]] = None) -> None:
        """Remove the given keys, or every entry when called without keys."""
        with self._lock:
            if keys is None:
                self._entries.clear()
                return
            for key in keys:
                self._entries.pop(key, None)

    def clear(self) -> None:
        self.remove_all()

    def contains(self, key: StorableKey) -> bool:
        """Presence check that does not count as an access."""
        with self._lock:
            self._expire()
            return key in self._entries

    def size(self) -> int:
        with self._lock:
            self._expire()
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(self._hits, self._misses, self._evictions)

    def get_expiry_policy(self) -> ExpiryPolicy:
        return self._policy
